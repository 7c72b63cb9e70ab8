from typing import Optional

from pydantic import BaseModel

from app.core.enums import UserRole


class CurrentUser(BaseModel):
    """Authenticated caller, taken from the bearer token. Users themselves live outside this service."""

    id: int
    organization_id: Optional[int] = None
    role: str = UserRole.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
