from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.auth.schemas import CurrentUser
from app.auth.security import decode_access_token
from app.core.enums import UserRole


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the caller from the access token issued by the external auth service."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id = payload.get("user_id") or payload.get("sub")
    if user_id is None:
        raise credentials_exception
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise credentials_exception

    organization_id: Optional[int] = payload.get("organization_id")
    role = payload.get("role") or UserRole.USER.value
    if role not in (UserRole.ADMIN.value, UserRole.USER.value):
        raise credentials_exception

    return CurrentUser(id=user_id, organization_id=organization_id, role=role)
