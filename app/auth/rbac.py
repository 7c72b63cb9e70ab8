from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser


async def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require the ADMIN role. Used for repair and batch-generation endpoints."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can perform this action",
        )
    return current_user


def ensure_owner(current_user: CurrentUser, owner_id: int) -> None:
    """Non-admin callers may only touch timetables they own. Reports 404 to avoid leaking ids."""
    if current_user.is_admin:
        return
    if owner_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Timetable not found",
        )
