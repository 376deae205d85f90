from typing import Iterable

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole


def require_roles(*roles: UserRole):
    """
    Dependency factory to restrict an endpoint to the given roles. ADMIN always passes.

    Example:
        Depends(require_roles(UserRole.SECURITY))
    """
    allowed: Iterable[str] = {r.value for r in roles} | {UserRole.ADMIN.value}

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker
