from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import CurrentUser
from app.auth.security import decode_access_token
from app.auth.service import get_user_by_external_uid
from app.db.session import get_db


# Tokens are issued by the identity provider; there is no login route here.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=True)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user from the bearer token's subject."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    external_uid = payload.get("sub")
    if not external_uid:
        raise credentials_exception

    user = await get_user_by_external_uid(db, external_uid)
    if not user:
        raise credentials_exception

    return CurrentUser(
        id=user.id,
        external_uid=user.external_uid,
        email=user.email,
        role=user.role,
        full_name=user.full_name,
    )
