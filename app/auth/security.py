from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import jwt

from app.core.config import settings


def create_access_token(
    *, subject: str, extra_claims: Optional[Dict] = None, expires_minutes: Optional[int] = None
) -> str:
    """Mint an HS256 bearer token for ``subject`` (a user's external_uid).

    Production tokens come from the identity provider with the same shape; this is
    used by tests and local tooling.
    """
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    to_encode: Dict = dict(extra_claims or {})
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"sub": subject, "exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict:
    """Raises jose.JWTError on a bad signature, malformed token or expiry."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
