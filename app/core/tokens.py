"""
Single-use credentials for the leave workflow.

- Parent action token: URL-safe random string embedded in the emailed approval link.
- Approval OTP: short numeric code for the mentor step. Only its bcrypt hash is stored.

Production-safe: uses secrets for all random parts.
"""

import secrets
import string
from datetime import datetime, timedelta
from typing import Optional, Tuple

import bcrypt

from app.core.config import settings


def new_parent_action_token() -> str:
    return secrets.token_urlsafe(32)


def new_otp(length: Optional[int] = None) -> str:
    """Numeric code of ``length`` digits; leading zeros allowed."""
    if length is None:
        length = settings.leave_otp_length
    return "".join(secrets.choice(string.digits) for _ in range(length))


def otp_expiry(now: datetime, ttl_minutes: Optional[int] = None) -> datetime:
    if ttl_minutes is None:
        ttl_minutes = settings.leave_otp_ttl_minutes
    return now + timedelta(minutes=ttl_minutes)


def issue_otp(now: datetime) -> Tuple[str, str, datetime]:
    """Return (plain code, stored hash, expires_at)."""
    code = new_otp()
    return code, hash_otp(code), otp_expiry(now)


def hash_otp(code: str) -> str:
    hashed = bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_otp(code: str, otp_hash: str) -> bool:
    if not code or not otp_hash:
        return False
    try:
        return bcrypt.checkpw(code.strip().encode("utf-8"), otp_hash.encode("utf-8"))
    except ValueError:
        # Stored hash is invalid/corrupted
        return False


def otp_is_live(otp_hash: Optional[str], expires_at: Optional[datetime], now: datetime) -> bool:
    """An OTP is outstanding while it is stored and not yet expired."""
    return bool(otp_hash) and expires_at is not None and now < expires_at
