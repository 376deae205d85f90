"""Identity lookup: resolve campus users by provider uid or roll number."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import UserRole
from app.core.exceptions import ErrorCode, ServiceError


async def get_user_by_external_uid(db: AsyncSession, external_uid: str) -> Optional[User]:
    return (await db.execute(select(User).where(User.external_uid == external_uid))).scalar_one_or_none()


async def get_student_by_roll_number(db: AsyncSession, roll_number: str) -> Optional[User]:
    return (
        await db.execute(select(User).where(User.roll_number == roll_number.strip()))
    ).scalar_one_or_none()


async def require_student(db: AsyncSession, external_uid: str) -> User:
    """Resolve a student by provider uid or raise STUDENT_NOT_FOUND."""
    user = await get_user_by_external_uid(db, external_uid)
    if not user or user.role != UserRole.STUDENT.value:
        raise ServiceError(ErrorCode.STUDENT_NOT_FOUND, "Student not found")
    return user
