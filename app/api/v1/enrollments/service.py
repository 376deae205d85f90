"""Course enrollment with a bounded, time-frozen faculty change rule.

A student holds one section per course. Moving to another section of the same course is
allowed at most ``ENROLLMENT_MAX_CHANGES`` times, and not within
``ENROLLMENT_FREEZE_HOURS`` of the previous change (or of the first enrollment).
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.service import require_student
from app.core.clock import Clock
from app.core.config import settings
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import Enrollment, Section

from .schemas import EnrollmentResponse

logger = logging.getLogger(__name__)

# Lost compare-and-set races are re-evaluated this many times before giving up
_MAX_ATTEMPTS = 3


def _freeze_window() -> timedelta:
    return timedelta(hours=settings.enrollment_freeze_hours)


def reference_time(enrollment: Enrollment) -> datetime:
    return enrollment.last_updated_date or enrollment.enrollment_date


def hours_until_unfrozen(enrollment: Enrollment, now: datetime) -> int:
    """Whole hours to wait, rounded up (1 minute left -> 1, exactly 24 left -> 24)."""
    remaining = reference_time(enrollment) + _freeze_window() - now
    return math.ceil(remaining.total_seconds() / 3600)


def check_change_allowed(enrollment: Enrollment, now: datetime) -> None:
    max_changes = settings.enrollment_max_changes
    if (enrollment.change_count or 0) >= max_changes:
        raise ServiceError(
            ErrorCode.CHANGE_LIMIT_EXCEEDED,
            f"Maximum faculty changes ({max_changes}) limit reached. You cannot change faculty anymore.",
        )
    if now < reference_time(enrollment) + _freeze_window():
        hours = hours_until_unfrozen(enrollment, now)
        raise ServiceError(
            ErrorCode.CHANGE_FROZEN,
            f"Faculty selection is frozen. You can change again in {hours} hours.",
            retry_after_hours=hours,
        )


def _to_response(e: Enrollment) -> EnrollmentResponse:
    section = e.section
    course = section.course if section else None
    faculty = section.faculty if section else None
    remaining = max(settings.enrollment_max_changes - (e.change_count or 0), 0)
    return EnrollmentResponse(
        id=e.id,
        student_id=e.student_id,
        section_id=e.section_id,
        course_id=e.course_id,
        course_code=course.code if course else None,
        course_name=course.name if course else None,
        faculty_id=faculty.id if faculty else None,
        faculty_name=faculty.full_name if faculty else None,
        semester=section.semester if section else None,
        year=section.year if section else None,
        enrollment_date=e.enrollment_date,
        change_count=e.change_count or 0,
        changes_remaining=remaining,
        last_updated_date=e.last_updated_date,
        next_change_allowed_at=reference_time(e) + _freeze_window() if remaining else None,
    )


async def _find_enrollment(db: AsyncSession, student_id: UUID, course_id: UUID) -> Optional[Enrollment]:
    return (
        await db.execute(
            select(Enrollment)
            .where(Enrollment.student_id == student_id, Enrollment.course_id == course_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def _fetch(db: AsyncSession, enrollment_id: UUID) -> Enrollment:
    return (
        await db.execute(
            select(Enrollment).where(Enrollment.id == enrollment_id).execution_options(populate_existing=True)
        )
    ).scalar_one()


async def enroll_student(
    db: AsyncSession,
    section_id: UUID,
    student_uid: str,
    *,
    clock: Clock,
) -> EnrollmentResponse:
    section = await db.get(Section, section_id)
    if not section:
        raise ServiceError(ErrorCode.SECTION_NOT_FOUND, "Section not found")
    student = await require_student(db, student_uid)
    # Plain values: a rollback expires every loaded instance
    student_id, course_id = student.id, section.course_id

    for _ in range(_MAX_ATTEMPTS):
        now = clock.now()
        existing = await _find_enrollment(db, student_id, course_id)

        if existing is None:
            enrollment = Enrollment(
                student_id=student_id,
                section_id=section_id,
                course_id=course_id,
                enrollment_date=now,
                change_count=0,
            )
            db.add(enrollment)
            try:
                await db.commit()
            except IntegrityError:
                # Concurrent first enrollment in the same course; re-evaluate against it
                await db.rollback()
                continue
            logger.info("Student %s enrolled in section %s", student_id, section_id)
            return _to_response(await _fetch(db, enrollment.id))

        if existing.section_id == section_id:
            raise ServiceError(ErrorCode.ALREADY_ENROLLED, "Student already enrolled in this faculty")

        check_change_allowed(existing, now)

        existing_id, change_count = existing.id, existing.change_count
        result = await db.execute(
            update(Enrollment)
            .where(
                Enrollment.id == existing_id,
                Enrollment.section_id == existing.section_id,
                Enrollment.change_count == change_count,
            )
            .values(
                section_id=section_id,
                change_count=change_count + 1,
                last_updated_date=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await db.commit()
            logger.info("Student %s moved to section %s (change %d)", student_id, section_id, change_count + 1)
            return _to_response(await _fetch(db, existing_id))
        await db.rollback()

    raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Enrollment was changed concurrently. Please retry.")


async def list_student_enrollments(db: AsyncSession, student_uid: str) -> List[EnrollmentResponse]:
    student = await require_student(db, student_uid)
    result = await db.execute(
        select(Enrollment).where(Enrollment.student_id == student.id).order_by(Enrollment.enrollment_date)
    )
    return [_to_response(e) for e in result.scalars().all()]


async def list_section_enrollments(db: AsyncSession, section_id: UUID) -> List[EnrollmentResponse]:
    section = await db.get(Section, section_id)
    if not section:
        raise ServiceError(ErrorCode.SECTION_NOT_FOUND, "Section not found")
    result = await db.execute(
        select(Enrollment).where(Enrollment.section_id == section_id).order_by(Enrollment.enrollment_date)
    )
    return [_to_response(e) for e in result.scalars().all()]
