"""Security gate: physical exit/entry against approved, in-window leave.

A leave is *active* for a student when both parent and mentor approved it, today (campus
timezone) lies within [from_date, to_date], and the student has not already returned on it.
"""

import logging
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.leaves import service as leave_service
from app.api.v1.leaves.schemas import LeaveRequestResponse
from app.auth.models import User
from app.auth.schemas import CurrentUser
from app.auth.service import get_student_by_roll_number
from app.core.clock import Clock
from app.core.enums import MentorStatus, ParentStatus, SecurityAction, SecurityStatus
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import LeaveRequest

logger = logging.getLogger(__name__)


def _approved_clause():
    return (
        LeaveRequest.parent_status == ParentStatus.APPROVED.value,
        LeaveRequest.mentor_status == MentorStatus.APPROVED.value,
    )


def is_active(leave: LeaveRequest, today: date) -> bool:
    return (
        leave.parent_status == ParentStatus.APPROVED.value
        and leave.mentor_status == MentorStatus.APPROVED.value
        and leave.from_date <= today <= leave.to_date
        and leave.security_status != SecurityStatus.RETURNED.value
    )


async def _student_by_roll(db: AsyncSession, roll_number: str) -> User:
    student = await get_student_by_roll_number(db, roll_number)
    if not student:
        raise ServiceError(ErrorCode.STUDENT_NOT_FOUND, "Student not found")
    return student


async def find_active_leave(db: AsyncSession, student_id: UUID, today: date) -> Optional[LeaveRequest]:
    return (
        await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.student_id == student_id,
                *_approved_clause(),
                LeaveRequest.from_date <= today,
                LeaveRequest.to_date >= today,
                LeaveRequest.security_status != SecurityStatus.RETURNED.value,
            )
            .order_by(LeaveRequest.from_date.desc(), LeaveRequest.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def get_active_leave_for_student(
    db: AsyncSession,
    roll_number: str,
    *,
    clock: Clock,
) -> LeaveRequestResponse:
    student = await _student_by_roll(db, roll_number)
    leave = await find_active_leave(db, student.id, clock.today())
    if not leave:
        raise ServiceError(ErrorCode.NO_ACTIVE_LEAVE, "No approved leave is active for this student today")
    return leave_service.request_to_response(leave)


async def _mark_exit(db: AsyncSession, leave: LeaveRequest, officer: CurrentUser, now: datetime) -> LeaveRequestResponse:
    if leave.security_status != SecurityStatus.NONE.value:
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Exit has already been recorded for this leave")
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave.id,
            *_approved_clause(),
            LeaveRequest.security_status == SecurityStatus.NONE.value,
        )
        .values(security_status=SecurityStatus.EXITED.value, exited_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Exit has already been recorded for this leave")
    await leave_service.log_leave_audit(db, leave.id, "EXITED", now, officer.id, officer.role)
    await db.commit()
    logger.info("Leave %s: exit recorded by %s", leave.id, officer.id)
    return leave_service.request_to_response(await leave_service.fetch_leave(db, leave.id))


async def _mark_entry(db: AsyncSession, leave: LeaveRequest, officer: CurrentUser, now: datetime) -> LeaveRequestResponse:
    if leave.security_status != SecurityStatus.EXITED.value:
        raise ServiceError(ErrorCode.NOT_EXITED, "No exit has been recorded for this leave")
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave.id,
            LeaveRequest.security_status == SecurityStatus.EXITED.value,
        )
        .values(security_status=SecurityStatus.RETURNED.value, returned_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Entry has already been recorded for this leave")
    await leave_service.log_leave_audit(db, leave.id, "RETURNED", now, officer.id, officer.role)
    await db.commit()
    logger.info("Leave %s: entry recorded by %s", leave.id, officer.id)
    return leave_service.request_to_response(await leave_service.fetch_leave(db, leave.id))


async def record_exit(
    db: AsyncSession,
    roll_number: str,
    officer: CurrentUser,
    *,
    clock: Clock,
) -> LeaveRequestResponse:
    """NONE -> EXITED on the student's active leave."""
    student = await _student_by_roll(db, roll_number)
    leave = await find_active_leave(db, student.id, clock.today())
    if not leave:
        raise ServiceError(ErrorCode.NO_ACTIVE_LEAVE, "No approved leave is active for this student today")
    return await _mark_exit(db, leave, officer, clock.now())


async def record_entry(
    db: AsyncSession,
    roll_number: str,
    officer: CurrentUser,
    *,
    clock: Clock,
) -> LeaveRequestResponse:
    """EXITED -> RETURNED. No date window: a late return must still be recorded."""
    student = await _student_by_roll(db, roll_number)
    leave = (
        await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.student_id == student.id,
                LeaveRequest.security_status == SecurityStatus.EXITED.value,
            )
            .order_by(LeaveRequest.exited_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not leave:
        raise ServiceError(ErrorCode.NOT_EXITED, "No exit has been recorded for this student")
    return await _mark_entry(db, leave, officer, clock.now())


async def record_security_action(
    db: AsyncSession,
    leave_id: UUID,
    action: SecurityAction,
    officer: CurrentUser,
    *,
    clock: Clock,
) -> LeaveRequestResponse:
    """Same transitions as record_exit / record_entry, addressed by leave id."""
    leave = await leave_service.fetch_leave(db, leave_id)
    if not leave:
        raise ServiceError(ErrorCode.LEAVE_NOT_FOUND, "Leave request not found")
    if action == SecurityAction.EXIT:
        if not is_active(leave, clock.today()):
            raise ServiceError(ErrorCode.NO_ACTIVE_LEAVE, "This leave is not approved and active today")
        return await _mark_exit(db, leave, officer, clock.now())
    return await _mark_entry(db, leave, officer, clock.now())
