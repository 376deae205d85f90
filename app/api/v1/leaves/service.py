"""Leave apply, parent link, mentor approval (direct or OTP), edit and delete, with audit.

Every status change is a conditional UPDATE on the expected prior state; the affected
row count decides which of several concurrent actors wins. Notifications go out only
after the winning transaction commits.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.auth.service import get_user_by_external_uid, require_student
from app.core import feature_flags
from app.core.clock import Clock
from app.core.config import settings
from app.core.enums import (
    AuditAxis,
    LeaveDecision,
    MentorStatus,
    OtpDelivery,
    ParentStatus,
    SecurityStatus,
)
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import LeaveAuditLog, LeaveRequest
from app.core.notifications import (
    NotificationPort,
    notify_parent_approval_request,
    notify_student_approval_otp,
    notify_student_leave_status,
    parent_approval_link,
)
from app.core.tokens import issue_otp, new_parent_action_token, otp_is_live, verify_otp

from .schemas import (
    LeaveApply,
    LeaveRequestResponse,
    LeaveUpdate,
    OtpIssuedResponse,
    ParentLeaveView,
)

logger = logging.getLogger(__name__)


def request_to_response(r: LeaveRequest) -> LeaveRequestResponse:
    student = r.student
    return LeaveRequestResponse(
        id=r.id,
        student_id=r.student_id,
        student_name=student.full_name if student else None,
        student_roll_number=student.roll_number if student else None,
        leave_type=r.leave_type,
        from_date=r.from_date,
        to_date=r.to_date,
        reason=r.reason,
        parent_email=r.parent_email,
        parent_status=r.parent_status,
        mentor_status=r.mentor_status,
        mentor_remarks=r.mentor_remarks,
        security_status=r.security_status,
        exited_at=r.exited_at,
        returned_at=r.returned_at,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


_SECURITY_ACTIONS = {"EXITED", "RETURNED"}


def audit_axis(action: str) -> AuditAxis:
    if action.startswith("PARENT_"):
        return AuditAxis.PARENT
    if action.startswith(("MENTOR_", "OTP_")):
        return AuditAxis.MENTOR
    if action in _SECURITY_ACTIONS:
        return AuditAxis.SECURITY
    return AuditAxis.REQUEST


async def log_leave_audit(
    db: AsyncSession,
    leave_request_id: UUID,
    action: str,
    at: datetime,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
    remarks: Optional[str] = None,
) -> None:
    """Append one audit entry. Caller must commit."""
    db.add(
        LeaveAuditLog(
            leave_request_id=leave_request_id,
            axis=audit_axis(action).value,
            action=action,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            remarks=remarks,
            created_at=at,
        )
    )


async def fetch_leave(db: AsyncSession, leave_id: UUID) -> Optional[LeaveRequest]:
    """Load a leave with its student, overwriting any stale copy in the session."""
    return (
        await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == leave_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def _get_leave(db: AsyncSession, leave_id: UUID) -> LeaveRequest:
    req = await fetch_leave(db, leave_id)
    if not req:
        raise ServiceError(ErrorCode.LEAVE_NOT_FOUND, "Leave request not found")
    return req


async def _get_mentor(db: AsyncSession, mentor_uid: str) -> User:
    user = await get_user_by_external_uid(db, mentor_uid)
    if not user:
        raise ServiceError(ErrorCode.MENTOR_NOT_FOUND, "Mentor not found")
    return user


def _ensure_owner(req: LeaveRequest, student: User, verb: str) -> None:
    if req.student_id != student.id:
        raise ServiceError(ErrorCode.UNAUTHORIZED, f"Unauthorized to {verb} this leave")


def _ensure_assigned_mentor(req: LeaveRequest, mentor: User) -> None:
    if req.student is None or req.student.mentor_id != mentor.id:
        raise ServiceError(ErrorCode.UNAUTHORIZED, "Only the student's assigned mentor can act on this leave")


def _ensure_mentor_actionable(req: LeaveRequest) -> None:
    # Checked before the parent guard so a lost race always reads as ALREADY_PROCESSED
    if req.mentor_status != MentorStatus.PENDING.value:
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "This leave request has already been processed")
    if req.parent_status != ParentStatus.APPROVED.value:
        raise ServiceError(ErrorCode.PARENT_APPROVAL_REQUIRED, "Parent approval is required before mentor action")


def _validate_dates(from_date, to_date) -> None:
    if to_date < from_date:
        raise ServiceError(ErrorCode.VALIDATION_ERROR, "to_date must be on or after from_date")


def _mentor_pending_guard():
    return (
        LeaveRequest.parent_status == ParentStatus.APPROVED.value,
        LeaveRequest.mentor_status == MentorStatus.PENDING.value,
    )


# ----- Student -----


async def apply_leave(
    db: AsyncSession,
    student_uid: str,
    payload: LeaveApply,
    *,
    notifier: NotificationPort,
    clock: Clock,
) -> LeaveRequestResponse:
    """Create a request in (PENDING, PENDING) and email the parent a single-use approval link."""
    if not await feature_flags.is_enabled(db, feature_flags.LEAVE_ENABLED):
        raise ServiceError(ErrorCode.FEATURE_DISABLED, "Leave module is currently disabled by administrator.")
    student = await require_student(db, student_uid)
    _validate_dates(payload.from_date, payload.to_date)

    now = clock.now()
    token = new_parent_action_token()
    req = LeaveRequest(
        student_id=student.id,
        leave_type=payload.leave_type.strip(),
        from_date=payload.from_date,
        to_date=payload.to_date,
        reason=payload.reason.strip() if payload.reason else None,
        parent_email=str(payload.parent_email),
        parent_status=ParentStatus.PENDING.value,
        mentor_status=MentorStatus.PENDING.value,
        security_status=SecurityStatus.NONE.value,
        parent_action_token=token,
        created_at=now,
        updated_at=now,
    )
    db.add(req)
    await db.flush()
    await log_leave_audit(db, req.id, "APPLIED", now, student.id, student.role)
    await db.commit()
    logger.info("Leave %s applied by student %s (%s..%s)", req.id, student.id, req.from_date, req.to_date)

    await notify_parent_approval_request(
        notifier,
        req.parent_email,
        student.full_name or student.email,
        req.reason or "",
        req.from_date.isoformat(),
        req.to_date.isoformat(),
        parent_approval_link(token),
    )
    req = await fetch_leave(db, req.id)
    return request_to_response(req)


async def list_student_leaves(db: AsyncSession, student_uid: str) -> List[LeaveRequestResponse]:
    """Leaves applied by the student, newest first."""
    student = await require_student(db, student_uid)
    result = await db.execute(
        select(LeaveRequest)
        .where(LeaveRequest.student_id == student.id)
        .order_by(LeaveRequest.created_at.desc())
    )
    return [request_to_response(r) for r in result.scalars().all()]


async def update_leave(
    db: AsyncSession,
    leave_id: UUID,
    student_uid: str,
    payload: LeaveUpdate,
    *,
    clock: Clock,
) -> LeaveRequestResponse:
    student = await require_student(db, student_uid)
    req = await _get_leave(db, leave_id)
    _ensure_owner(req, student, "update")
    if req.parent_status != ParentStatus.PENDING.value:
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Cannot edit leave: Parent has already processed it.")
    _validate_dates(payload.from_date, payload.to_date)

    now = clock.now()
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == req.id,
            LeaveRequest.student_id == student.id,
            LeaveRequest.parent_status == ParentStatus.PENDING.value,
        )
        .values(
            leave_type=payload.leave_type.strip(),
            from_date=payload.from_date,
            to_date=payload.to_date,
            reason=payload.reason.strip() if payload.reason else None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Cannot edit leave: Parent has already processed it.")
    await log_leave_audit(db, req.id, "UPDATED", now, student.id, student.role)
    await db.commit()
    return request_to_response(await fetch_leave(db, req.id))


async def delete_leave(db: AsyncSession, leave_id: UUID, student_uid: str) -> None:
    """Delete while the request is still reversible: not mentor-approved and not used at the gate."""
    student = await require_student(db, student_uid)
    req = await _get_leave(db, leave_id)
    _ensure_owner(req, student, "delete")
    if req.mentor_status == MentorStatus.APPROVED.value or req.security_status != SecurityStatus.NONE.value:
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "An approved leave can no longer be deleted")

    result = await db.execute(
        delete(LeaveRequest)
        .where(
            LeaveRequest.id == req.id,
            LeaveRequest.student_id == student.id,
            LeaveRequest.mentor_status != MentorStatus.APPROVED.value,
            LeaveRequest.security_status == SecurityStatus.NONE.value,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "An approved leave can no longer be deleted")
    await db.execute(delete(LeaveAuditLog).where(LeaveAuditLog.leave_request_id == req.id))
    await db.commit()
    logger.info("Leave %s deleted by student %s", leave_id, student.id)


# ----- Parent (public link) -----


async def _find_by_live_token(db: AsyncSession, token: str) -> LeaveRequest:
    req = None
    if token:
        req = (
            await db.execute(
                select(LeaveRequest)
                .where(LeaveRequest.parent_action_token == token)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
    if not req or req.parent_status != ParentStatus.PENDING.value:
        logger.warning("Parent link rejected: token invalid or already used")
        raise ServiceError(ErrorCode.TOKEN_INVALID_OR_CONSUMED, "Invalid or expired token")
    return req


async def get_leave_by_token(db: AsyncSession, token: str) -> ParentLeaveView:
    req = await _find_by_live_token(db, token)
    return ParentLeaveView(
        id=req.id,
        student_name=req.student.full_name if req.student else None,
        leave_type=req.leave_type,
        from_date=req.from_date,
        to_date=req.to_date,
        reason=req.reason,
        parent_status=req.parent_status,
    )


async def parent_action(
    db: AsyncSession,
    token: str,
    decision: LeaveDecision,
    *,
    notifier: NotificationPort,
    clock: Clock,
) -> LeaveRequestResponse:
    """Consume the parent token and record the decision. A parent REJECT also closes the mentor axis."""
    req = await _find_by_live_token(db, token)
    now = clock.now()
    values = {
        "parent_action_token": None,
        "parent_action_at": now,
        "updated_at": now,
    }
    if decision == LeaveDecision.APPROVE:
        values["parent_status"] = ParentStatus.APPROVED.value
    else:
        values["parent_status"] = ParentStatus.REJECTED.value
        values["mentor_status"] = MentorStatus.REJECTED_BY_PARENT.value

    # Token check and consumption in one statement
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == req.id,
            LeaveRequest.parent_action_token == token,
            LeaveRequest.parent_status == ParentStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "Request already processed by parent")
    action = "PARENT_APPROVED" if decision == LeaveDecision.APPROVE else "PARENT_REJECTED"
    await log_leave_audit(db, req.id, action, now, performed_by_role="PARENT")
    await db.commit()
    logger.info("Leave %s: %s", req.id, action)

    req = await fetch_leave(db, req.id)
    if decision == LeaveDecision.REJECT:
        await notify_student_leave_status(
            notifier,
            req.student.email,
            "REJECTED (By Parent)",
            "Your parent has declined this request.",
        )
    return request_to_response(req)


# ----- Mentor -----


async def list_pending_for_mentor(db: AsyncSession, mentor_uid: str) -> List[LeaveRequestResponse]:
    """Parent-approved leaves of the mentor's students, newest first.

    Includes already-decided ones so the mentor sees history. Leaves still waiting
    on the parent stay out of the queue.
    """
    mentor = await _get_mentor(db, mentor_uid)
    result = await db.execute(
        select(LeaveRequest)
        .join(User, User.id == LeaveRequest.student_id)
        .where(
            User.mentor_id == mentor.id,
            LeaveRequest.parent_status == ParentStatus.APPROVED.value,
        )
        .order_by(LeaveRequest.created_at.desc())
    )
    return [request_to_response(r) for r in result.scalars().all()]


async def list_department_leaves(db: AsyncSession, department: str) -> List[LeaveRequestResponse]:
    """All leaves of students in a department (HOD view), newest first."""
    result = await db.execute(
        select(LeaveRequest)
        .join(User, User.id == LeaveRequest.student_id)
        .where(User.department == department)
        .order_by(LeaveRequest.created_at.desc())
    )
    return [request_to_response(r) for r in result.scalars().all()]


async def _finish_mentor_decision(
    db: AsyncSession,
    req: LeaveRequest,
    mentor: User,
    target: MentorStatus,
    remarks: Optional[str],
    now: datetime,
    extra_where=(),
    audit_action: Optional[str] = None,
) -> LeaveRequest:
    leave_id = req.id
    result = await db.execute(
        update(LeaveRequest)
        .where(LeaveRequest.id == leave_id, *_mentor_pending_guard(), *extra_where)
        .values(
            mentor_status=target.value,
            mentor_remarks=remarks,
            mentor_action_at=now,
            approval_otp=None,
            approval_otp_expires_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await fetch_leave(db, leave_id)
        if extra_where and current is not None and current.mentor_status == MentorStatus.PENDING.value:
            # Still undecided, so the code itself was replaced or cleared
            logger.warning("Leave %s: approval code changed before it could be applied", leave_id)
            raise ServiceError(ErrorCode.OTP_INVALID_OR_EXPIRED, "Invalid or expired approval code")
        raise ServiceError(ErrorCode.ALREADY_PROCESSED, "This leave request has already been processed")
    await log_leave_audit(db, leave_id, audit_action or f"MENTOR_{target.value}", now, mentor.id, mentor.role, remarks)
    await db.commit()
    logger.info("Leave %s: mentor %s set %s", leave_id, mentor.id, target.value)
    return await fetch_leave(db, leave_id)


async def mentor_action(
    db: AsyncSession,
    leave_id: UUID,
    mentor_uid: str,
    decision: LeaveDecision,
    remarks: Optional[str] = None,
    *,
    notifier: NotificationPort,
    clock: Clock,
) -> LeaveRequestResponse:
    mentor = await _get_mentor(db, mentor_uid)
    req = await _get_leave(db, leave_id)
    _ensure_assigned_mentor(req, mentor)
    _ensure_mentor_actionable(req)

    target = MentorStatus.APPROVED if decision == LeaveDecision.APPROVE else MentorStatus.REJECTED
    req = await _finish_mentor_decision(db, req, mentor, target, remarks, clock.now())
    await notify_student_leave_status(notifier, req.student.email, target.value, remarks)
    return request_to_response(req)


async def generate_otp(
    db: AsyncSession,
    leave_id: UUID,
    mentor_uid: str,
    *,
    notifier: NotificationPort,
    clock: Clock,
) -> OtpIssuedResponse:
    """Mint an approval code for this leave. Only one unexpired code may be outstanding."""
    mentor = await _get_mentor(db, mentor_uid)
    req = await _get_leave(db, leave_id)
    _ensure_assigned_mentor(req, mentor)
    _ensure_mentor_actionable(req)

    now = clock.now()
    if otp_is_live(req.approval_otp, req.approval_otp_expires_at, now):
        raise ServiceError(
            ErrorCode.OTP_ALREADY_ISSUED,
            "An approval code is already outstanding for this leave",
            expires_at=req.approval_otp_expires_at.isoformat(),
        )

    code, otp_hash, expires_at = issue_otp(now)
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == req.id,
            *_mentor_pending_guard(),
            or_(LeaveRequest.approval_otp.is_(None), LeaveRequest.approval_otp_expires_at <= now),
        )
        .values(approval_otp=otp_hash, approval_otp_expires_at=expires_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        _ensure_mentor_actionable(await _get_leave(db, leave_id))
        raise ServiceError(ErrorCode.OTP_ALREADY_ISSUED, "An approval code is already outstanding for this leave")
    await log_leave_audit(db, req.id, "OTP_ISSUED", now, mentor.id, mentor.role)
    await db.commit()

    delivery = OtpDelivery(settings.leave_otp_delivery)
    logger.info("Leave %s: approval code issued (delivery=%s, expires %s)", req.id, delivery.value, expires_at)
    if delivery == OtpDelivery.STUDENT:
        await notify_student_approval_otp(
            notifier,
            req.student.email,
            mentor.full_name or mentor.email,
            code,
            {
                "from_date": req.from_date.isoformat(),
                "to_date": req.to_date.isoformat(),
                "expires_at": expires_at.strftime("%Y-%m-%d %H:%M"),
            },
        )
        return OtpIssuedResponse(leave_id=req.id, expires_at=expires_at, delivered_to=delivery.value)
    return OtpIssuedResponse(leave_id=req.id, expires_at=expires_at, delivered_to=delivery.value, otp=code)


async def verify_otp_and_approve(
    db: AsyncSession,
    leave_id: UUID,
    code: str,
    mentor_uid: str,
    remarks: Optional[str] = None,
    *,
    notifier: NotificationPort,
    clock: Clock,
) -> LeaveRequestResponse:
    """Alternate route to mentor approval; converges with mentor_action on the same state."""
    mentor = await _get_mentor(db, mentor_uid)
    req = await _get_leave(db, leave_id)
    _ensure_assigned_mentor(req, mentor)
    _ensure_mentor_actionable(req)

    now = clock.now()
    stored_hash = req.approval_otp
    if not otp_is_live(stored_hash, req.approval_otp_expires_at, now) or not verify_otp(code, stored_hash):
        logger.warning("Leave %s: invalid or expired approval code from mentor %s", req.id, mentor.id)
        raise ServiceError(ErrorCode.OTP_INVALID_OR_EXPIRED, "Invalid or expired approval code")

    req = await _finish_mentor_decision(
        db,
        req,
        mentor,
        MentorStatus.APPROVED,
        remarks,
        now,
        extra_where=(LeaveRequest.approval_otp == stored_hash,),
        audit_action="MENTOR_APPROVED_OTP",
    )
    await notify_student_leave_status(notifier, req.student.email, MentorStatus.APPROVED.value, remarks)
    return request_to_response(req)
