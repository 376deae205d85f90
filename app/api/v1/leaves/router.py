from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.clock import Clock, get_clock
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.core.notifications import NotificationPort, get_notifier
from app.db.session import get_db

from .schemas import (
    LeaveApply,
    LeaveRequestResponse,
    LeaveUpdate,
    MentorActionRequest,
    OtpIssuedResponse,
    OtpVerifyRequest,
    ParentActionRequest,
    ParentLeaveView,
)
from . import service

router = APIRouter(prefix="/api/v1/leaves", tags=["leaves"])


@router.post(
    "/apply",
    response_model=LeaveRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_leave(
    payload: LeaveApply,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
    notifier: NotificationPort = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    """Apply for leave. The parent is emailed a single-use approval link."""
    try:
        return await service.apply_leave(db, current_user.external_uid, payload, notifier=notifier, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.get("/my", response_model=List[LeaveRequestResponse])
async def list_my_leaves(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
) -> List[LeaveRequestResponse]:
    """List leave requests applied by the current student."""
    try:
        return await service.list_student_leaves(db, current_user.external_uid)
    except ServiceError as e:
        raise e.to_http()


# Public endpoints for the parent: the token is the credential


@router.get("/parent-view/{token}", response_model=ParentLeaveView)
async def get_leave_by_token(token: str, db: AsyncSession = Depends(get_db)) -> ParentLeaveView:
    try:
        return await service.get_leave_by_token(db, token)
    except ServiceError as e:
        raise e.to_http()


@router.post("/parent-action/{token}", response_model=LeaveRequestResponse)
async def parent_action(
    token: str,
    payload: ParentActionRequest,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationPort = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.parent_action(db, token, payload.decision, notifier=notifier, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.get("/mentor/pending", response_model=List[LeaveRequestResponse])
async def list_mentor_leaves(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[LeaveRequestResponse]:
    """Leaves of the current user's mentees, including ones already decided."""
    try:
        return await service.list_pending_for_mentor(db, current_user.external_uid)
    except ServiceError as e:
        raise e.to_http()


@router.get(
    "/department/{department}",
    response_model=List[LeaveRequestResponse],
)
async def list_department_leaves(
    department: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.HOD)),
) -> List[LeaveRequestResponse]:
    return await service.list_department_leaves(db, department)


@router.post("/{leave_id}/mentor-action", response_model=LeaveRequestResponse)
async def mentor_action(
    leave_id: UUID,
    payload: MentorActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    """Approve or reject as the student's assigned mentor. Requires parent approval first."""
    try:
        return await service.mentor_action(
            db,
            leave_id,
            current_user.external_uid,
            payload.decision,
            payload.remarks,
            notifier=notifier,
            clock=clock,
        )
    except ServiceError as e:
        raise e.to_http()


@router.put("/{leave_id}", response_model=LeaveRequestResponse)
async def update_leave(
    leave_id: UUID,
    payload: LeaveUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.update_leave(db, leave_id, current_user.external_uid, payload, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.delete("/{leave_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_leave(
    leave_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
) -> Response:
    try:
        await service.delete_leave(db, leave_id, current_user.external_uid)
    except ServiceError as e:
        raise e.to_http()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{leave_id}/generate-otp", response_model=OtpIssuedResponse)
async def generate_otp(
    leave_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> OtpIssuedResponse:
    """Issue a short-lived approval code. Delivery target is configured by LEAVE_OTP_DELIVERY."""
    try:
        return await service.generate_otp(db, leave_id, current_user.external_uid, notifier=notifier, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.post("/{leave_id}/verify-otp", response_model=LeaveRequestResponse)
async def verify_otp(
    leave_id: UUID,
    payload: OtpVerifyRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.verify_otp_and_approve(
            db,
            leave_id,
            payload.otp,
            current_user.external_uid,
            payload.remarks,
            notifier=notifier,
            clock=clock,
        )
    except ServiceError as e:
        raise e.to_http()
