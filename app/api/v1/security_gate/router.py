from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.leaves.schemas import LeaveRequestResponse
from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.clock import Clock, get_clock
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import SecurityActionRequest
from . import service

router = APIRouter(prefix="/api/v1/security", tags=["security"])


@router.get("/active/{roll_number}", response_model=LeaveRequestResponse)
async def get_active_leave(
    roll_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.SECURITY)),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    """The student's approved leave covering today, if any."""
    try:
        return await service.get_active_leave_for_student(db, roll_number, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.post("/{roll_number}/exit", response_model=LeaveRequestResponse)
async def record_exit(
    roll_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.SECURITY)),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.record_exit(db, roll_number, current_user, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.post("/{roll_number}/entry", response_model=LeaveRequestResponse)
async def record_entry(
    roll_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.SECURITY)),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.record_entry(db, roll_number, current_user, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.post("/leaves/{leave_id}/action", response_model=LeaveRequestResponse)
async def record_security_action(
    leave_id: UUID,
    payload: SecurityActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.SECURITY)),
    clock: Clock = Depends(get_clock),
) -> LeaveRequestResponse:
    try:
        return await service.record_security_action(db, leave_id, payload.action, current_user, clock=clock)
    except ServiceError as e:
        raise e.to_http()
