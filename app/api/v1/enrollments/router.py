from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.clock import Clock, get_clock
from app.core.enums import UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import EnrollmentResponse, EnrollRequest
from . import service

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


@router.post(
    "",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(
    payload: EnrollRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
    clock: Clock = Depends(get_clock),
) -> EnrollmentResponse:
    """Enroll in a section, or switch faculty within the same course (limited and rate-frozen)."""
    try:
        return await service.enroll_student(db, payload.section_id, current_user.external_uid, clock=clock)
    except ServiceError as e:
        raise e.to_http()


@router.get("/my", response_model=List[EnrollmentResponse])
async def list_my_enrollments(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.STUDENT)),
) -> List[EnrollmentResponse]:
    try:
        return await service.list_student_enrollments(db, current_user.external_uid)
    except ServiceError as e:
        raise e.to_http()


@router.get("/section/{section_id}", response_model=List[EnrollmentResponse])
async def list_section_enrollments(
    section_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.FACULTY, UserRole.HOD)),
) -> List[EnrollmentResponse]:
    """Roster of a section."""
    try:
        return await service.list_section_enrollments(db, section_id)
    except ServiceError as e:
        raise e.to_http()
