from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles
from app.auth.schemas import CurrentUser
from app.core.clock import Clock, get_clock
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import FeatureFlagsResponse, SettingResponse, SettingUpdate
from . import service

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


@router.get("", response_model=FeatureFlagsResponse)
async def list_flags(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles()),
) -> FeatureFlagsResponse:
    """Feature flags and their effective state. Admin only."""
    return await service.list_flags(db)


@router.put("/{key}", response_model=SettingResponse)
async def put_setting(
    key: str,
    payload: SettingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles()),
    clock: Clock = Depends(get_clock),
) -> SettingResponse:
    """Create or update a setting, e.g. PUT /settings/feature.leave.enabled {"value": "false"}."""
    try:
        return await service.put_setting(db, key, payload, clock=clock)
    except ServiceError as e:
        raise e.to_http()
