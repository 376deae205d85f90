"""System settings and feature flags (admin)."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import feature_flags
from app.core.clock import Clock
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import SystemSetting

from .schemas import FeatureFlagsResponse, SettingResponse, SettingUpdate

logger = logging.getLogger(__name__)


async def list_flags(db: AsyncSession) -> FeatureFlagsResponse:
    return FeatureFlagsResponse(flags=await feature_flags.all_flags(db))


async def put_setting(
    db: AsyncSession,
    key: str,
    payload: SettingUpdate,
    *,
    clock: Clock,
) -> SettingResponse:
    key = key.strip()
    if not key:
        raise ServiceError(ErrorCode.VALIDATION_ERROR, "Setting key is required")
    now = clock.now()
    row = await db.get(SystemSetting, key)
    if row is None:
        row = SystemSetting(key=key, value=payload.value.strip(), updated_at=now)
        db.add(row)
    else:
        row.value = payload.value.strip()
        row.updated_at = now
    await db.commit()
    logger.info("System setting %s set to %r", key, row.value)
    return SettingResponse(key=row.key, value=row.value, updated_at=row.updated_at)
