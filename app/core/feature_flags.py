"""
Feature flags backed by the system_settings table.

A flag is enabled unless its stored value is "false" (case-insensitive), so a
missing row leaves the feature on.
"""

from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import SystemSetting

LEAVE_ENABLED = "feature.leave.enabled"
RESULT_ENABLED = "feature.result.enabled"
REGISTRATION_ALLOWED = "feature.registration.allowed"

KNOWN_FLAGS = (LEAVE_ENABLED, RESULT_ENABLED, REGISTRATION_ALLOWED)


async def get_setting(db: AsyncSession, key: str) -> Optional[str]:
    row = await db.get(SystemSetting, key)
    return row.value if row else None


async def is_enabled(db: AsyncSession, flag_name: str) -> bool:
    value = await get_setting(db, flag_name)
    if value is None:
        return True
    return value.strip().lower() != "false"


async def all_flags(db: AsyncSession) -> Dict[str, bool]:
    rows = (await db.execute(select(SystemSetting))).scalars().all()
    stored = {r.key: r.value.strip().lower() != "false" for r in rows if r.key.startswith("feature.")}
    return {**{k: True for k in KNOWN_FLAGS}, **stored}
