from datetime import datetime
from typing import Dict

from pydantic import BaseModel, Field


class FeatureFlagsResponse(BaseModel):
    flags: Dict[str, bool]


class SettingUpdate(BaseModel):
    value: str = Field(..., min_length=1, max_length=255, description='e.g. "true" / "false"')


class SettingResponse(BaseModel):
    key: str
    value: str
    updated_at: datetime

    class Config:
        from_attributes = True
