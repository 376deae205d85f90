"""Key/value system settings. Feature flags live here (e.g. feature.leave.enabled = "false")."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String

from app.db.session import Base


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
