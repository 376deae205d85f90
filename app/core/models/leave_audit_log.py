"""
One row per leave transition, written in the transaction that made the transition.

``axis`` names the state machine the action moved (REQUEST, PARENT, MENTOR or SECURITY),
so the history of a single axis can be read without parsing action names.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import AuditAxis
from app.db.session import Base


class LeaveAuditLog(Base):
    __tablename__ = "leave_audit_logs"
    __table_args__ = (Index("ix_leave_audit_logs_leave_created", "leave_request_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    leave_request_id = Column(UUID(as_uuid=True), ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False)
    axis = Column(String(20), nullable=False, default=AuditAxis.REQUEST.value)
    action = Column(String(50), nullable=False)
    # Parent-link actions have no user row
    performed_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    performed_by_role = Column(String(50), nullable=True)
    remarks = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    leave_request = relationship("LeaveRequest", foreign_keys=[leave_request_id], back_populates="audit_logs")
