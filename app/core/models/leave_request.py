"""Student leave requests: parent and mentor approval axes, OTP, and security gate state."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import MentorStatus, ParentStatus, SecurityStatus
from app.db.session import Base


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        CheckConstraint("from_date <= to_date", name="ck_leave_request_date_range"),
        # Mentor approval requires parent approval
        CheckConstraint(
            "mentor_status != 'APPROVED' OR parent_status = 'APPROVED'",
            name="ck_leave_request_mentor_after_parent",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type = Column(String(50), nullable=False)  # Medical, Personal, etc.
    from_date = Column(Date, nullable=False)
    to_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    parent_email = Column(String(255), nullable=False)

    parent_status = Column(String(20), nullable=False, default=ParentStatus.PENDING.value)
    mentor_status = Column(String(30), nullable=False, default=MentorStatus.PENDING.value)
    # Live only while parent_status is PENDING; cleared when consumed
    parent_action_token = Column(String(128), nullable=True, unique=True, index=True)
    parent_action_at = Column(DateTime, nullable=True)

    # bcrypt hash of the outstanding mentor-approval code
    approval_otp = Column(String(255), nullable=True)
    approval_otp_expires_at = Column(DateTime, nullable=True)
    mentor_remarks = Column(Text, nullable=True)
    mentor_action_at = Column(DateTime, nullable=True)

    security_status = Column(String(20), nullable=False, default=SecurityStatus.NONE.value)
    exited_at = Column(DateTime, nullable=True)
    returned_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id], lazy="joined")
    audit_logs = relationship(
        "LeaveAuditLog",
        back_populates="leave_request",
        passive_deletes=True,
        order_by="LeaveAuditLog.created_at",
    )
