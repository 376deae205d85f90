from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import LeaveDecision, MentorStatus, ParentStatus, SecurityStatus


# ----- Apply / Update -----
class LeaveApply(BaseModel):
    """Apply for leave. The student is the current user."""

    leave_type: str = Field(..., min_length=1, max_length=50, description="Medical, Personal, etc.")
    from_date: date = Field(...)
    to_date: date = Field(...)
    reason: Optional[str] = Field(None, max_length=2000)
    parent_email: EmailStr


class LeaveUpdate(BaseModel):
    """Editable while the parent has not acted. Parent email is fixed once the link is sent."""

    leave_type: str = Field(..., min_length=1, max_length=50)
    from_date: date = Field(...)
    to_date: date = Field(...)
    reason: Optional[str] = Field(None, max_length=2000)


# ----- Leave Request Response -----
class LeaveRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    student_roll_number: Optional[str] = None
    leave_type: str
    from_date: date
    to_date: date
    reason: Optional[str] = None
    parent_email: str
    parent_status: ParentStatus
    mentor_status: MentorStatus
    mentor_remarks: Optional[str] = None
    security_status: SecurityStatus
    exited_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ParentLeaveView(BaseModel):
    """What the parent sees behind the emailed link."""

    id: UUID
    student_name: Optional[str] = None
    leave_type: str
    from_date: date
    to_date: date
    reason: Optional[str] = None
    parent_status: ParentStatus


# ----- Actions -----
class ParentActionRequest(BaseModel):
    decision: LeaveDecision


class MentorActionRequest(BaseModel):
    decision: LeaveDecision
    remarks: Optional[str] = Field(None, max_length=2000)


class OtpVerifyRequest(BaseModel):
    otp: str = Field(..., min_length=1, max_length=12)
    remarks: Optional[str] = Field(None, max_length=2000)


class OtpIssuedResponse(BaseModel):
    leave_id: UUID
    expires_at: datetime
    delivered_to: str = Field(..., description="mentor | student")
    otp: Optional[str] = Field(None, description="Present only when the code is delivered to the mentor")
