from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EnrollRequest(BaseModel):
    section_id: UUID


class EnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    section_id: UUID
    course_id: UUID
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    faculty_id: Optional[UUID] = None
    faculty_name: Optional[str] = None
    semester: Optional[str] = None
    year: Optional[int] = None
    enrollment_date: datetime
    change_count: int
    changes_remaining: int = Field(..., ge=0)
    last_updated_date: Optional[datetime] = None
    # Earliest time another faculty change is allowed; None once the limit is reached
    next_change_allowed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
