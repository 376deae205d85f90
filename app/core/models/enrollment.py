"""
Student enrollment in one section of a course. One row per (student, course):
changing faculty moves the row to another section of the same course.
course_id is denormalised from the section so the database enforces that rule.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_enrollment_student_course"),
        CheckConstraint("change_count >= 0", name="ck_enrollment_change_count"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(UUID(as_uuid=True), ForeignKey("sections.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(UUID(as_uuid=True), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    enrollment_date = Column(DateTime, nullable=False)
    change_count = Column(Integer, nullable=False, default=0)
    # Null until the first faculty change
    last_updated_date = Column(DateTime, nullable=True)

    student = relationship("User", foreign_keys=[student_id])
    section = relationship("Section", foreign_keys=[section_id], lazy="joined")
