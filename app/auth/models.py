import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.enums import UserRole
from app.db.session import Base


class User(Base):
    """Campus user (student, faculty, mentor, HOD, admin or security staff).

    Accounts are owned by the external identity provider; ``external_uid`` is the
    provider's subject id and is what bearer tokens carry.
    """

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    external_uid = Column(String(128), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default=UserRole.STUDENT.value)
    # Students only
    roll_number = Column(String(50), nullable=True, unique=True, index=True)
    department = Column(String(100), nullable=True)
    # Assigned mentor; leave approvals route to this user
    mentor_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    mentor = relationship("User", remote_side=[id], foreign_keys=[mentor_id])
