from enum import Enum


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    MENTOR = "MENTOR"
    HOD = "HOD"
    ADMIN = "ADMIN"
    SECURITY = "SECURITY"


class ParentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MentorStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REJECTED_BY_PARENT = "REJECTED_BY_PARENT"


class SecurityStatus(str, Enum):
    NONE = "NONE"
    EXITED = "EXITED"
    RETURNED = "RETURNED"


class LeaveDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class SecurityAction(str, Enum):
    EXIT = "EXIT"
    ENTRY = "ENTRY"


class OtpDelivery(str, Enum):
    """Who receives the mentor-approval code."""

    MENTOR = "mentor"  # returned in the generate response, read out in person
    STUDENT = "student"  # emailed to the student


class AuditAxis(str, Enum):
    REQUEST = "REQUEST"
    PARENT = "PARENT"
    MENTOR = "MENTOR"
    SECURITY = "SECURITY"
