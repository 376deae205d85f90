from app.core.models.course import Course
from app.core.models.section_model import Section
from app.core.models.enrollment import Enrollment
from app.core.models.leave_request import LeaveRequest
from app.core.models.leave_audit_log import LeaveAuditLog
from app.core.models.system_setting import SystemSetting

__all__ = [
    "Course",
    "Section",
    "Enrollment",
    "LeaveRequest",
    "LeaveAuditLog",
    "SystemSetting",
]
