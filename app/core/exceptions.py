from enum import Enum
from typing import Any, Dict

from fastapi import HTTPException, status


class ErrorCategory(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    STATE_CONFLICT = "STATE_CONFLICT"
    POLICY_DENIED = "POLICY_DENIED"
    CREDENTIAL_INVALID = "CREDENTIAL_INVALID"
    VALIDATION = "VALIDATION"


class ErrorCode(str, Enum):
    STUDENT_NOT_FOUND = "STUDENT_NOT_FOUND"
    MENTOR_NOT_FOUND = "MENTOR_NOT_FOUND"
    LEAVE_NOT_FOUND = "LEAVE_NOT_FOUND"
    SECTION_NOT_FOUND = "SECTION_NOT_FOUND"
    NO_ACTIVE_LEAVE = "NO_ACTIVE_LEAVE"
    UNAUTHORIZED = "UNAUTHORIZED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    ALREADY_ENROLLED = "ALREADY_ENROLLED"
    PARENT_APPROVAL_REQUIRED = "PARENT_APPROVAL_REQUIRED"
    OTP_ALREADY_ISSUED = "OTP_ALREADY_ISSUED"
    NOT_EXITED = "NOT_EXITED"
    CHANGE_LIMIT_EXCEEDED = "CHANGE_LIMIT_EXCEEDED"
    CHANGE_FROZEN = "CHANGE_FROZEN"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    TOKEN_INVALID_OR_CONSUMED = "TOKEN_INVALID_OR_CONSUMED"
    OTP_INVALID_OR_EXPIRED = "OTP_INVALID_OR_EXPIRED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


_CATEGORY = {
    ErrorCode.STUDENT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.MENTOR_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.LEAVE_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.SECTION_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.NO_ACTIVE_LEAVE: ErrorCategory.NOT_FOUND,
    ErrorCode.UNAUTHORIZED: ErrorCategory.UNAUTHORIZED,
    ErrorCode.ALREADY_PROCESSED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.ALREADY_ENROLLED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.PARENT_APPROVAL_REQUIRED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.OTP_ALREADY_ISSUED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.NOT_EXITED: ErrorCategory.STATE_CONFLICT,
    ErrorCode.CHANGE_LIMIT_EXCEEDED: ErrorCategory.POLICY_DENIED,
    ErrorCode.CHANGE_FROZEN: ErrorCategory.POLICY_DENIED,
    ErrorCode.FEATURE_DISABLED: ErrorCategory.POLICY_DENIED,
    ErrorCode.TOKEN_INVALID_OR_CONSUMED: ErrorCategory.CREDENTIAL_INVALID,
    ErrorCode.OTP_INVALID_OR_EXPIRED: ErrorCategory.CREDENTIAL_INVALID,
    ErrorCode.VALIDATION_ERROR: ErrorCategory.VALIDATION,
}

_HTTP_STATUS = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorCategory.STATE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.POLICY_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCategory.CREDENTIAL_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.VALIDATION: status.HTTP_400_BAD_REQUEST,
}


class ServiceError(Exception):
    """Base exception for service layer errors.

    Every error carries a machine-readable ``code``; ``extra`` holds additional
    caller-facing fields (e.g. ``retry_after_hours`` for CHANGE_FROZEN).
    """

    def __init__(self, code: ErrorCode, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra = extra

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY[self.code]

    @property
    def status_code(self) -> int:
        return _HTTP_STATUS[self.category]

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, **self.extra}

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_detail())
