"""
Standardized API exception classes with error classification
"""
from typing import Optional, Dict, Any
import uuid


class APIError(Exception):
    """Base API exception with error classification"""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        is_transient: bool = False,
        request_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.is_transient = is_transient  # True if a retry might succeed
        self.request_id = request_id or str(uuid.uuid4())[:8]

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "request_id": self.request_id,
            "is_transient": self.is_transient
        }


class ValidationError(APIError):
    """Input validation errors (400) - permanent error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=400,
            code="VALIDATION_ERROR",
            details=details,
            is_transient=False,
            request_id=request_id
        )


class UnauthorizedError(APIError):
    """Missing or unknown identity (401)"""
    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=401,
            code="UNAUTHORIZED",
            details=details,
            is_transient=False,
            request_id=request_id
        )


class ForbiddenError(APIError):
    """Caller is not allowed to act on this organization (403)"""
    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=403,
            code="FORBIDDEN",
            details=details,
            is_transient=False,
            request_id=request_id
        )


class NotFoundError(APIError):
    """Resource not found (404) - permanent error"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=404,
            code="NOT_FOUND",
            details=details,
            is_transient=False,
            request_id=request_id
        )


class TooManyImportsError(APIError):
    """Concurrent import limit reached (429) - transient"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=429,
            code="TOO_MANY_IMPORTS",
            details=details,
            is_transient=True,
            request_id=request_id
        )
