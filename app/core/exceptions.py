"""Custom exception classes and error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": code,
                    "message": message,
                    "details": details or {},
                },
            },
        )


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="AUTH_FAILED",
            message=message,
        )


class PermissionDeniedError(AppException):
    """Permission denied for the requested action."""

    def __init__(
        self,
        message: str = "Permission denied",
        required_role: str | None = None,
    ):
        details = {}
        if required_role:
            details["required_role"] = required_role
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            code="PERMISSION_DENIED",
            message=message,
            details=details,
        )


class ValidationError(AppException):
    """Data validation failed."""

    def __init__(
        self,
        message: str = "Validation error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="VALIDATION_ERROR",
            message=message,
            details=details,
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: str | None = None,
    ):
        details = {}
        if identifier:
            details["identifier"] = identifier
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            code="NOT_FOUND",
            message=f"{resource} not found",
            details=details,
        )


class PreconditionFailedError(AppException):
    """The resource is not in a state that allows the requested action."""

    def __init__(
        self,
        message: str = "Precondition failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            code="PRECONDITION_FAILED",
            message=message,
            details=details,
        )


class InvalidTransitionError(PreconditionFailedError):
    """Lifecycle transition is not legal from the current status."""

    def __init__(self, current_status: str, event: str):
        super().__init__(
            message=f"Cannot {event.replace('_', ' ')} a marksheet in status '{current_status}'",
            details={"current_status": current_status, "event": event},
        )
        self.current_status = current_status
        self.event = event


class ConflictError(AppException):
    """The resource was modified concurrently."""

    def __init__(
        self,
        message: str = "Resource was modified by another request",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            code="CONFLICT",
            message=message,
            details=details,
        )


class ServiceUnavailableError(AppException):
    """A backing service (database, provider) is unreachable."""

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code="SERVICE_UNAVAILABLE",
            message=message,
        )


class DispatchFailedError(AppException):
    """WhatsApp delivery failed. The failure has already been recorded."""

    def __init__(
        self,
        message: str = "Dispatch failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="DISPATCH_FAILED",
            message=message,
            details=details,
        )
