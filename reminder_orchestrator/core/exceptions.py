"""
Custom exception classes for the Payment Reminder Orchestrator.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class SettingsValidationError(BaseAPIException):
    """Reminder settings failed validation; nothing was persisted."""

    def __init__(self, field_errors: Dict[str, str], detail: str = "Invalid reminder settings"):
        self.field_errors = field_errors
        super().__init__(
            status_code=422,
            detail=detail,
            error_code="REM_001",
            context={"field_errors": field_errors},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["field_errors"] = self.field_errors
        return payload


class AuthenticationError(BaseAPIException):
    """Inbound request could not be authenticated."""

    def __init__(self, detail: str = "Unauthorized", reason: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="REM_002",
            context={"reason": reason} if reason else None,
        )


class WebhookAuthenticationError(AuthenticationError):
    """Inbound callback carried a missing or invalid signature."""

    def __init__(self, reason: str = "Invalid webhook signature"):
        super().__init__(detail="Invalid signature", reason=reason)


class InvalidPayloadError(BaseAPIException):
    """Inbound callback payload is malformed or carries an unknown event."""

    def __init__(self, detail: str, **context):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="REM_003",
            context=context,
        )


class ReminderNotFoundError(BaseAPIException):
    """Referenced reminder does not exist."""

    def __init__(self, reminder_ref: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Reminder not found: {reminder_ref}",
            error_code="REM_004",
            context={"reminder": reminder_ref},
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for external service unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        if not detail:
            detail = f"External service '{service_name}' is currently unavailable"

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="REM_005",
            headers=headers,
            context={"service_name": service_name, "retry_after": retry_after, **context},
        )


# External Service Exceptions
class ExternalServiceError(Exception):
    """Exception for external service call errors."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        self.retry_after = retry_after
        self.context = context
        super().__init__(f"[{service_name}] {message}")


class ExternalServiceTimeoutError(ExternalServiceError):
    """Exception for external service timeout errors."""

    def __init__(self, service_name: str, timeout_seconds: float, **context):
        super().__init__(
            service_name=service_name,
            message=f"Service timed out after {timeout_seconds} seconds",
            **context
        )
        self.timeout_seconds = timeout_seconds


class ExternalServiceRateLimitError(ExternalServiceError):
    """Exception for external service rate limiting errors."""

    def __init__(self, service_name: str, retry_after: Optional[int] = None, **context):
        super().__init__(
            service_name=service_name,
            message="Service rate limit exceeded",
            status_code=429,
            retry_after=retry_after,
            **context
        )


class ExternalServiceAuthenticationError(ExternalServiceError):
    """Exception for external service authentication errors."""

    def __init__(self, service_name: str, status_code: Optional[int] = None, **context):
        super().__init__(
            service_name=service_name,
            message="Service authentication failed",
            status_code=status_code,
            **context
        )


class PermanentDeliveryError(Exception):
    """Delivery can never succeed for this destination; do not retry."""

    def __init__(self, detail: str, code: str = "INVALID_PHONE_NUMBER"):
        self.code = code
        super().__init__(f"{code}: {detail}")


# Database Exceptions
class DatabaseError(Exception):
    """Exception for database-related errors."""

    def __init__(self, detail: str, operation: Optional[str] = None, **context):
        self.operation = operation
        if operation:
            context["operation"] = operation
        self.context = context
        super().__init__(detail)

