"""
Custom Exception Hierarchy

Structured exceptions shared by the webhook, the operator API and the
background workers. Anything user-facing is converted to a soft apology
before it reaches WhatsApp; these carry the operator-facing detail.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # External service errors (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"
    GENERATION_ERROR = "ERR_5005"
    EMBEDDING_ERROR = "ERR_5006"

    # Conversation state errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"
    SESSION_NOT_FOUND = "ERR_6002"

    # Operator command errors (7xxx)
    TRANSPORT_UNAVAILABLE = "ERR_7001"
    OPERATOR_TIMEOUT = "ERR_7002"
    OPERATOR_COMMAND_FAILED = "ERR_7003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class WhatsAppError(ExternalServiceException):
    """Raised when the WhatsApp gateway fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp gateway error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "WhatsAppError":
        """
        Build a WhatsAppError from an HTTP response.

        Args:
            operation: gateway endpoint name (send, presence, logout)
            response: response object (e.g. httpx.Response)
            message: custom message; built from the status code when omitted
            max_response_chars: truncation for the stored response body
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class GenerationError(ExternalServiceException):
    """Raised when a text-generation backend fails (distinct from empty output)"""

    def __init__(self, provider: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name=provider,
            message=f"{provider} generation failed: {message}",
            error_code=ErrorCode.GENERATION_ERROR,
            details=details
        )


class EmbeddingError(ExternalServiceException):
    """Raised when the embedding backend fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="embeddings",
            message=f"Embedding failed: {message}",
            error_code=ErrorCode.EMBEDDING_ERROR,
            details=details
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class InvalidStateTransitionError(AppException):
    """Raised when a conversation phase change is not allowed"""

    def __init__(self, chat_id: str, current: str, target: str):
        super().__init__(
            message=f"Invalid transition from {current} to {target}",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={"chat_id": chat_id, "current_phase": current, "target_phase": target}
        )


class OperatorCommandError(AppException):
    """Structured failure of an operator console command"""

    def __init__(
        self,
        command: str,
        message: str,
        error_code: ErrorCode = ErrorCode.OPERATOR_COMMAND_FAILED,
        status_code: int = 400,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )
        self.details["command"] = command


class TransportUnavailableError(OperatorCommandError):
    """Raised when a command needs the WhatsApp connection and it is not open"""

    def __init__(self, command: str, connection_state: str):
        super().__init__(
            command=command,
            message="WhatsApp is not connected",
            error_code=ErrorCode.TRANSPORT_UNAVAILABLE,
            status_code=409,
            details={"connection_state": connection_state}
        )


class OperatorTimeoutError(OperatorCommandError):
    """Raised when an operator command does not finish within its timeout"""

    def __init__(self, command: str, timeout_seconds: float):
        super().__init__(
            command=command,
            message=f"{command} did not finish within {timeout_seconds}s",
            error_code=ErrorCode.OPERATOR_TIMEOUT,
            status_code=504,
            details={"timeout_seconds": timeout_seconds}
        )
