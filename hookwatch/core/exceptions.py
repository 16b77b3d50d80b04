"""
HOOKWATCH - Custom Exceptions
Exception hierarchy for the webhook test & monitoring engine.
"""

from typing import Dict, Any, Optional, List
from datetime import datetime, timezone
from enum import Enum
import traceback
import json


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    PROTOCOL = "protocol"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    SUBSCRIPTION = "subscription"
    DELIVERY = "delivery"
    PERSISTENCE = "persistence"
    STATE = "state"
    INTERNAL = "internal"


class HookwatchException(Exception):
    """
    Base exception for all Hookwatch errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'CONFIG_001')
        category: Error category for classification
        severity: Error severity level
        details: Additional error details
        timestamp: When the error occurred
    """

    def __init__(
        self,
        message: str,
        error_code: str = "HW_ERR_001",
        category: ErrorCategory = ErrorCategory.INTERNAL,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause

        full_message = message
        if cause:
            full_message = f"{message} (caused by: {type(cause).__name__}: {cause})"

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        result = {
            "error": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }

        if self.details:
            result["details"] = self.details

        return result

    def to_json(self) -> str:
        """Convert exception to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @property
    def is_retryable(self) -> bool:
        """Check if this error is retryable."""
        return self.category in [
            ErrorCategory.NETWORK,
            ErrorCategory.SUBSCRIPTION,
            ErrorCategory.PERSISTENCE,
        ]


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationException(HookwatchException):
    """Test or engine configuration error, raised before any invocation."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        kwargs.setdefault("error_code", "CONFIG_001")
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs
        )


class WebhookNotFoundException(ConfigurationException):
    """Webhook does not exist."""

    def __init__(self, webhook_id: str, **kwargs):
        super().__init__(
            message=f"Webhook {webhook_id} not found",
            config_key="webhook_id",
            error_code="CONFIG_002",
            **kwargs
        )
        self.details["webhook_id"] = webhook_id


class MissingEndpointException(ConfigurationException):
    """Webhook has no usable endpoint."""

    def __init__(self, webhook_id: str, reason: str = "missing endpoint URL", **kwargs):
        super().__init__(
            message=f"Webhook {webhook_id} cannot be invoked: {reason}",
            config_key="endpoint_url",
            error_code="CONFIG_003",
            **kwargs
        )
        self.details["webhook_id"] = webhook_id


class InvalidPayloadException(ConfigurationException):
    """Custom payload could not be parsed."""

    def __init__(self, reason: str, **kwargs):
        super().__init__(
            message=f"Invalid custom payload: {reason}",
            config_key="custom_payload",
            error_code="CONFIG_004",
            **kwargs
        )


class TemplateNotFoundException(ConfigurationException):
    """Test template does not exist."""

    def __init__(self, template_id: str, **kwargs):
        super().__init__(
            message=f"Test template {template_id} not found",
            config_key="use_template",
            error_code="CONFIG_005",
            **kwargs
        )
        self.details["template_id"] = template_id


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationException(HookwatchException):
    """Result violates configured expectations."""

    def __init__(
        self,
        message: str,
        violations: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if violations:
            details["violations"] = violations

        super().__init__(
            message=message,
            error_code="VAL_001",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details=details,
            **kwargs
        )


# =============================================================================
# SUBSCRIPTION ERRORS
# =============================================================================

class SubscriptionException(HookwatchException):
    """Change-feed connect or listen failure."""

    def __init__(
        self,
        message: str,
        webhook_id: Optional[str] = None,
        topic: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if webhook_id:
            details["webhook_id"] = webhook_id
        if topic:
            details["topic"] = topic

        kwargs.setdefault("error_code", "SUB_001")
        super().__init__(
            message=message,
            category=ErrorCategory.SUBSCRIPTION,
            severity=ErrorSeverity.MEDIUM,
            details=details,
            **kwargs
        )


class ConnectionProbeException(SubscriptionException):
    """Backing store did not answer the connection probe."""

    def __init__(self, message: str = "Connection probe failed", **kwargs):
        super().__init__(message=message, error_code="SUB_002", **kwargs)


# =============================================================================
# DELIVERY ERRORS
# =============================================================================

class DeliveryException(HookwatchException):
    """A single notification channel failed to deliver."""

    def __init__(
        self,
        channel: str,
        message: str,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["channel"] = channel
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=f"[{channel}] {message}",
            error_code="DLV_001",
            category=ErrorCategory.DELIVERY,
            severity=ErrorSeverity.MEDIUM,
            details=details,
            **kwargs
        )
        self.channel = channel


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class PersistenceException(HookwatchException):
    """Backing store read or write failed."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            error_code="DB_001",
            category=ErrorCategory.PERSISTENCE,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs
        )


class RecordNotFoundException(PersistenceException):
    """Record does not exist in the backing store."""

    def __init__(self, resource_type: str, resource_id: str, **kwargs):
        super().__init__(
            message=f"{resource_type} '{resource_id}' not found",
            operation="SELECT",
            **kwargs
        )
        self.error_code = "DB_002"
        self.details["resource_type"] = resource_type
        self.details["resource_id"] = resource_id


# =============================================================================
# STATE TRANSITION ERRORS
# =============================================================================

class StateTransitionException(HookwatchException):
    """An entity was asked to move to a state it cannot reach."""

    def __init__(
        self,
        entity: str,
        current: str,
        requested: str,
        **kwargs
    ):
        kwargs.setdefault("error_code", "STATE_001")
        super().__init__(
            message=f"{entity} cannot transition from '{current}' to '{requested}'",
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )
        self.details["entity"] = entity
        self.details["current"] = current
        self.details["requested"] = requested


class ExecutionStateException(StateTransitionException):
    """Execution was finalized twice."""

    def __init__(self, execution_id: str, current: str, **kwargs):
        super().__init__(
            entity=f"Execution {execution_id}",
            current=current,
            requested="finalized",
            error_code="STATE_002",
            **kwargs
        )


class AlertStateException(StateTransitionException):
    """Alert transition would move backwards."""

    def __init__(self, alert_id: str, current: str, requested: str, **kwargs):
        super().__init__(
            entity=f"Alert {alert_id}",
            current=current,
            requested=requested,
            error_code="STATE_003",
            **kwargs
        )


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_retryable_exception(exc: Exception) -> bool:
    """Check if an exception is retryable."""
    if isinstance(exc, HookwatchException):
        return exc.is_retryable

    retryable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    return isinstance(exc, retryable_types)


def format_exception_for_logging(exc: Exception) -> Dict[str, Any]:
    """Format exception for structured logging."""
    if isinstance(exc, HookwatchException):
        return {
            "exception_type": type(exc).__name__,
            "error_code": exc.error_code,
            "message": exc.message,
            "category": exc.category.value,
            "severity": exc.severity.value,
            "details": exc.details,
            "traceback": traceback.format_exc()
        }

    return {
        "exception_type": type(exc).__name__,
        "message": str(exc),
        "traceback": traceback.format_exc()
    }
