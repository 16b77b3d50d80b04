"""Hookwatch Core - Exceptions and logging"""
from .exceptions import (
    ErrorSeverity, ErrorCategory, HookwatchException,
    ConfigurationException, WebhookNotFoundException, MissingEndpointException,
    InvalidPayloadException, TemplateNotFoundException,
    ValidationException, SubscriptionException, ConnectionProbeException,
    DeliveryException, PersistenceException, RecordNotFoundException,
    StateTransitionException, ExecutionStateException, AlertStateException,
    is_retryable_exception, format_exception_for_logging,
)
from .logging_config import setup_logging, get_logger, LogContext

__all__ = [
    "ErrorSeverity", "ErrorCategory", "HookwatchException",
    "ConfigurationException", "WebhookNotFoundException", "MissingEndpointException",
    "InvalidPayloadException", "TemplateNotFoundException",
    "ValidationException", "SubscriptionException", "ConnectionProbeException",
    "DeliveryException", "PersistenceException", "RecordNotFoundException",
    "StateTransitionException", "ExecutionStateException", "AlertStateException",
    "is_retryable_exception", "format_exception_for_logging",
    "setup_logging", "get_logger", "LogContext",
]
