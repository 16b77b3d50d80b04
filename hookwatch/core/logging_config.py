"""
HOOKWATCH - Structured Logging Module
=====================================
JSON-structured logging with context propagation.

Usage:
    from hookwatch.core.logging_config import setup_logging, get_logger

    # Setup at startup
    setup_logging(level="INFO", format="json")

    # Get logger
    logger = get_logger(__name__)
    logger.info("Test completed", test_id="test-123", webhook_id="wh_1")
"""

import logging
import sys
import json
import os
from typing import Optional
from contextvars import ContextVar

import structlog
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import add_logger_name, ProcessorFormatter

# Context variables for test-scoped data
test_id_var: ContextVar[str] = ContextVar('test_id', default='')
organization_id_var: ContextVar[str] = ContextVar('organization_id', default='')

SENSITIVE_KEYS = {
    'password', 'token', 'secret', 'api_key', 'access_token',
    'authorization', 'cookie', 'auth_token', 'smtp_password'
}


# =============================================================================
# CUSTOM PROCESSORS
# =============================================================================

def add_app_context(logger, method_name, event_dict):
    """Add application context to log events."""
    event_dict['service'] = os.getenv('HOOKWATCH_SERVICE_NAME', 'hookwatch')
    event_dict['environment'] = os.getenv('HOOKWATCH_ENV', 'development')
    return event_dict


def add_test_context(logger, method_name, event_dict):
    """Add test-run context from context variables."""
    if test_id := test_id_var.get():
        event_dict['test_id'] = test_id
    if organization_id := organization_id_var.get():
        event_dict['organization_id'] = organization_id
    return event_dict


def censor_sensitive(logger, method_name, event_dict):
    """Censor sensitive data in log events."""

    def censor_dict(d):
        if not isinstance(d, dict):
            return d

        result = {}
        for key, value in d.items():
            key_lower = str(key).lower()
            if any(s in key_lower for s in SENSITIVE_KEYS):
                if isinstance(value, str) and len(value) > 4:
                    result[key] = value[:2] + '*' * (len(value) - 4) + value[-2:]
                else:
                    result[key] = '***'
            elif isinstance(value, dict):
                result[key] = censor_dict(value)
            elif isinstance(value, list):
                result[key] = [censor_dict(item) if isinstance(item, dict) else item for item in value]
            else:
                result[key] = value
        return result

    return censor_dict(event_dict)


# =============================================================================
# SETUP FUNCTIONS
# =============================================================================

def setup_logging(
    level: str = "INFO",
    format: str = "json",  # "json" or "console"
    log_file: Optional[str] = None
) -> None:
    """
    Setup structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format ("json" or "console")
        log_file: Optional log file path
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        add_log_level,
        add_logger_name,
        TimeStamper(fmt="iso", utc=True),
        add_app_context,
        add_test_context,
        censor_sensitive,
        structlog.stdlib.ExtraAdder(),
    ]

    if format == "json":
        renderer = JSONRenderer(serializer=json.dumps, default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        processors=[
            ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    handlers = [console_handler]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = handlers

    # Reduce noise from third-party libraries
    for lib in ['httpx', 'httpcore', 'asyncio']:
        logging.getLogger(lib).setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound logger instance
    """
    return structlog.get_logger(name or __name__)


# =============================================================================
# CONTEXT MANAGERS
# =============================================================================

class LogContext:
    """Context manager for adding temporary test context to logs."""

    def __init__(self, test_id: str = None, organization_id: str = None):
        self.test_id = test_id
        self.organization_id = organization_id
        self._tokens = []

    def __enter__(self):
        if self.test_id:
            self._tokens.append((test_id_var, test_id_var.set(self.test_id)))
        if self.organization_id:
            self._tokens.append((organization_id_var, organization_id_var.set(self.organization_id)))
        return self

    def __exit__(self, *args):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
