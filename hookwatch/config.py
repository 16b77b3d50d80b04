"""
HOOKWATCH - Engine Configuration
================================

Configuration (env vars):
    - HOOKWATCH_USER_AGENT: User-Agent sent with every test call
    - HOOKWATCH_DEFAULT_TIMEOUT_SECONDS: Timeout when a webhook has none (default: 30)
    - HOOKWATCH_HEALTH_CHECK_INTERVAL_SECONDS: Realtime health check period (default: 30)
    - HOOKWATCH_MAX_RECONNECT_ATTEMPTS: Auto-reconnect budget (default: 5)
    - HOOKWATCH_SENDGRID_API_KEY / HOOKWATCH_TWILIO_*: Notification providers
    - HOOKWATCH_LOG_LEVEL / HOOKWATCH_LOG_FORMAT: Logging
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class EngineSettings:
    """Settings for the webhook test & monitoring engine."""

    # Invocation
    user_agent: str = field(default_factory=lambda: os.getenv('HOOKWATCH_USER_AGENT', 'Hookwatch-WebhookTester/1.0'))
    default_timeout_seconds: float = field(default_factory=lambda: float(os.getenv('HOOKWATCH_DEFAULT_TIMEOUT_SECONDS', '30')))
    response_body_limit: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_RESPONSE_BODY_LIMIT', '1000')))

    # Performance tests
    batch_pause_ms: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_BATCH_PAUSE_MS', '100')))

    # Realtime subscriptions
    health_check_interval_seconds: float = field(default_factory=lambda: float(os.getenv('HOOKWATCH_HEALTH_CHECK_INTERVAL_SECONDS', '30')))
    max_reconnect_attempts: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_MAX_RECONNECT_ATTEMPTS', '5')))
    initial_reconnect_delay_seconds: float = field(default_factory=lambda: float(os.getenv('HOOKWATCH_INITIAL_RECONNECT_DELAY_SECONDS', '1')))
    max_reconnect_delay_seconds: float = field(default_factory=lambda: float(os.getenv('HOOKWATCH_MAX_RECONNECT_DELAY_SECONDS', '30')))
    cleanup_interval_seconds: float = field(default_factory=lambda: float(os.getenv('HOOKWATCH_CLEANUP_INTERVAL_SECONDS', '3600')))
    execution_retention_hours: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_EXECUTION_RETENTION_HOURS', '24')))
    execution_cache_size: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_EXECUTION_CACHE_SIZE', '50')))

    # Health derivation
    health_window: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_HEALTH_WINDOW', '20')))

    # Logging
    configure_logging: bool = field(default_factory=lambda: _env_bool('HOOKWATCH_CONFIGURE_LOGGING', 'false'))
    log_level: str = field(default_factory=lambda: os.getenv('HOOKWATCH_LOG_LEVEL', 'INFO'))
    log_format: str = field(default_factory=lambda: os.getenv('HOOKWATCH_LOG_FORMAT', 'json'))

    # Email
    email_provider: str = field(default_factory=lambda: os.getenv('HOOKWATCH_EMAIL_PROVIDER', 'sendgrid'))
    sendgrid_api_key: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_SENDGRID_API_KEY'))
    sender_email: str = field(default_factory=lambda: os.getenv('HOOKWATCH_SENDER_EMAIL', 'alerts@hookwatch.local'))
    sender_name: str = field(default_factory=lambda: os.getenv('HOOKWATCH_SENDER_NAME', 'Hookwatch'))
    smtp_host: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_SMTP_HOST'))
    smtp_port: int = field(default_factory=lambda: int(os.getenv('HOOKWATCH_SMTP_PORT', '587')))
    smtp_username: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_SMTP_USERNAME'))
    smtp_password: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_SMTP_PASSWORD'))

    # SMS (Twilio)
    twilio_account_sid: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_TWILIO_ACCOUNT_SID'))
    twilio_auth_token: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_TWILIO_AUTH_TOKEN'))
    twilio_from_number: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_TWILIO_FROM_NUMBER'))

    # Slack
    slack_webhook_url: Optional[str] = field(default_factory=lambda: os.getenv('HOOKWATCH_SLACK_WEBHOOK_URL'))

    def validate(self) -> List[str]:
        """Validate configuration."""
        errors = []
        if self.default_timeout_seconds <= 0:
            errors.append("HOOKWATCH_DEFAULT_TIMEOUT_SECONDS must be positive")
        if self.max_reconnect_attempts < 0:
            errors.append("HOOKWATCH_MAX_RECONNECT_ATTEMPTS cannot be negative")
        if self.initial_reconnect_delay_seconds > self.max_reconnect_delay_seconds:
            errors.append("Initial reconnect delay exceeds the maximum reconnect delay")
        if self.execution_cache_size < 1:
            errors.append("HOOKWATCH_EXECUTION_CACHE_SIZE must be at least 1")
        if self.email_provider not in ("sendgrid", "smtp"):
            errors.append(f"Unsupported email provider: {self.email_provider}")
        if self.log_format not in ("json", "console"):
            errors.append(f"Unsupported log format: {self.log_format}")
        return errors
