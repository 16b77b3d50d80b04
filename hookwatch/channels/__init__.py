"""Hookwatch notification channels"""
from .notifications import (
    NotificationChannel, InAppChannel, EmailChannel, SMSChannel, SlackChannel, WebhookChannel,
    NotificationDispatcher, build_default_channels,
)

__all__ = [
    "NotificationChannel", "InAppChannel", "EmailChannel", "SMSChannel", "SlackChannel", "WebhookChannel",
    "NotificationDispatcher", "build_default_channels",
]
