"""Hookwatch data models"""
from .entities import (
    utc_now,
    HttpMethod, HealthStatus, TestType, DataGenerationMethod, TestStatus,
    ExecutionType, ExecutionStatus, AlertSeverity, NotificationChannelType, DeliveryStatus,
    WebhookConfig, TestTemplate, ResponseValidationRule, TestConfiguration,
    Execution, ValidationViolation, ErrorBucket, TestResult, PerformanceMetrics,
    Alert, TriggerConditions, ChannelSettings, EscalationLevel,
    NotificationRule, NotificationHistory,
)

__all__ = [
    "utc_now",
    "HttpMethod", "HealthStatus", "TestType", "DataGenerationMethod", "TestStatus",
    "ExecutionType", "ExecutionStatus", "AlertSeverity", "NotificationChannelType", "DeliveryStatus",
    "WebhookConfig", "TestTemplate", "ResponseValidationRule", "TestConfiguration",
    "Execution", "ValidationViolation", "ErrorBucket", "TestResult", "PerformanceMetrics",
    "Alert", "TriggerConditions", "ChannelSettings", "EscalationLevel",
    "NotificationRule", "NotificationHistory",
]
