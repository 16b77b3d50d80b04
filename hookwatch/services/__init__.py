"""Hookwatch services"""
from .mock_data import MockDataGenerator, substitute_variables
from .invoker import WebhookInvoker, classify_network_error
from .validator import (
    ValidationRule, ExpectedStatusCodesRule, ResponseTimeRule, ResponseFieldRule, ResultValidator,
)
from .health import derive_health_status
from .testing_engine import TestOrchestrator, CancellationToken
from .alert_service import AlertEvaluator, rule_matches_scope

__all__ = [
    "MockDataGenerator", "substitute_variables",
    "WebhookInvoker", "classify_network_error",
    "ValidationRule", "ExpectedStatusCodesRule", "ResponseTimeRule", "ResponseFieldRule", "ResultValidator",
    "derive_health_status",
    "TestOrchestrator", "CancellationToken",
    "AlertEvaluator", "rule_matches_scope",
]
