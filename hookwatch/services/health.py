"""
HOOKWATCH - Webhook Health
==========================
Derives a webhook's health status from its recent executions.
"""

from typing import Sequence

from hookwatch.models.entities import Execution, HealthStatus

UNREACHABLE_STREAK = 3
HEALTHY_SUCCESS_RATE = 90.0


def is_network_failure(execution: Execution) -> bool:
    return not execution.success and execution.response_status_code == 0


def derive_health_status(executions: Sequence[Execution]) -> HealthStatus:
    """
    Health from executions ordered newest first.

    - no executions: unknown
    - the three most recent are all network failures: unreachable
    - success rate >= 90%: healthy
    - otherwise: degraded
    """
    if not executions:
        return HealthStatus.UNKNOWN

    latest = list(executions[:UNREACHABLE_STREAK])
    if len(latest) == UNREACHABLE_STREAK and all(is_network_failure(e) for e in latest):
        return HealthStatus.UNREACHABLE

    successful = sum(1 for e in executions if e.success)
    success_rate = successful / len(executions) * 100
    if success_rate >= HEALTHY_SUCCESS_RATE:
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED
