"""
HOOKWATCH - Webhook Testing Engine Tests
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from hookwatch.channels.notifications import NotificationChannel, NotificationDispatcher
from hookwatch.models.entities import (
    ExecutionType,
    HealthStatus,
    TestConfiguration,
    TestTemplate,
)
from hookwatch.realtime.events import TestCompleted, TestProgress, TestStarted
from hookwatch.services.invoker import WebhookInvoker
from hookwatch.services.testing_engine import (
    COMPREHENSIVE_VARIANTS,
    CancellationToken,
    TestOrchestrator,
)


class RecordingChannel(NotificationChannel):

    def __init__(self):
        self.sent = []

    async def send(self, target, subject, message, metadata=None) -> bool:
        self.sent.append({"target": target, "subject": subject, "metadata": metadata})
        return True


def _body(request: httpx.Request):
    return json.loads(request.content)


def _ok(request):
    return httpx.Response(200, json={"received": True})


def _server_error(request):
    return httpx.Response(500, json={"error": "boom"})


@pytest.fixture
def in_app():
    return RecordingChannel()


@pytest.fixture
def build_orchestrator(repository, event_bus, settings, make_client, in_app):
    """Factory: orchestrator whose HTTP calls go to the given handler."""

    def _build(handler) -> TestOrchestrator:
        invoker = WebhookInvoker(repository, make_client(handler), settings)
        dispatcher = NotificationDispatcher(repository, {"in_app": in_app}, settings)
        return TestOrchestrator(
            repository,
            invoker,
            event_bus=event_bus,
            dispatcher=dispatcher,
            settings=settings,
        )

    return _build


def _assert_counts_consistent(result):
    assert result.total_requests == result.successful_requests + result.failed_requests
    assert result.total_requests == len(result.executions)


# =============================================================================
# QUICK & CUSTOM
# =============================================================================

class TestQuickTest:

    @pytest.mark.asyncio
    async def test_successful_quick_test(self, repository, sample_webhook, build_orchestrator, captured_events):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)

        result = await orchestrator.execute_test(
            sample_webhook.id, sample_webhook.element_id, TestConfiguration(webhook_id=sample_webhook.id)
        )

        assert result.status == "completed"
        assert result.total_requests == 1
        assert result.success_rate == 100.0
        assert result.validation_passed is True
        assert result.completed_at is not None
        assert result.duration_ms is not None
        assert result.executions[0].execution_type == ExecutionType.PREVIEW_TEST
        _assert_counts_consistent(result)

        assert isinstance(captured_events[0], TestStarted)
        assert isinstance(captured_events[-1], TestCompleted)
        assert orchestrator.get_active_tests() == {}

        stored = await repository.get_test_result(result.test_id)
        assert stored.status == "completed"

        webhook = await repository.get_webhook(sample_webhook.id)
        assert webhook.health_status == HealthStatus.HEALTHY
        assert webhook.last_health_check is not None

    @pytest.mark.asyncio
    async def test_failing_endpoint(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_server_error)

        result = await orchestrator.execute_test(
            sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id)
        )

        assert result.status == "failed"
        assert result.total_requests == 1
        assert result.failed_requests == 1
        assert result.success_rate == 0.0
        assert result.validation_passed is False
        assert result.validation_errors[0].rule == "expected_status_codes"
        assert result.errors[0].error_code == "http_500"

    @pytest.mark.asyncio
    async def test_network_failures_make_webhook_unreachable(self, repository, sample_webhook, build_orchestrator):
        def refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(refused)
        config = TestConfiguration(webhook_id=sample_webhook.id)

        for _ in range(3):
            result = await orchestrator.execute_test(sample_webhook.id, None, config)
            assert result.errors[0].error_code == "connection_refused"

        webhook = await repository.get_webhook(sample_webhook.id)
        assert webhook.health_status == HealthStatus.UNREACHABLE

    @pytest.mark.asyncio
    async def test_unexpected_invoker_error_recorded(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        orchestrator.invoker.invoke = AsyncMock(side_effect=RuntimeError("serializer exploded"))

        result = await orchestrator.execute_test(
            sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id)
        )

        assert result.status == "failed"
        assert result.failed_requests == 1
        assert result.errors[0].error_code == "internal_error"

    @pytest.mark.asyncio
    async def test_malformed_endpoint_attaches_stored_record(self, repository, sample_webhook, build_orchestrator):
        webhook = sample_webhook.model_copy(update={"endpoint_url": "http://[::1/hook"})
        await repository.save_webhook(webhook)
        orchestrator = build_orchestrator(_ok)

        result = await orchestrator.execute_test(webhook.id, None, TestConfiguration(webhook_id=webhook.id))

        stored = await repository.recent_executions(webhook.id)
        assert result.status == "failed"
        assert result.errors[0].error_code == "invalid_request"
        assert [(e.id, e.status) for e in stored] == [(result.executions[0].id, "error")]

    @pytest.mark.asyncio
    async def test_custom_test_sends_custom_payload(self, repository, sample_webhook, build_orchestrator):
        seen = []

        def handler(request):
            seen.append(_body(request))
            return httpx.Response(201, json={"created": True})

        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(handler)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            test_type="custom",
            custom_payload='{"order_id": "o-77", "amount": 12.5}',
            expected_status_codes=[201],
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert seen == [{"order_id": "o-77", "amount": 12.5}]
        assert result.status == "completed"
        assert result.validation_passed is True
        assert result.executions[0].test_scenario == "custom"

    @pytest.mark.asyncio
    async def test_custom_test_failure_still_completes(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_server_error)
        config = TestConfiguration(webhook_id=sample_webhook.id, test_type="custom", custom_payload={"a": 1})

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.status == "completed"
        assert result.validation_passed is False


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class TestConfigurationErrors:

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, build_orchestrator):
        calls = []
        orchestrator = build_orchestrator(lambda request: calls.append(request) or httpx.Response(200))

        result = await orchestrator.execute_test("wh_missing", None, TestConfiguration(webhook_id="wh_missing"))

        assert result.status == "failed"
        assert result.total_requests == 0
        assert result.validation_passed is False
        assert result.errors[0].error_code == "CONFIG_002"
        assert calls == []

    @pytest.mark.asyncio
    async def test_inactive_webhook(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook.model_copy(update={"is_active": False}))
        orchestrator = build_orchestrator(_ok)

        result = await orchestrator.execute_test(sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id))

        assert result.status == "failed"
        assert result.errors[0].error_code == "CONFIG_003"

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook.model_copy(update={"endpoint_url": None}))
        orchestrator = build_orchestrator(_ok)

        result = await orchestrator.execute_test(sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id))

        assert result.status == "failed"
        assert result.errors[0].error_code == "CONFIG_003"
        assert "endpoint" in result.errors[0].error_message

    @pytest.mark.asyncio
    async def test_invalid_custom_payload(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            data_generation_method="custom",
            custom_payload="{not json",
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.status == "failed"
        assert result.total_requests == 0
        assert result.errors[0].error_code == "CONFIG_004"

    @pytest.mark.asyncio
    async def test_missing_template(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            data_generation_method="template",
            use_template="tpl_missing",
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.status == "failed"
        assert result.errors[0].error_code == "CONFIG_005"


# =============================================================================
# DATA GENERATION
# =============================================================================

class TestDataGeneration:

    @pytest.mark.asyncio
    async def test_template_with_variables(self, repository, sample_webhook, build_orchestrator):
        seen = []

        def handler(request):
            seen.append(_body(request))
            return httpx.Response(200)

        template = TestTemplate(
            organization_id="org_456",
            name="signup",
            test_data={"user": {"name": "{{name}}"}, "amount": "{{amount}}", "note": "for {{name}}"},
        )
        await repository.save_test_template(template)
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(handler)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            data_generation_method="template",
            use_template=template.id,
            template_variables={"name": "Ana", "amount": 30},
        )

        await orchestrator.execute_test(sample_webhook.id, None, config)

        assert seen == [{"user": {"name": "Ana"}, "amount": 30, "note": "for Ana"}]
        assert template.test_data["user"]["name"] == "{{name}}"

    @pytest.mark.asyncio
    async def test_recorded_payload_replayed(self, repository, sample_webhook, build_orchestrator):
        seen = []

        def handler(request):
            seen.append(_body(request))
            return httpx.Response(200)

        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(handler)

        await orchestrator.execute_test(sample_webhook.id, None, TestConfiguration(
            webhook_id=sample_webhook.id, data_generation_method="custom", custom_payload={"order_id": "o-1"},
        ))
        await orchestrator.execute_test(sample_webhook.id, None, TestConfiguration(
            webhook_id=sample_webhook.id, data_generation_method="recorded",
        ))

        assert seen[1] == {"order_id": "o-1"}

    @pytest.mark.asyncio
    async def test_recorded_falls_back_to_generated(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        config = TestConfiguration(webhook_id=sample_webhook.id, data_generation_method="recorded")

        payload = await orchestrator.generate_test_data(config, sample_webhook)

        assert payload["metadata"]["test_mode"] is True

    def test_parse_custom_payload(self, build_orchestrator):
        orchestrator = build_orchestrator(_ok)

        assert orchestrator.parse_custom_payload(None) is None
        assert orchestrator.parse_custom_payload({"a": 1}) == {"a": 1}
        assert orchestrator.parse_custom_payload('{"a": 1}') == {"a": 1}


# =============================================================================
# COMPREHENSIVE
# =============================================================================

class TestComprehensiveTest:

    @pytest.mark.asyncio
    async def test_variants_are_independent(self, repository, sample_webhook, build_orchestrator):
        def handler(request):
            # only the edge-case variant carries null_value
            if "null_value" in _body(request):
                return httpx.Response(500)
            return httpx.Response(200, json={"ok": True})

        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(handler)
        config = TestConfiguration(webhook_id=sample_webhook.id, test_type="comprehensive")

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.status == "completed"
        assert result.successful_requests == 3
        assert result.failed_requests == 1
        assert [e.test_scenario for e in result.executions] == list(COMPREHENSIVE_VARIANTS)
        assert result.validation_passed is False
        _assert_counts_consistent(result)

    @pytest.mark.asyncio
    async def test_cancel_between_variants(self, repository, sample_webhook, build_orchestrator, event_bus):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        event_bus.subscribe(TestProgress, lambda event: orchestrator.cancel_test(event.result.test_id))

        result = await orchestrator.execute_test(
            sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id, test_type="comprehensive")
        )

        assert result.status == "cancelled"
        assert result.total_requests == 1
        assert orchestrator.get_active_tests() == {}

    @pytest.mark.asyncio
    async def test_precancelled_token(self, repository, sample_webhook, build_orchestrator):
        calls = []
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(lambda request: calls.append(request) or httpx.Response(200))
        token = CancellationToken()
        token.cancel("operator request")

        result = await orchestrator.execute_test(
            sample_webhook.id, None, TestConfiguration(webhook_id=sample_webhook.id), cancellation=token
        )

        assert result.status == "cancelled"
        assert result.total_requests == 0
        assert calls == []

    def test_cancel_unknown_test(self, build_orchestrator):
        assert build_orchestrator(_ok).cancel_test("test_missing") is False


# =============================================================================
# PERFORMANCE
# =============================================================================

class TestPerformanceTest:

    @staticmethod
    def _batch_sizes(event_bus):
        sizes = []
        seen = {"total": 0}

        def on_progress(event):
            sizes.append(event.result.total_requests - seen["total"])
            seen["total"] = event.result.total_requests

        event_bus.subscribe(TestProgress, on_progress)
        return sizes

    @pytest.mark.asyncio
    async def test_batches_without_ramp_up(self, repository, sample_webhook, build_orchestrator, event_bus):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        sizes = self._batch_sizes(event_bus)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            test_type="performance",
            concurrent_requests=3,
            duration_seconds=0.2,
            ramp_up_time_seconds=0,
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.status == "completed"
        assert len(sizes) >= 2
        assert sizes[0] == 1
        assert all(size == 3 for size in sizes[1:])
        assert result.total_requests == sum(sizes)
        assert result.duration_ms < 200 + 250
        assert result.requests_per_second == pytest.approx(
            result.total_requests / (result.duration_ms / 1000), rel=0.05
        )
        assert all(e.test_scenario == "performance" for e in result.executions)
        _assert_counts_consistent(result)

    @pytest.mark.asyncio
    async def test_ramp_up_grows_concurrency(self, repository, sample_webhook, build_orchestrator, event_bus):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        sizes = self._batch_sizes(event_bus)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            test_type="performance",
            concurrent_requests=4,
            duration_seconds=0.5,
            ramp_up_time_seconds=0.2,
        )

        await orchestrator.execute_test(sample_webhook.id, None, config)

        assert sizes[0] == 1
        assert sizes == sorted(sizes)
        assert max(sizes) <= 4

    @pytest.mark.asyncio
    async def test_at_least_one_batch(self, repository, sample_webhook, build_orchestrator):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_server_error)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            test_type="performance",
            concurrent_requests=2,
            duration_seconds=0.001,
            ramp_up_time_seconds=0,
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert result.total_requests >= 1
        assert result.status == "completed"
        assert len(result.errors) == 1
        assert result.errors[0].occurrences == result.failed_requests


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class TestCompletionNotifications:

    @pytest.mark.asyncio
    async def test_notify_on_failure(self, repository, sample_webhook, build_orchestrator, in_app):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_server_error)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            notify_on_failure=True,
            notification_channels=["in_app"],
        )

        result = await orchestrator.execute_test(sample_webhook.id, None, config)

        assert len(in_app.sent) == 1
        assert in_app.sent[0]["target"] == "org_456"
        assert in_app.sent[0]["subject"] == "Webhook test failed: Signup hook"
        assert in_app.sent[0]["metadata"]["test_id"] == result.test_id

    @pytest.mark.asyncio
    async def test_no_notification_on_success_when_only_failures_wanted(
        self, repository, sample_webhook, build_orchestrator, in_app
    ):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            notify_on_failure=True,
            notification_channels=["in_app"],
        )

        await orchestrator.execute_test(sample_webhook.id, None, config)

        assert in_app.sent == []

    @pytest.mark.asyncio
    async def test_notify_on_completion(self, repository, sample_webhook, build_orchestrator, in_app):
        await repository.save_webhook(sample_webhook)
        orchestrator = build_orchestrator(_ok)
        config = TestConfiguration(
            webhook_id=sample_webhook.id,
            notify_on_completion=True,
            notification_channels=["in_app"],
            notification_settings={"in_app_target": "user_9"},
        )

        await orchestrator.execute_test(sample_webhook.id, None, config)

        assert in_app.sent[0]["target"] == "user_9"
        assert in_app.sent[0]["subject"] == "Webhook test completed: Signup hook"
