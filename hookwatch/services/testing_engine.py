"""
HOOKWATCH - Webhook Testing Engine
==================================
Runs quick, comprehensive, performance and custom tests against a webhook
and aggregates the executions into a TestResult.

A test always returns a result: configuration problems fail the test
instead of raising, and cancellation is cooperative (checked between
variants and batches, in-flight calls finish).
"""

import asyncio
import copy
import json
import logging
import time
from typing import Optional, Dict, Any, Tuple, Callable

from hookwatch.config import EngineSettings
from hookwatch.core.exceptions import (
    ConfigurationException,
    WebhookNotFoundException,
    MissingEndpointException,
    InvalidPayloadException,
    TemplateNotFoundException,
)
from hookwatch.core.logging_config import LogContext
from hookwatch.models.entities import (
    WebhookConfig,
    TestConfiguration,
    TestResult,
    TestStatus,
    TestType,
    DataGenerationMethod,
    Execution,
    ExecutionType,
    NotificationChannelType,
    utc_now,
)
from hookwatch.realtime.events import EventBus, MonitoringEvent, TestStarted, TestProgress, TestCompleted
from hookwatch.services.health import derive_health_status
from hookwatch.services.invoker import WebhookInvoker
from hookwatch.services.mock_data import MockDataGenerator, substitute_variables
from hookwatch.services.validator import ResultValidator, ResponseFieldRule
from hookwatch.storage.repository import Repository

logger = logging.getLogger(__name__)

COMPREHENSIVE_VARIANTS = ("standard", "minimal", "maximal", "edge_case")


class CancellationToken:
    """Cooperative cancellation flag for a running test."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None):
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class TestOrchestrator:
    """
    Service for executing webhook tests.
    """
    __test__ = False

    def __init__(
        self,
        repository: Repository,
        invoker: WebhookInvoker,
        validator: Optional[ResultValidator] = None,
        mock_data: Optional[MockDataGenerator] = None,
        event_bus: Optional[EventBus] = None,
        dispatcher=None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.invoker = invoker
        self.validator = validator or ResultValidator()
        self.mock_data = mock_data or MockDataGenerator()
        self.event_bus = event_bus
        self.dispatcher = dispatcher
        self.settings = settings or EngineSettings()
        self.clock = clock

        # test_id -> (result, token)
        self._active: Dict[str, Tuple[TestResult, CancellationToken]] = {}

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def execute_test(
        self,
        webhook_id: str,
        element_id: Optional[str],
        configuration: TestConfiguration,
        cancellation: Optional[CancellationToken] = None,
    ) -> TestResult:
        """
        Run a test to completion.

        Returns:
            The finalized TestResult (completed, failed or cancelled)
        """
        token = cancellation or CancellationToken()
        result = TestResult(
            webhook_id=webhook_id,
            element_id=element_id,
            test_configuration=configuration,
        )
        self._active[result.test_id] = (result, token)

        with LogContext(test_id=result.test_id):
            result.transition(TestStatus.RUNNING)
            await self._publish(TestStarted(result))
            logger.info(f"Test {result.test_id} started: {configuration.test_type} on webhook {webhook_id}")

            webhook: Optional[WebhookConfig] = None
            start = self.clock()

            try:
                webhook = await self._load_webhook(webhook_id)
                payload = await self.generate_test_data(configuration, webhook, element_id)

                runners = {
                    TestType.QUICK: self._run_quick,
                    TestType.COMPREHENSIVE: self._run_comprehensive,
                    TestType.PERFORMANCE: self._run_performance,
                    TestType.CUSTOM: self._run_custom,
                }
                runner = runners[TestType(configuration.test_type)]
                await runner(result, webhook, payload, configuration, token)

                if token.cancelled:
                    result.transition(TestStatus.CANCELLED)
                elif configuration.test_type == TestType.QUICK and result.failed_requests:
                    result.transition(TestStatus.FAILED)
                else:
                    result.transition(TestStatus.COMPLETED)

            except ConfigurationException as e:
                logger.error(f"Test {result.test_id} configuration error: {e.message}")
                result.record_error(e.error_code, e.message)
                result.transition(TestStatus.FAILED)

            except Exception as e:
                logger.error(f"Test {result.test_id} failed unexpectedly: {type(e).__name__}: {e}")
                result.record_error("internal_error", str(e) or type(e).__name__)
                result.transition(TestStatus.FAILED)

            await self._finalize(result, webhook, configuration, self.clock() - start)

        return result

    def cancel_test(self, test_id: str, reason: Optional[str] = None) -> bool:
        """Request cancellation of a running test."""
        entry = self._active.get(test_id)
        if not entry:
            return False
        entry[1].cancel(reason)
        logger.info(f"Test {test_id} cancellation requested")
        return True

    def get_active_tests(self) -> Dict[str, TestResult]:
        return {test_id: result for test_id, (result, _) in self._active.items()}

    # =========================================================================
    # PREPARATION
    # =========================================================================

    async def _load_webhook(self, webhook_id: str) -> WebhookConfig:
        webhook = await self.repository.get_webhook(webhook_id)
        if not webhook:
            raise WebhookNotFoundException(webhook_id)
        if not webhook.is_active:
            raise MissingEndpointException(webhook_id, reason="webhook is inactive")
        if not webhook.endpoint_url:
            raise MissingEndpointException(webhook_id)
        return webhook

    def parse_custom_payload(self, raw: Any) -> Optional[Dict[str, Any]]:
        """Mapping as-is, JSON string parsed into a mapping."""
        if raw is None:
            return None
        if isinstance(raw, dict):
            return raw
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidPayloadException(str(e))
        if not isinstance(parsed, dict):
            raise InvalidPayloadException("payload must be a JSON object")
        return parsed

    async def generate_test_data(
        self,
        configuration: TestConfiguration,
        webhook: WebhookConfig,
        element_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        method = DataGenerationMethod(configuration.data_generation_method)

        if method == DataGenerationMethod.TEMPLATE:
            if not configuration.use_template:
                raise ConfigurationException(
                    "Template data generation requires use_template",
                    config_key="use_template",
                )
            template = await self.repository.get_test_template(configuration.use_template)
            if not template:
                raise TemplateNotFoundException(configuration.use_template)
            return substitute_variables(copy.deepcopy(template.test_data), configuration.template_variables)

        if method == DataGenerationMethod.CUSTOM:
            return self.parse_custom_payload(configuration.custom_payload) or {}

        if method == DataGenerationMethod.RECORDED:
            recorded = await self.repository.latest_successful_payload(
                webhook.id, element_id or webhook.element_id
            )
            if recorded:
                return recorded
            logger.info(f"No recorded payload for webhook {webhook.id}, using generated data")

        return self.mock_data.generate_custom_payload()

    # =========================================================================
    # TEST TYPES
    # =========================================================================

    async def _invoke(
        self,
        webhook: WebhookConfig,
        payload: Dict[str, Any],
        test_scenario: Optional[str] = None,
    ) -> Execution:
        try:
            return await self.invoker.invoke(webhook, payload, ExecutionType.PREVIEW_TEST, test_scenario)
        except Exception as e:
            return self.invoker.failed_execution(webhook, payload, e, ExecutionType.PREVIEW_TEST, test_scenario)

    async def _run_quick(self, result, webhook, payload, configuration, token):
        if token.cancelled:
            return
        result.attach(await self._invoke(webhook, payload))
        await self._publish(TestProgress(result, completed_steps=1, total_steps=1))

    async def _run_custom(self, result, webhook, payload, configuration, token):
        body = self.parse_custom_payload(configuration.custom_payload)
        if token.cancelled:
            return
        result.attach(await self._invoke(webhook, body if body is not None else payload, "custom"))
        await self._publish(TestProgress(result, completed_steps=1, total_steps=1))

    async def _run_comprehensive(self, result, webhook, payload, configuration, token):
        variants = list(zip(COMPREHENSIVE_VARIANTS, [
            payload,
            self.mock_data.create_minimal_payload(payload),
            self.mock_data.create_maximal_payload(payload),
            self.mock_data.create_edge_case_payload(payload),
        ]))

        for index, (name, data) in enumerate(variants, start=1):
            if token.cancelled:
                logger.info(f"Test {result.test_id} cancelled before variant {name}")
                return
            result.attach(await self._invoke(webhook, data, name))
            await self._publish(TestProgress(result, completed_steps=index, total_steps=len(variants)))

    async def _run_performance(self, result, webhook, payload, configuration, token):
        target = configuration.concurrent_requests
        ramp_up = configuration.ramp_up_time_seconds
        ramp_interval = ramp_up / target
        batch_pause = self.settings.batch_pause_ms / 1000

        start = self.clock()
        deadline = start + configuration.duration_seconds
        concurrency = 0
        batches = 0

        while not token.cancelled:
            now = self.clock()
            if batches and now >= deadline:
                break

            in_ramp_up = now - start < ramp_up
            if batches == 0:
                concurrency = 1
            elif in_ramp_up:
                concurrency = min(target, concurrency + 1)
            else:
                concurrency = target

            outcomes = await asyncio.gather(
                *[
                    self.invoker.invoke(webhook, payload, ExecutionType.PREVIEW_TEST, "performance")
                    for _ in range(concurrency)
                ],
                return_exceptions=True
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    outcome = self.invoker.failed_execution(
                        webhook, payload, outcome, ExecutionType.PREVIEW_TEST, "performance"
                    )
                result.attach(outcome)

            batches += 1
            await self._publish(TestProgress(result, completed_steps=batches))

            now = self.clock()
            remaining = deadline - now
            if remaining <= 0:
                break

            pause = ramp_interval if (now - start < ramp_up and concurrency < target) else batch_pause
            await asyncio.sleep(min(pause, remaining))

        logger.info(f"Performance test {result.test_id} ran {batches} batch(es), {result.total_requests} request(s)")

    # =========================================================================
    # FINALIZATION
    # =========================================================================

    async def _finalize(
        self,
        result: TestResult,
        webhook: Optional[WebhookConfig],
        configuration: TestConfiguration,
        elapsed_seconds: float,
    ):
        result.compute_statistics(elapsed_seconds)

        if result.executions:
            extra_rules = []
            if configuration.response_validation_rules:
                extra_rules.append(ResponseFieldRule())
            self.validator.validate(result, configuration, extra_rules=extra_rules)

        result.completed_at = utc_now()
        result.duration_ms = int(elapsed_seconds * 1000)

        try:
            await self.repository.save_test_result(result)
        except Exception as e:
            logger.error(f"Failed to save test result {result.test_id}: {e}")

        if webhook:
            await self._refresh_health(webhook)

        await self._notify(result, webhook, configuration)

        self._active.pop(result.test_id, None)
        await self._publish(TestCompleted(result))

        logger.info(
            f"Test {result.test_id} {result.status}: "
            f"{result.successful_requests}/{result.total_requests} succeeded, "
            f"validation {'passed' if result.validation_passed else 'failed'}"
        )

    async def _refresh_health(self, webhook: WebhookConfig):
        try:
            recent = await self.repository.recent_executions(webhook.id, limit=self.settings.health_window)
            status = derive_health_status(recent)
            await self.repository.update_webhook_health(webhook.id, status)
        except Exception as e:
            logger.warning(f"Failed to refresh health for webhook {webhook.id}: {e}")

    def _notification_target(
        self,
        channel: str,
        settings: Dict[str, Any],
        webhook: Optional[WebhookConfig],
    ) -> Optional[str]:
        if channel == NotificationChannelType.IN_APP.value:
            return settings.get("in_app_target") or (webhook.organization_id if webhook else None)
        if channel == NotificationChannelType.EMAIL.value:
            return settings.get("email_address")
        if channel == NotificationChannelType.SMS.value:
            return settings.get("phone_number")
        if channel == NotificationChannelType.SLACK.value:
            return settings.get("slack_webhook_url") or self.settings.slack_webhook_url
        if channel == NotificationChannelType.WEBHOOK.value:
            return settings.get("webhook_url")
        return None

    async def _notify(
        self,
        result: TestResult,
        webhook: Optional[WebhookConfig],
        configuration: TestConfiguration,
    ):
        failed = result.status == TestStatus.FAILED or not result.validation_passed
        wanted = configuration.notify_on_completion or (configuration.notify_on_failure and failed)
        if not wanted or not self.dispatcher or not configuration.notification_channels:
            return

        targets = {
            NotificationChannelType(channel).value: self._notification_target(
                NotificationChannelType(channel).value, configuration.notification_settings, webhook
            )
            for channel in configuration.notification_channels
        }
        name = webhook.name if webhook else result.webhook_id
        subject = f"Webhook test {result.status}: {name}"
        message = (
            f"{configuration.test_type} test finished with {result.successful_requests}/"
            f"{result.total_requests} successful request(s); validation "
            f"{'passed' if result.validation_passed else 'failed'}."
        )
        metadata = {
            "test_id": result.test_id,
            "webhook_id": result.webhook_id,
            "status": result.status,
            "severity": "warning" if failed else "info",
        }

        try:
            status, errors = await self.dispatcher.send_to_channels(targets, subject, message, metadata)
            if errors:
                logger.warning(f"Test {result.test_id} notification errors: {errors}")
        except Exception as e:
            logger.error(f"Failed to send notifications for test {result.test_id}: {e}")

    async def _publish(self, event: MonitoringEvent):
        if self.event_bus:
            await self.event_bus.publish(event)
