"""
HOOKWATCH - Webhook Invoker
===========================
Fires one test call at a webhook endpoint and records it as an Execution.
"""

import json
import logging
import time
from typing import Optional, Dict, Any

import httpx

from hookwatch.config import EngineSettings
from hookwatch.models.entities import (
    WebhookConfig,
    Execution,
    ExecutionType,
    HttpMethod,
)
from hookwatch.storage.repository import Repository

logger = logging.getLogger(__name__)


def classify_network_error(exc: Exception) -> str:
    """Map a transport failure to an execution error code."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "connection_refused"
    return "network_error"


def classify_request_error(exc: Exception) -> str:
    """Map a failure to build or send the request to an execution error code."""
    # Malformed URLs and headers that cannot be encoded
    if isinstance(exc, (httpx.InvalidURL, UnicodeError, ValueError, TypeError)):
        return "invalid_request"
    return "internal_error"


class WebhookInvoker:
    """
    Sends test requests and persists their executions.

    Never raises to the caller: every outcome, including transport failures,
    ends up in the returned Execution.
    """

    def __init__(
        self,
        repository: Repository,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.repository = repository
        self.settings = settings or EngineSettings()

        # Shared HTTP client for all test calls
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.default_timeout_seconds,
            follow_redirects=True
        )

    def build_headers(self, webhook: WebhookConfig) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            "X-Test-Mode": "true",
            **webhook.headers
        }

    def _new_execution(
        self,
        webhook: WebhookConfig,
        payload: Dict[str, Any],
        execution_type: ExecutionType,
        test_scenario: Optional[str],
    ) -> Execution:
        return Execution(
            organization_id=webhook.organization_id,
            webhook_id=webhook.id,
            element_id=webhook.element_id,
            execution_type=execution_type,
            test_scenario=test_scenario,
            request_url=webhook.endpoint_url or "",
            request_method=HttpMethod(webhook.method).value,
            request_headers=self.build_headers(webhook),
            request_payload=payload,
        )

    def _parse_body(self, text: str) -> Any:
        limit = self.settings.response_body_limit
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except ValueError:
            return {"raw_response": text[:limit]}

        if len(text) > limit:
            return {"raw_response": text[:limit], "truncated": True}
        return parsed

    async def invoke(
        self,
        webhook: WebhookConfig,
        payload: Dict[str, Any],
        execution_type: ExecutionType = ExecutionType.MANUAL_TEST,
        test_scenario: Optional[str] = None,
    ) -> Execution:
        """
        Invoke a webhook once.

        Returns:
            The finalized Execution
        """
        execution = self._new_execution(webhook, payload, execution_type, test_scenario)

        try:
            await self.repository.start_execution(execution)
        except Exception as e:
            logger.warning(f"Failed to record execution start {execution.id}: {e}")

        start_time = time.time()

        try:
            response = await self.http_client.request(
                execution.request_method,
                execution.request_url,
                json=payload,
                headers=execution.request_headers,
                timeout=webhook.timeout_seconds
            )

            response_time_ms = int((time.time() - start_time) * 1000)
            success = 200 <= response.status_code < 300

            execution.finalize(
                success=success,
                status_code=response.status_code,
                response_time_ms=response_time_ms,
                response_body=self._parse_body(response.text),
                error_code=None if success else f"http_{response.status_code}",
                error_message=None if success else f"HTTP {response.status_code}: {response.reason_phrase}",
            )

            if success:
                logger.info(f"Webhook test call succeeded: {webhook.id} -> {response.status_code} ({response_time_ms}ms)")
            else:
                logger.warning(f"Webhook test call failed: {webhook.id} -> {response.status_code}")

        except httpx.HTTPError as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            error_message = str(e) or type(e).__name__
            execution.finalize(
                success=False,
                status_code=0,
                response_time_ms=response_time_ms,
                response_body={"error": error_message},
                error_code=classify_network_error(e),
                error_message=error_message,
            )
            logger.warning(f"Webhook test call network error: {webhook.id} - {error_message}")

        except Exception as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            error_message = str(e) or type(e).__name__
            execution.finalize(
                success=False,
                status_code=0,
                response_time_ms=response_time_ms,
                response_body={"error": error_message},
                error_code=classify_request_error(e),
                error_message=error_message,
            )
            logger.error(f"Webhook test call could not be sent: {webhook.id} - {type(e).__name__}: {error_message}")

        try:
            await self.repository.complete_execution(execution)
        except Exception as e:
            logger.warning(f"Failed to record execution completion {execution.id}: {e}")

        return execution

    def failed_execution(
        self,
        webhook: WebhookConfig,
        payload: Dict[str, Any],
        exc: BaseException,
        execution_type: ExecutionType = ExecutionType.MANUAL_TEST,
        test_scenario: Optional[str] = None,
    ) -> Execution:
        """Finalized failed record for an invoke() that could not return one itself."""
        execution = self._new_execution(webhook, payload, execution_type, test_scenario)
        error_message = str(exc) or type(exc).__name__
        execution.finalize(
            success=False,
            status_code=0,
            response_time_ms=0,
            response_body={"error": error_message},
            error_code="internal_error",
            error_message=error_message,
        )
        logger.error(f"Webhook test call raised unexpectedly: {webhook.id} - {error_message}")
        return execution

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()
