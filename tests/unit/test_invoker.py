"""
HOOKWATCH - Webhook Invoker Tests
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from hookwatch.models.entities import ExecutionStatus, ExecutionType
from hookwatch.services.invoker import WebhookInvoker, classify_network_error, classify_request_error


class TestClassifyNetworkError:

    def test_timeout(self):
        assert classify_network_error(httpx.ReadTimeout("slow")) == "network_timeout"

    def test_connect(self):
        assert classify_network_error(httpx.ConnectError("refused")) == "connection_refused"

    def test_other(self):
        assert classify_network_error(httpx.RemoteProtocolError("bad frame")) == "network_error"

    def test_request_errors(self):
        assert classify_request_error(httpx.InvalidURL("Invalid port")) == "invalid_request"
        assert classify_request_error(UnicodeEncodeError("ascii", "é", 0, 1, "bad")) == "invalid_request"
        assert classify_request_error(RuntimeError("unexpected")) == "internal_error"


class TestWebhookInvoker:
    """Tests for single webhook calls."""

    @pytest.mark.asyncio
    async def test_successful_call(self, repository, sample_webhook, make_client, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"received": True})

        invoker = WebhookInvoker(repository, make_client(handler), settings)
        execution = await invoker.invoke(sample_webhook, {"order_id": "o-1"}, test_scenario="standard")

        assert execution.success is True
        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.response_status_code == 200
        assert execution.response_body == {"received": True}
        assert execution.test_scenario == "standard"
        assert execution.execution_type == ExecutionType.MANUAL_TEST

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/signup"
        assert json.loads(request.content) == {"order_id": "o-1"}
        assert request.headers["X-Test-Mode"] == "true"
        assert request.headers["X-Api-Key"] == "secret-key"
        assert request.headers["User-Agent"] == settings.user_agent

    @pytest.mark.asyncio
    async def test_execution_persisted(self, repository, sample_webhook, make_client, ok_handler, settings):
        invoker = WebhookInvoker(repository, make_client(ok_handler), settings)
        execution = await invoker.invoke(sample_webhook, {})

        stored = await repository.recent_executions(sample_webhook.id)
        assert [e.id for e in stored] == [execution.id]
        assert stored[0].is_finalized

    @pytest.mark.asyncio
    async def test_http_error_status(self, repository, sample_webhook, make_client, settings):
        invoker = WebhookInvoker(
            repository,
            make_client(lambda request: httpx.Response(500, json={"error": "boom"})),
            settings,
        )
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.success is False
        assert execution.status == ExecutionStatus.ERROR
        assert execution.response_status_code == 500
        assert execution.error_code == "http_500"
        assert execution.error_message.startswith("HTTP 500")

    @pytest.mark.asyncio
    async def test_timeout_never_raises(self, repository, sample_webhook, make_client, settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        invoker = WebhookInvoker(repository, make_client(handler), settings)
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.success is False
        assert execution.status == ExecutionStatus.TIMEOUT
        assert execution.response_status_code == 0
        assert execution.error_code == "network_timeout"
        assert execution.response_body == {"error": "timed out"}

    @pytest.mark.asyncio
    async def test_connection_refused(self, repository, sample_webhook, make_client, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        invoker = WebhookInvoker(repository, make_client(handler), settings)
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.status == ExecutionStatus.ERROR
        assert execution.error_code == "connection_refused"

    @pytest.mark.asyncio
    async def test_malformed_url_recorded(self, repository, sample_webhook, make_client, ok_handler, settings):
        webhook = sample_webhook.model_copy(update={"endpoint_url": "http://[::1/hook"})
        invoker = WebhookInvoker(repository, make_client(ok_handler), settings)

        execution = await invoker.invoke(webhook, {})

        assert execution.success is False
        assert execution.status == ExecutionStatus.ERROR
        assert execution.response_status_code == 0
        assert execution.error_code == "invalid_request"

        stored = await repository.recent_executions(webhook.id)
        assert [e.id for e in stored] == [execution.id]
        assert stored[0].status == ExecutionStatus.ERROR.value

    @pytest.mark.asyncio
    async def test_unencodable_header_recorded(self, repository, sample_webhook, make_client, ok_handler, settings):
        webhook = sample_webhook.model_copy(update={"headers": {"X-Team": "équipe"}})
        invoker = WebhookInvoker(repository, make_client(ok_handler), settings)

        execution = await invoker.invoke(webhook, {})

        assert execution.is_finalized
        assert execution.response_status_code == 0
        assert execution.error_code == "invalid_request"

        stored = await repository.recent_executions(webhook.id)
        assert [(e.id, e.status) for e in stored] == [(execution.id, "error")]

    @pytest.mark.asyncio
    async def test_non_json_body_wrapped(self, repository, sample_webhook, make_client, settings):
        invoker = WebhookInvoker(
            repository,
            make_client(lambda request: httpx.Response(200, text="OK, thanks")),
            settings,
        )
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.response_body == {"raw_response": "OK, thanks"}

    @pytest.mark.asyncio
    async def test_oversized_json_body_truncated(self, repository, sample_webhook, make_client, settings):
        settings.response_body_limit = 50
        big = {"data": "x" * 200}
        invoker = WebhookInvoker(
            repository,
            make_client(lambda request: httpx.Response(200, json=big)),
            settings,
        )
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.response_body["truncated"] is True
        assert len(execution.response_body["raw_response"]) == 50

    @pytest.mark.asyncio
    async def test_empty_body(self, repository, sample_webhook, make_client, settings):
        invoker = WebhookInvoker(
            repository,
            make_client(lambda request: httpx.Response(204)),
            settings,
        )
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.success is True
        assert execution.response_body == {}

    @pytest.mark.asyncio
    async def test_repository_failures_do_not_fail_the_call(self, sample_webhook, make_client, ok_handler, settings):
        repo = AsyncMock()
        repo.start_execution.side_effect = RuntimeError("store down")
        repo.complete_execution.side_effect = RuntimeError("store down")

        invoker = WebhookInvoker(repo, make_client(ok_handler), settings)
        execution = await invoker.invoke(sample_webhook, {})

        assert execution.success is True
        repo.complete_execution.assert_awaited_once()

    def test_failed_execution_record(self, repository, sample_webhook, settings):
        invoker = WebhookInvoker(repository, httpx.AsyncClient(), settings)
        execution = invoker.failed_execution(sample_webhook, {"a": 1}, ValueError("bad state"))

        assert execution.is_finalized
        assert execution.error_code == "internal_error"
        assert execution.error_message == "bad state"
        assert execution.response_status_code == 0
