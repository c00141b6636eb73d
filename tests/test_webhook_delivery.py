"""Unit tests for the webhook delivery dispatcher."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import HOOK_URL, RecordingHandler

from pinglater.models import utcnow
from pinglater.webhooks.delivery import DEFAULT_USER_AGENT, WebhookDispatcher
from pinglater.webhooks.signature import sign_payload, verify_signature


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def mock_storage() -> AsyncMock:
    """Create a mock storage instance."""
    storage = AsyncMock()
    storage.find_active_subscribers = AsyncMock(return_value=[])
    storage.log_delivery = AsyncMock()
    return storage


class TestSendOnce:
    """Tests for a single HTTP attempt."""

    async def test_success_headers_and_body(self, mock_storage, handler, http_client):
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)
        payload = b'{"event":"test"}'

        result = await dispatcher.send_once(HOOK_URL, payload, sign_payload(payload, "s3cret"))

        assert result.success
        assert result.status_code == 200
        assert result.response_body == "ok"
        assert result.error is None

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == HOOK_URL
        assert request.content == payload
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
        signature = request.headers["X-Webhook-Signature"]
        assert signature.startswith("sha256=")
        assert verify_signature(request.content, "s3cret", signature)

    async def test_unsigned_has_no_signature_header(self, mock_storage, handler, http_client):
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)
        await dispatcher.send_once(HOOK_URL, b"{}")
        assert "X-Webhook-Signature" not in handler.requests[0].headers

    @pytest.mark.parametrize("status_code", [300, 404, 500, 503])
    async def test_non_2xx_fails(self, mock_storage, status_code):
        handler = RecordingHandler(status_code=status_code, body="nope")
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        result = await dispatcher.send_once(HOOK_URL, b"{}")

        assert not result.success
        assert result.status_code == status_code
        assert result.error == f"HTTP {status_code}"

    async def test_connection_refused(self, mock_storage):
        handler = RecordingHandler(exc=httpx.ConnectError("Connection refused"))
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        result = await dispatcher.send_once(HOOK_URL, b"{}")

        assert not result.success
        assert result.status_code == 0
        assert "Connection refused" in (result.error or "")

    async def test_timeout(self, mock_storage):
        handler = RecordingHandler(exc=httpx.ReadTimeout("timed out"))
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        result = await dispatcher.send_once(HOOK_URL, b"{}")

        assert not result.success
        assert result.status_code == 0
        assert result.error == "Request timeout"

    async def test_unexpected_error_never_raises(self, mock_storage):
        handler = RecordingHandler(exc=RuntimeError("boom"))
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        result = await dispatcher.send_once(HOOK_URL, b"{}")

        assert not result.success
        assert "boom" in (result.error or "")

    async def test_response_body_truncated(self, mock_storage):
        handler = RecordingHandler(body="x" * 5000)
        dispatcher = WebhookDispatcher(
            mock_storage, http_client=_client(handler), response_body_max_chars=1000
        )

        result = await dispatcher.send_once(HOOK_URL, b"{}")

        assert len(result.response_body) == 1000


class TestDispatch:
    """Tests for event fan-out."""

    async def test_no_subscribers(self, mock_storage, handler, http_client):
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)
        assert await dispatcher.dispatch("user_1", "connected") == []
        assert handler.requests == []

    async def test_success_is_recorded(
        self, mock_storage, handler, http_client, make_destination, individual_message
    ):
        destination = make_destination(secret="s3cret")
        mock_storage.find_active_subscribers.return_value = [destination]
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        records = await dispatcher.dispatch("user_1", "message_received", individual_message)

        assert len(records) == 1
        record = records[0]
        assert record.success
        assert record.response_status == 200
        assert record.retry_count == 0
        assert record.next_retry_at is None
        assert record.destination_id == destination.id
        assert record.user_id == "user_1"
        mock_storage.log_delivery.assert_awaited_once_with(record)

        sent = handler.requests[0]
        assert sent.content.decode() == record.payload
        body = json.loads(record.payload)
        assert body["webhook_id"] == destination.id
        assert body["event"] == "message_received"
        assert body["data"]["from_phone"] == "12345678900"
        assert verify_signature(sent.content, "s3cret", sent.headers["X-Webhook-Signature"])

    async def test_failure_schedules_first_retry(self, mock_storage, make_destination):
        handler = RecordingHandler(exc=httpx.ConnectError("Connection refused"))
        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["connected"])
        ]
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        before = utcnow()
        records = await dispatcher.dispatch("user_1", "connected")
        after = utcnow()

        record = records[0]
        assert not record.success
        assert record.response_status == 0
        assert record.retry_count == 0
        assert record.error_message
        assert record.next_retry_at is not None
        assert before + timedelta(minutes=1) <= record.next_retry_at <= after + timedelta(minutes=1)
        assert json.loads(record.payload)["data"] == {"status": "connected"}

    async def test_filters_apply_to_messages(
        self, mock_storage, handler, http_client, make_destination, group_message
    ):
        direct_only = make_destination(filter_chat_type="individual")
        ops_group = make_destination(filter_group_names=["Ops"])
        mock_storage.find_active_subscribers.return_value = [direct_only, ops_group]
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        records = await dispatcher.dispatch("user_1", "message_received", group_message)

        assert [r.destination_id for r in records] == [ops_group.id]
        assert len(handler.requests) == 1

    async def test_each_destination_gets_its_own_attempt(self, mock_storage, make_destination):
        def route(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/down":
                return httpx.Response(500)
            return httpx.Response(204)

        up = make_destination(url="https://hooks.example.com/up", event_types=["connected"])
        down = make_destination(url="https://hooks.example.com/down", event_types=["connected"])
        mock_storage.find_active_subscribers.return_value = [up, down]
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(route))

        records = {r.destination_id: r for r in await dispatcher.dispatch("user_1", "connected")}

        assert records[up.id].success
        assert records[up.id].response_status == 204
        assert not records[down.id].success
        assert records[down.id].response_status == 500
        assert mock_storage.log_delivery.await_count == 2

    async def test_fault_becomes_failed_record(
        self, mock_storage, handler, http_client, make_destination
    ):
        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["message_sent"])
        ]
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        # object() cannot be serialized into the payload
        records = await dispatcher.dispatch("user_1", "message_sent", {"bad": object()})

        assert len(records) == 1
        assert not records[0].success
        assert records[0].error_message.startswith("Unexpected error")
        assert records[0].next_retry_at is None
        assert handler.requests == []

    async def test_storage_error_is_swallowed(
        self, mock_storage, handler, http_client, make_destination
    ):
        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["connected"])
        ]
        mock_storage.log_delivery.side_effect = RuntimeError("qdrant down")
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        records = await dispatcher.dispatch("user_1", "connected")

        assert len(records) == 1
        assert records[0].success

    async def test_record_dropped_when_destination_is_gone(
        self, mock_storage, handler, http_client, make_destination
    ):
        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["connected"])
        ]
        mock_storage.get_destination.return_value = None
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        records = await dispatcher.dispatch("user_1", "connected")

        assert len(records) == 1
        assert len(handler.requests) == 1
        mock_storage.log_delivery.assert_not_called()

    async def test_lookup_error_dispatches_nothing(self, mock_storage, handler, http_client):
        mock_storage.find_active_subscribers.side_effect = RuntimeError("qdrant down")
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        assert await dispatcher.dispatch("user_1", "connected") == []

    async def test_concurrency_is_bounded(self, mock_storage, make_destination):
        in_flight = 0
        peak = 0

        async def slow(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200)

        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["connected"]) for _ in range(6)
        ]
        dispatcher = WebhookDispatcher(
            mock_storage, http_client=_client(slow), max_concurrent=2
        )

        records = await dispatcher.dispatch("user_1", "connected")

        assert len(records) == 6
        assert peak <= 2


class TestDeleteDuringDelivery:
    """Tests for destinations deleted while their delivery is in flight."""

    async def test_failed_first_attempt_leaves_no_record(self, storage, make_destination):
        destination = make_destination(event_types=["connected"])
        await storage.store_destination(destination)

        async def delete_then_fail(request: httpx.Request) -> httpx.Response:
            await storage.delete_destination(destination.id, destination.user_id)
            return httpx.Response(503, text="unavailable")

        async with _client(delete_then_fail) as client:
            dispatcher = WebhookDispatcher(storage, http_client=client)
            records = await dispatcher.dispatch("user_1", "connected")

        assert len(records) == 1
        assert records[0].next_retry_at is not None
        assert await storage.get_destination(destination.id, "user_1") is None
        assert await storage.count_deliveries(destination.id, "user_1") == 0
        assert await storage.get_due_deliveries(utcnow() + timedelta(hours=1), 5) == []

    async def test_surviving_destination_keeps_its_record(self, storage, make_destination):
        destination = make_destination(event_types=["connected"])
        await storage.store_destination(destination)

        async with _client(RecordingHandler(status_code=503)) as client:
            dispatcher = WebhookDispatcher(storage, http_client=client)
            await dispatcher.dispatch("user_1", "connected")

        assert await storage.count_deliveries(destination.id, "user_1") == 1


class TestTrigger:
    """Tests for fire-and-forget dispatch."""

    async def test_trigger_is_tracked(self, mock_storage, handler, http_client, make_destination):
        mock_storage.find_active_subscribers.return_value = [
            make_destination(event_types=["disconnected"])
        ]
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        task = dispatcher.trigger("user_1", "disconnected")
        assert dispatcher.pending == 1

        await dispatcher.wait_idle()

        assert dispatcher.pending == 0
        assert task.done()
        assert len(task.result()) == 1
        assert len(handler.requests) == 1

    async def test_wait_idle_without_tasks(self, mock_storage, http_client):
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)
        await dispatcher.wait_idle()


class TestTestDeliver:
    """Tests for on-demand test deliveries."""

    async def test_sends_static_payload_unpersisted(
        self, mock_storage, handler, http_client, make_destination
    ):
        destination = make_destination(secret="s3cret")
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)

        record = await dispatcher.test_deliver(destination)

        assert record.success
        assert record.event_type == "test"
        assert record.next_retry_at is None
        body = json.loads(handler.requests[0].content)
        assert body["event"] == "test"
        assert body["data"]["test"] is True
        mock_storage.log_delivery.assert_not_called()

    async def test_failure_is_not_retried(self, mock_storage, make_destination):
        handler = RecordingHandler(status_code=500)
        dispatcher = WebhookDispatcher(mock_storage, http_client=_client(handler))

        record = await dispatcher.test_deliver(make_destination())

        assert not record.success
        assert record.response_status == 500
        assert record.next_retry_at is None


class TestClose:
    """Tests for HTTP client ownership."""

    async def test_close_keeps_injected_client(self, mock_storage, http_client):
        dispatcher = WebhookDispatcher(mock_storage, http_client=http_client)
        await dispatcher.close()
        assert not http_client.is_closed

    async def test_close_releases_own_client(self, mock_storage):
        dispatcher = WebhookDispatcher(mock_storage)
        client = dispatcher.http_client
        await dispatcher.close()
        assert client.is_closed
