"""Unit tests for PingLater webhook models."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from pinglater.models import (
    DeliveryRecord,
    DeliveryStats,
    Destination,
    DestinationCreate,
    DestinationUpdate,
    MessageData,
    WebhookPayload,
    generate_id,
)


class TestGenerateId:
    """Tests for generate_id()."""

    def test_prefix_and_length(self):
        whk = generate_id("whk")
        assert whk.startswith("whk_")
        assert len(whk) == len("whk_") + 12

    def test_unique(self):
        assert generate_id("dlv") != generate_id("dlv")


class TestDestination:
    """Tests for Destination validation."""

    def test_defaults(self):
        destination = Destination(
            user_id="user_1",
            url="https://example.com/hook",
            event_types=["message_received"],
        )
        assert destination.id.startswith("whk_")
        assert destination.active is True
        assert destination.secret is None
        assert not destination.is_signed
        assert destination.filter_chat_type == "all"
        assert destination.filter_phone_match_type == "whitelist"
        assert destination.filter_phone_numbers == []
        assert destination.created_at.tzinfo is not None

    def test_event_types_normalized(self):
        destination = Destination(
            user_id="user_1",
            url="https://example.com/hook",
            event_types=[" Message_Received", "CONNECTED", "message_received"],
        )
        assert destination.event_types == ["message_received", "connected"]

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValidationError):
            Destination(user_id="u", url="https://example.com/hook", event_types=["typing"])

    def test_empty_event_types_rejected(self):
        with pytest.raises(ValidationError):
            Destination(user_id="u", url="https://example.com/hook", event_types=[])

    @pytest.mark.parametrize("url", ["not a url", "example.com/hook", "ftp://example.com/x", ""])
    def test_invalid_url_rejected(self, url):
        with pytest.raises(ValidationError):
            Destination(user_id="u", url=url, event_types=["connected"])

    def test_filter_lists_trimmed(self):
        destination = Destination(
            user_id="u",
            url="https://example.com/hook",
            event_types=["message_received"],
            filter_group_names=[" Ops ", "", "  "],
        )
        assert destination.filter_group_names == ["Ops"]

    def test_filter_values_may_contain_commas(self):
        destination = Destination(
            user_id="u",
            url="https://example.com/hook",
            event_types=["message_received"],
            filter_group_names=["Friends, Family"],
        )
        assert destination.filter_group_names == ["Friends, Family"]

    def test_subscribes_to(self):
        destination = Destination(
            user_id="u", url="https://example.com/hook", event_types=["connected"]
        )
        assert destination.subscribes_to("CONNECTED")
        assert not destination.subscribes_to("disconnected")
        destination.active = False
        assert not destination.subscribes_to("connected")

    def test_signed_with_secret(self):
        destination = Destination(
            user_id="u", url="https://example.com/hook", event_types=["connected"], secret="s"
        )
        assert destination.is_signed


class TestDestinationRequests:
    """Tests for DestinationCreate and DestinationUpdate."""

    def test_create_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            DestinationCreate(
                url="https://example.com/hook",
                event_types=["connected"],
                user_id="someone_else",
            )

    def test_update_reports_only_supplied_fields(self):
        update = DestinationUpdate(active=False)
        assert update.changes() == {"active": False}

    def test_update_empty_list_clears(self):
        update = DestinationUpdate.model_validate({"filter_group_names": []})
        assert update.changes() == {"filter_group_names": []}

    def test_update_null_list_clears(self):
        update = DestinationUpdate.model_validate({"filter_phone_numbers": None})
        assert update.changes() == {"filter_phone_numbers": []}

    def test_update_url_serialized(self):
        update = DestinationUpdate(url="https://example.com/new-hook")
        assert update.changes() == {"url": "https://example.com/new-hook"}

    def test_update_normalizes_event_types(self):
        update = DestinationUpdate(event_types=["Connected", "connected"])
        assert update.changes() == {"event_types": ["connected"]}


class TestMessageData:
    """Tests for MessageData wire aliases."""

    def test_from_wire_keys(self):
        message = MessageData.model_validate(
            {"from": "123@s.whatsapp.net", "from_phone": "123", "content": "hi"}
        )
        assert message.sender_id == "123@s.whatsapp.net"
        assert message.sender_phone == "123"

    def test_to_wire(self, group_message):
        wire = group_message.to_wire()
        assert wire["from"] == "120363000000000000@g.us"
        assert wire["from_phone"] == "12345678900"
        assert wire["is_group"] is True
        assert wire["group_name"] == "Ops"
        assert wire["timestamp"] == 1_700_000_100
        assert "sender_id" not in wire
        assert "from_name" not in wire

    def test_group_jid_prefers_group_id(self, group_message):
        assert group_message.group_jid == "120363000000000000@g.us"
        assert MessageData(sender_id="9@g.us", is_group=True).group_jid == "9@g.us"


class TestWebhookPayload:
    """Tests for the delivery envelope."""

    def test_message_payload(self, individual_message):
        payload = WebhookPayload.build("whk_1", "message_received", individual_message)
        body = json.loads(payload.to_bytes())
        assert set(body) == {"webhook_id", "event", "timestamp", "data"}
        assert body["webhook_id"] == "whk_1"
        assert body["event"] == "message_received"
        assert body["data"]["from"] == "12345678900@s.whatsapp.net"
        assert body["data"]["content"] == "hello"
        assert datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00")).tzinfo

    def test_connection_payload(self):
        body = json.loads(WebhookPayload.build("whk_1", "connected").to_bytes())
        assert body["data"] == {"status": "connected"}

    def test_test_payload(self):
        body = json.loads(WebhookPayload.for_test("whk_1").to_bytes())
        assert body["event"] == "test"
        assert body["data"] == {"test": True, "message": "This is a test webhook from PingLater"}

    def test_mapping_passed_through(self):
        body = json.loads(WebhookPayload.build("whk_1", "message_sent", {"to": "1"}).to_bytes())
        assert body["data"] == {"to": "1"}


class TestDeliveryRecord:
    """Tests for DeliveryRecord state."""

    def _record(self, **overrides) -> DeliveryRecord:
        fields = {
            "destination_id": "whk_1",
            "user_id": "user_1",
            "event_type": "connected",
            "payload": "{}",
        }
        fields.update(overrides)
        return DeliveryRecord(**fields)

    def test_defaults(self):
        record = self._record()
        assert record.id.startswith("dlv_")
        assert record.retry_count == 0
        assert record.response_status == 0
        assert record.state() == "exhausted"

    def test_pending_retry(self):
        record = self._record(next_retry_at=datetime.now(UTC) + timedelta(minutes=1))
        assert record.state() == "pending_retry"

    def test_success_with_next_retry_rejected(self):
        with pytest.raises(ValidationError):
            self._record(success=True, next_retry_at=datetime.now(UTC))

    def test_negative_retry_count_rejected(self):
        with pytest.raises(ValidationError):
            self._record(retry_count=-1)

    def test_record_failure(self):
        record = self._record()
        record.record_outcome(False, 503, "busy", "HTTP 503")
        assert not record.success
        assert record.response_status == 503
        assert record.response_body == "busy"
        assert record.error_message == "HTTP 503"

    def test_record_success_clears_error_and_retry(self):
        record = self._record(
            error_message="HTTP 500", next_retry_at=datetime.now(UTC) + timedelta(minutes=5)
        )
        record.record_outcome(True, 200, None, None)
        assert record.success
        assert record.error_message is None
        assert record.next_retry_at is None
        assert record.response_body == ""


class TestDeliveryStats:
    """Tests for success rate formatting."""

    @pytest.mark.parametrize(
        ("successful", "total", "expected"),
        [(1, 1, "100.00%"), (0, 0, "0.00%"), (1, 3, "33.33%"), (2, 3, "66.67%"), (0, 4, "0.00%")],
    )
    def test_format_rate(self, successful, total, expected):
        assert DeliveryStats.format_rate(successful, total) == expected
