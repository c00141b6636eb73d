"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from pinglater.config import Settings
from pinglater.models import Destination, MessageData
from pinglater.storage import WebhookStorage

HOOK_URL = "https://hooks.example.com/inbox"


class RecordingHandler:
    """httpx.MockTransport handler that records requests.

    Responds with a fixed status, or raises the given exception to
    simulate a transport failure.
    """

    def __init__(self, status_code: int = 200, body: str = "ok", exc: Exception | None = None):
        self.status_code = status_code
        self.body = body
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, text=self.body)


@pytest.fixture
def handler() -> RecordingHandler:
    """A handler answering 200 OK."""
    return RecordingHandler()


@pytest.fixture
def http_client(handler: RecordingHandler):
    """AsyncClient routed through the recording handler."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an isolated in-memory deployment."""
    return Settings(
        env="test",
        qdrant_location=":memory:",
        collection_prefix="test",
        auth_enabled=False,
        log_format="text",
    )


@pytest.fixture
async def storage():
    """Create an in-memory storage instance for testing.

    Uses qdrant-client's local mode with in-memory storage.
    """
    store = WebhookStorage(prefix="test", location=":memory:")
    await store.initialize()

    yield store

    await store.close()


@pytest.fixture
def make_destination() -> Callable[..., Destination]:
    """Factory for destinations with sensible defaults."""

    def _make(**overrides: Any) -> Destination:
        fields: dict[str, Any] = {
            "user_id": "user_1",
            "url": HOOK_URL,
            "event_types": ["message_received"],
        }
        fields.update(overrides)
        return Destination(**fields)

    return _make


@pytest.fixture
def individual_message() -> MessageData:
    """A direct message from a single sender."""
    return MessageData(
        sender_id="12345678900@s.whatsapp.net",
        sender_phone="12345678900",
        sender_name="Ada",
        content="hello",
        message_id="msg_1",
        timestamp=1_700_000_000,
    )


@pytest.fixture
def group_message() -> MessageData:
    """A message posted in a group chat."""
    return MessageData(
        sender_id="120363000000000000@g.us",
        sender_phone="12345678900",
        content="standup in 5",
        message_id="msg_2",
        is_group=True,
        group_id="120363000000000000@g.us",
        group_name="Ops",
        timestamp=1_700_000_100,
    )
