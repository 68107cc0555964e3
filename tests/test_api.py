"""Tests for the HTTP endpoints, run in-process against a SQLite database."""

import json
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from src.api.routes import ChatRequest, _active_streams, app
from src.config import AnthropicSettings, Settings, WebhookSettings
from src.errors import InvalidPayloadError
from src.webhooks.signature import compute_signature
from tests.conftest import FakeClient, FakeStream, tool_use_block

SECRET = "api-secret"
SETTINGS = Settings(
    webhook=WebhookSettings(secret=SECRET),
    anthropic=AnthropicSettings(api_key="test-key"),
)


@pytest_asyncio.fixture
async def client(db):
    with patch("src.api.routes.get_settings", return_value=SETTINGS), \
            patch("src.chat.session.get_settings", return_value=SETTINGS):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c


def _sse_chunks(text: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def _webhook_request(body: bytes, event_type="push", delivery_id=None, signature=None):
    headers = {
        "Content-Type": "application/json",
        "X-Event-Type": event_type,
        "X-Signature": signature if signature is not None else compute_signature(body, SECRET),
    }
    if delivery_id:
        headers["X-Delivery-Id"] = delivery_id
    return {"content": body, "headers": headers}


class TestChatRequest:
    def test_message_becomes_user_turn(self):
        turn = ChatRequest(message="hello").to_turn()
        assert turn.role == "user"
        assert turn.text == "hello"

    def test_empty_request_rejected(self):
        with pytest.raises(InvalidPayloadError):
            ChatRequest().to_turn()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_check_api_key(self, client):
        resp = await client.get("/check-api-key")
        assert resp.json() == {"success": True}


class TestWebhook:
    @pytest.mark.asyncio
    async def test_processed_then_already_processed(self, client):
        body = json.dumps({"ref": "refs/heads/main", "commits": []}).encode()

        first = await client.post("/webhook", **_webhook_request(body, delivery_id="abc123"))
        second = await client.post("/webhook", **_webhook_request(body, delivery_id="abc123"))

        assert first.status_code == 200
        assert first.json() == {"status": "processed"}
        assert second.status_code == 200
        assert second.json() == {"status": "already_processed"}

        events = (await client.get("/events")).json()
        assert [e["id"] for e in events] == ["abc123"]
        assert events[0]["type"] == "push"

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, client):
        resp = await client.get("/webhook")
        assert resp.status_code == 405
        assert resp.headers["allow"] == "POST"

    @pytest.mark.asyncio
    async def test_bad_signature_unauthorized(self, client):
        body = b'{"ref": "refs/heads/main"}'
        resp = await client.post("/webhook", **_webhook_request(body, signature="f" * 64))
        assert resp.status_code == 401
        assert (await client.get("/events")).json() == []

    @pytest.mark.asyncio
    async def test_invalid_json_bad_request(self, client):
        resp = await client.post("/webhook", **_webhook_request(b"{nope"))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unconfigured_secret_unavailable(self, client):
        unconfigured = Settings(webhook=WebhookSettings(secret=""))
        with patch("src.api.routes.get_settings", return_value=unconfigured):
            resp = await client.post("/webhook", content=b"{}", headers={"X-Signature": "x"})
        assert resp.status_code == 503
        assert resp.json()["secret"] == "WEBHOOK_SECRET"

    @pytest.mark.asyncio
    async def test_events_filtered_by_type(self, client):
        for event_type, delivery in (("ping", "d1"), ("deployment", "d2")):
            body = json.dumps({"title": delivery}).encode()
            await client.post("/webhook", **_webhook_request(body, event_type=event_type, delivery_id=delivery))

        resp = await client.get("/events", params={"type": "deployment"})
        assert [e["id"] for e in resp.json()] == ["d2"]


class TestChat:
    @pytest.mark.asyncio
    async def test_chat_streams_sse_and_persists(self, client):
        fake = FakeClient([FakeStream(deltas=["Hello", " there"])])

        with patch("src.chat.streamer._get_client", return_value=fake):
            resp = await client.post("/chat/conv-1", json={"message": "hi"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        chunks = _sse_chunks(resp.text)
        assert [c["type"] for c in chunks] == ["text-delta", "text-delta", "finish"]
        assert chunks[-1]["finish_reason"] == "stop"

        messages = (await client.get("/chat/conv-1/messages")).json()
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert "conv-1" not in _active_streams

    @pytest.mark.asyncio
    async def test_confirm_continues_conversation(self, client):
        fake = FakeClient([
            FakeStream(tool_uses=[tool_use_block("c1", "get_weather_information", {"city": "Lima"})]),
            FakeStream(deltas=["Sunny in Lima."]),
        ])

        with patch("src.chat.streamer._get_client", return_value=fake):
            first = await client.post("/chat/conv-2", json={"message": "weather in Lima?"})
            confirm = await client.post(
                "/chat/conv-2/confirm", json={"tool_call_id": "c1", "approved": True}
            )

        assert _sse_chunks(first.text)[-1]["finish_reason"] == "tool-confirmation"
        assert _sse_chunks(confirm.text)[-1]["finish_reason"] == "stop"

        again = await client.post("/chat/conv-2/confirm", json={"tool_call_id": "c1", "approved": False})
        assert again.status_code == 404
        assert len(fake.messages.calls) == 2

    @pytest.mark.asyncio
    async def test_confirm_unknown_call_not_found(self, client):
        resp = await client.post("/chat/conv-3/confirm", json={"tool_call_id": "nope", "approved": True})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel_without_active_stream(self, client):
        resp = await client.post("/chat/idle/cancel")
        assert resp.json() == {"cancelled": False}

    @pytest.mark.asyncio
    async def test_task_callback_and_clear(self, client):
        resp = await client.post("/chat/conv-4/tasks", json={"description": "Check the deploy"})
        assert resp.status_code == 200
        assert resp.json()["metadata"]["scheduled"] is True

        messages = (await client.get("/chat/conv-4/messages")).json()
        assert messages[0]["parts"][0]["text"] == "Running scheduled task: Check the deploy"

        cleared = await client.delete("/chat/conv-4/messages")
        assert cleared.json() == {"deleted": 1}
        assert (await client.get("/chat/conv-4/messages")).json() == []
