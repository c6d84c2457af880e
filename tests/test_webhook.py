"""Tests for the webhook HTTP surface."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from nabi.api import webhook
from nabi.main import app
from nabi.services.conversation import ConversationCache
from nabi.services.pipeline import WebhookPipeline

STATUS_CALLBACK = {
    "object": "whatsapp_business_account",
    "entry": [{
        "id": "waba-1",
        "changes": [{
            "field": "messages",
            "value": {
                "messaging_product": "whatsapp",
                "statuses": [{"id": "wamid.out", "status": "delivered"}],
            },
        }],
    }],
}


@pytest.fixture
def client():
    # No context manager: the lifespan database check is not run
    return TestClient(app)


class TestVerification:
    """Tests for the GET handshake."""

    def test_valid_handshake_echoes_challenge(self, client):
        with patch.object(webhook.settings, "verify_token", "secret"):
            response = client.get("/webhook", params={
                "hub.mode": "subscribe",
                "hub.verify_token": "secret",
                "hub.challenge": "1158201444",
            })

        assert response.status_code == 200
        assert response.text == "1158201444"

    @pytest.mark.parametrize(
        "params",
        [
            {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1"},
            {"hub.mode": "unsubscribe", "hub.verify_token": "secret", "hub.challenge": "1"},
            {},
        ],
    )
    def test_rejected_handshake(self, client, params):
        with patch.object(webhook.settings, "verify_token", "secret"):
            response = client.get("/webhook", params=params)

        assert response.status_code == 403

    def test_unconfigured_token_never_verifies(self, client):
        with patch.object(webhook.settings, "verify_token", ""):
            response = client.get("/webhook", params={
                "hub.mode": "subscribe",
                "hub.verify_token": "",
                "hub.challenge": "1",
            })

        assert response.status_code == 403


class TestDelivery:
    """Tests for POST /webhook acknowledgement."""

    def test_status_callback_is_acknowledged_without_side_effects(self, client):
        relay = MagicMock()
        relay.send_text = AsyncMock()
        relay.send_media = AsyncMock()
        relay.fetch_media_url = AsyncMock()
        session_factory = MagicMock()
        adapter = MagicMock()
        adapter.generate = AsyncMock()
        pipeline = WebhookPipeline(
            relay=relay,
            router=MagicMock(),
            ledger=MagicMock(),
            conversations=ConversationCache(max_entries=10, ttl_seconds=60, max_turns=4),
            adapters={},
            session_factory=session_factory,
        )

        with patch.object(webhook, "webhook_pipeline", pipeline):
            response = client.post("/webhook", json=STATUS_CALLBACK)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        relay.send_text.assert_not_called()
        relay.send_media.assert_not_called()
        relay.fetch_media_url.assert_not_called()
        session_factory.assert_not_called()

    def test_invalid_json_is_acknowledged(self, client):
        with patch.object(webhook, "webhook_pipeline") as pipeline:
            response = client.post(
                "/webhook",
                content=b"not json",
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 200
        pipeline.handle.assert_not_called()

    def test_processing_error_still_returns_200(self, client):
        with patch.object(webhook, "webhook_pipeline") as pipeline:
            pipeline.handle = AsyncMock(side_effect=RuntimeError("boom"))
            response = client.post("/webhook", json={"object": "whatsapp_business_account"})

        assert response.status_code == 200
        pipeline.handle.assert_awaited_once_with({"object": "whatsapp_business_account"})

    def test_non_object_body_is_ignored(self, client):
        with patch.object(webhook, "webhook_pipeline") as pipeline:
            response = client.post("/webhook", json=[1, 2, 3])

        assert response.status_code == 200
        pipeline.handle.assert_not_called()


class TestLiveness:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == "Nabi Bot is Alive! 🧞‍♂️"
