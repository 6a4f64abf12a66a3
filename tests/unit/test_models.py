"""Tests for wagateway/models.py."""

import pytest

from wagateway.models import (
    ConnectionClosed,
    ConnectionState,
    DisconnectReason,
    InboundMessageEvent,
    WebhookTarget,
)


class TestConnectionState:
    """Test ConnectionState enum."""

    def test_values(self):
        assert ConnectionState.DISCONNECTED.value == "disconnected"
        assert ConnectionState.AWAITING_PAIRING.value == "awaiting_pairing"
        assert ConnectionState.CONNECTED.value == "connected"


class TestDisconnectReason:
    """Test close code descriptions."""

    @pytest.mark.parametrize("code,name", [
        (401, "logged_out"),
        (408, "connection_lost"),
        (515, "restart_required"),
        (999, "code_999"),
        (None, "unknown"),
    ])
    def test_describe(self, code, name):
        assert DisconnectReason.describe(code) == name

    def test_logged_out(self):
        assert ConnectionClosed(reason=401).logged_out is True
        assert ConnectionClosed(reason=DisconnectReason.LOGGED_OUT).logged_out is True
        assert ConnectionClosed(reason=428).logged_out is False
        assert ConnectionClosed().logged_out is False


class TestInboundMessageEvent:
    """Test building events from raw message records."""

    def test_from_raw(self):
        raw = {"key": {"remoteJid": "5511@s.whatsapp.net", "fromMe": True}, "message": {"conversation": "x"}}
        event = InboundMessageEvent.from_raw(raw)
        assert event.sender == "5511@s.whatsapp.net"
        assert event.from_me is True
        assert event.payload is raw
        assert event.has_content is True

    def test_missing_key(self):
        event = InboundMessageEvent.from_raw({"message": {"conversation": "x"}})
        assert event.sender is None
        assert event.from_me is False

    def test_without_content(self):
        event = InboundMessageEvent.from_raw({"key": {"remoteJid": "a@s.whatsapp.net"}, "message": None})
        assert event.has_content is False


class TestWebhookTarget:
    """Test WebhookTarget."""

    def test_active(self):
        assert WebhookTarget(url="http://x.example.com").active is True
        assert WebhookTarget(url="http://x.example.com", enabled=False).active is False
        assert WebhookTarget().active is False

    def test_to_dict(self):
        assert WebhookTarget(url="http://x.example.com").to_dict() == {
            "url": "http://x.example.com",
            "enabled": True,
        }
