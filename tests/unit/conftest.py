"""
Pytest configuration for the unit test suite.

Provides a scripted session client so the lifecycle controller and the API
can be exercised without a WhatsApp bridge.
"""
import pytest

from wagateway.config import GatewayConfig
from wagateway.exceptions import SessionClientError
from wagateway.session_client import SessionClient, normalize_jid


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: Slow tests that should not run by default (deselect with '-m \"not slow\"')"
    )


class FakeSessionClient(SessionClient):
    """Session client double recording calls and emitting events on demand."""

    def __init__(self, config: GatewayConfig):
        super().__init__(config)
        self.connect_calls = 0
        self.connect_error = None
        self.send_error = None
        self.sent = []
        self.closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self, on_event):
        self.connect_calls += 1
        self.on_event = on_event
        if self.connect_error is not None:
            raise self.connect_error
        self._open = True

    async def send_text(self, jid, text):
        if self.send_error is not None:
            raise self.send_error
        if not self._open:
            raise SessionClientError("Bridge connection is not open")
        self.sent.append((normalize_jid(jid), text))
        return f"MSG{len(self.sent)}"

    async def close(self):
        self.closed = True
        self._open = False

    async def emit(self, event):
        await self._emit(event)


def make_config(**overrides) -> GatewayConfig:
    """Create a GatewayConfig with fast timers for testing."""
    defaults = dict(
        instance_name="kore",
        auth_key="test-key",
        server_url="http://gateway.example.com",
        webhook_url="http://n8n.example.com/webhook/wa",
        reconnect_delay=0.05,
        connect_error_delay=0.05,
        webhook_timeout=1.0,
        send_timeout=0.5,
        print_qr_in_terminal=False,
    )
    defaults.update(overrides)
    return GatewayConfig(**defaults)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def fake_client(config):
    return FakeSessionClient(config)


@pytest.fixture
def fake_client_cls():
    return FakeSessionClient
