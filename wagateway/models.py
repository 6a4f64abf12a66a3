"""
Data models for the WhatsApp gateway.

This module defines the core data structures shared by the session client,
the lifecycle controller and the webhook notifier:
- ConnectionState: process-wide connection status
- DisconnectReason: close codes reported by the bridge
- Session events: PairingIssued, ConnectionOpened, ConnectionClosed,
  InboundMessageEvent
- WebhookTarget: where inbound messages are relayed
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union


class ConnectionState(Enum):
    """State of the WhatsApp connection."""
    DISCONNECTED = "disconnected"
    AWAITING_PAIRING = "awaiting_pairing"
    CONNECTED = "connected"


class DisconnectReason(IntEnum):
    """Close status codes, as reported by the Baileys bridge."""
    LOGGED_OUT = 401
    FORBIDDEN = 403
    CONNECTION_LOST = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515

    @classmethod
    def describe(cls, code: Optional[int]) -> str:
        """Human readable name for a close code (unknown codes included)."""
        if code is None:
            return "unknown"
        try:
            return cls(code).name.lower()
        except ValueError:
            return f"code_{code}"


@dataclass(frozen=True)
class PairingIssued:
    """The session issued a new pairing code (QR payload)."""

    code: str


@dataclass(frozen=True)
class ConnectionOpened:
    """The session is connected and authenticated."""

    user: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ConnectionClosed:
    """The session connection was closed."""

    reason: Optional[int] = None
    error: Optional[str] = None

    @property
    def logged_out(self) -> bool:
        """True when the remote session was explicitly logged out."""
        return self.reason == DisconnectReason.LOGGED_OUT


@dataclass(frozen=True)
class InboundMessageEvent:
    """A message received by the bound account."""

    sender: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    from_me: bool = False

    @classmethod
    def from_raw(cls, message: Dict[str, Any]) -> "InboundMessageEvent":
        """Build an event from a raw message record (``key``/``message`` layout)."""
        key = message.get("key") or {}
        return cls(
            sender=key.get("remoteJid"),
            payload=message,
            from_me=bool(key.get("fromMe", False)),
        )

    @property
    def has_content(self) -> bool:
        """False for protocol-only records such as receipts or deletions."""
        return bool(self.payload.get("message"))


SessionEvent = Union[PairingIssued, ConnectionOpened, ConnectionClosed, InboundMessageEvent]


@dataclass(frozen=True)
class WebhookTarget:
    """Destination for inbound message notifications."""

    url: Optional[str] = None
    enabled: bool = True

    @property
    def active(self) -> bool:
        return bool(self.url) and self.enabled

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "enabled": self.enabled}
