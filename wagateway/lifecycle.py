"""
Connection Lifecycle Controller.

Owns the process-wide WhatsApp connection state:
- Applies session events in arrival order (single consumer queue)
- Holds the current pairing code while pairing is pending
- Reconnects after every closure except an explicit logout
- Guards sends behind the connected state
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from wagateway.config import GatewayConfig
from wagateway.exceptions import NotConnectedError, SessionClientError
from wagateway.models import (
    ConnectionClosed,
    ConnectionOpened,
    ConnectionState,
    DisconnectReason,
    InboundMessageEvent,
    PairingIssued,
    SessionEvent,
)
from wagateway.notifier import WebhookNotifier
from wagateway.qr import qr_ascii
from wagateway.session_client import SessionClient

logger = logging.getLogger(__name__)


class LifecycleController:
    """
    Single source of truth for the connection status.

    Session events are queued by the session client through ``submit`` and
    applied one at a time by a consumer task. Only this class mutates the
    connection state and the pairing code; HTTP handlers read them or ask for
    a connect.
    """

    def __init__(
        self,
        config: GatewayConfig,
        session_client: SessionClient,
        notifier: WebhookNotifier,
    ):
        """
        Initialize the controller.

        Args:
            config: Gateway configuration
            session_client: Client for the WhatsApp session
            notifier: Relay for inbound messages
        """
        self.config = config
        self.session_client = session_client
        self.notifier = notifier

        self.state = ConnectionState.DISCONNECTED
        self.state_changed_at = datetime.now(timezone.utc)
        self.last_close: Optional[ConnectionClosed] = None
        self._pairing_code: Optional[str] = None

        self._events: asyncio.Queue = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._connecting = False
        self._running = False
        self._stopping = False
        self._stats = {
            "events_processed": 0,
            "connect_attempts": 0,
            "reconnects_scheduled": 0,
        }

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    def current_state(self) -> ConnectionState:
        return self.state

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def current_pairing_artifact(self) -> Optional[str]:
        """Current pairing code; None unless pairing is pending."""
        if self.state != ConnectionState.AWAITING_PAIRING:
            return None
        return self._pairing_code

    @property
    def connecting(self) -> bool:
        return self._connecting

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming session events and open the session."""
        if self._running:
            return

        self._running = True
        self._stopping = False
        self._consumer_task = asyncio.create_task(self._consume())
        logger.info(f"Lifecycle controller started for instance '{self.config.instance_name}'")
        self.request_connect()

    async def stop(self) -> None:
        """Cancel timers and the consumer, then close the session."""
        self._stopping = True
        self._running = False

        for task in (self._reconnect_task, self._connect_task, self._consumer_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reconnect_task = None
        self._connect_task = None
        self._consumer_task = None
        self._connecting = False

        try:
            await self.session_client.close()
        except Exception as e:
            logger.error(f"Error closing session client: {e}")

        await self.notifier.aclose()
        logger.info("Lifecycle controller stopped")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def submit(self, event: SessionEvent) -> None:
        """Queue a session event for ordered processing."""
        await self._events.put(event)

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        await self._events.join()

    async def _consume(self) -> None:
        """Apply queued events one at a time."""
        while True:
            event = await self._events.get()
            try:
                await self.process_event(event)
            except Exception as e:
                logger.error(f"Error processing session event {type(event).__name__}: {e}")
            finally:
                self._events.task_done()

    async def process_event(self, event: SessionEvent) -> None:
        """Apply one session event to the state machine."""
        self._stats["events_processed"] += 1

        if isinstance(event, PairingIssued):
            self._on_pairing_issued(event)
        elif isinstance(event, ConnectionOpened):
            self._on_opened(event)
        elif isinstance(event, ConnectionClosed):
            self._on_closed(event)
        elif isinstance(event, InboundMessageEvent):
            self._on_message(event)
        else:
            logger.warning(f"Ignoring unknown session event: {event!r}")

    def _transition(self, new_state: ConnectionState, reason: str) -> None:
        old_state = self.state
        if old_state == new_state:
            logger.debug(f"Connection state unchanged: {new_state.value} ({reason})")
            return
        self.state = new_state
        self.state_changed_at = datetime.now(timezone.utc)
        logger.info(f"Connection state: {old_state.value} -> {new_state.value} ({reason})")

    def _on_pairing_issued(self, event: PairingIssued) -> None:
        if self.state == ConnectionState.CONNECTED:
            logger.warning("Ignoring pairing code received while connected")
            return

        self._pairing_code = event.code
        self._transition(ConnectionState.AWAITING_PAIRING, "pairing code issued")
        logger.info("QR code generated")

        if self.config.print_qr_in_terminal:
            try:
                logger.info("Scan to pair:\n" + qr_ascii(event.code))
            except Exception as e:
                logger.warning(f"Could not render QR code for terminal: {e}")

    def _on_opened(self, event: ConnectionOpened) -> None:
        self._connecting = False
        self._pairing_code = None
        self._cancel_reconnect()
        self._transition(ConnectionState.CONNECTED, "connection opened")
        logger.info("WhatsApp connected successfully")

    def _on_closed(self, event: ConnectionClosed) -> None:
        self._connecting = False
        self._pairing_code = None
        self.last_close = event
        reason = DisconnectReason.describe(event.reason)
        self._transition(ConnectionState.DISCONNECTED, f"connection closed: {reason}")

        if event.logged_out:
            self._cancel_reconnect()
            logger.warning(
                "Session logged out, not reconnecting. "
                "Request a new connection to pair again."
            )
            return

        if event.error:
            logger.warning(f"Connection closed ({reason}): {event.error}")
        self._schedule_reconnect(self.config.reconnect_delay)

    def _on_message(self, event: InboundMessageEvent) -> None:
        if event.from_me or not event.has_content:
            logger.debug("Dropping own or empty message")
            return

        logger.info(f"New message received from {event.sender}")
        self.notifier.notify(event)

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    def request_connect(self) -> bool:
        """
        Ask for a connection attempt.

        No-op while connected, while pairing is pending or while an attempt
        is already in flight.

        Returns:
            True if a new attempt was started
        """
        if self.state == ConnectionState.CONNECTED:
            logger.debug("Already connected, ignoring connect request")
            return False
        if self.state == ConnectionState.AWAITING_PAIRING:
            logger.debug("Pairing in progress, ignoring connect request")
            return False
        if self._connecting:
            logger.debug("Connect already in flight, ignoring connect request")
            return False

        self._cancel_reconnect()
        self._connecting = True
        self._stats["connect_attempts"] += 1
        logger.info("Starting WhatsApp connection...")
        self._connect_task = asyncio.create_task(self._connect())
        return True

    async def _connect(self) -> None:
        try:
            await self.session_client.connect(self.submit)
        except asyncio.CancelledError:
            self._connecting = False
            raise
        except Exception as e:
            self._connecting = False
            logger.error(f"WhatsApp connection error: {e}")
            self._schedule_reconnect(self.config.connect_error_delay)

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect()
        if self._stopping:
            return

        self._stats["reconnects_scheduled"] += 1
        logger.info(f"Reconnecting in {delay:.1f} seconds...")
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        self.request_connect()

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_text(self, recipient: str, text: str) -> str:
        """
        Send a text message through the session.

        Raises:
            NotConnectedError: If the session is not connected (nothing is sent)
            SessionClientError: If the session failed to send
            ValueError: If the recipient is not a valid number or JID
        """
        if self.state != ConnectionState.CONNECTED:
            raise NotConnectedError()

        try:
            return await self.session_client.send_text(recipient, text)
        except (SessionClientError, ValueError):
            raise
        except Exception as e:
            raise SessionClientError(str(e)) from e

    def get_status(self) -> Dict[str, Any]:
        """Get controller status."""
        return {
            "state": self.state.value,
            "connected": self.is_connected,
            "state_changed_at": self.state_changed_at.isoformat(),
            "connecting": self._connecting,
            "reconnect_pending": self.reconnect_pending,
            "last_close_reason": (
                DisconnectReason.describe(self.last_close.reason) if self.last_close else None
            ),
            **self._stats,
        }
