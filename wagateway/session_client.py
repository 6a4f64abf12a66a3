"""
Session Client for the WhatsApp gateway.

The WhatsApp protocol itself runs in a bridge sidecar (a Baileys process).
The gateway talks to it over a WebSocket carrying JSON frames and turns the
bridge's lifecycle notifications into session events.
"""

import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from aiohttp import ClientSession, WSMsgType

from wagateway.config import GatewayConfig
from wagateway.credentials import CredentialStore
from wagateway.exceptions import SessionClientError
from wagateway.models import (
    ConnectionClosed,
    ConnectionOpened,
    DisconnectReason,
    InboundMessageEvent,
    PairingIssued,
    SessionEvent,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[SessionEvent], Awaitable[None]]

USER_JID_SUFFIX = "@s.whatsapp.net"


def normalize_jid(recipient: str) -> str:
    """
    Turn a recipient into a WhatsApp JID.

    Values that already carry a server part (``...@s.whatsapp.net``,
    ``...@g.us``) are returned unchanged; bare phone numbers are stripped of
    formatting and suffixed with the user server.
    """
    if not recipient or not isinstance(recipient, str):
        raise ValueError("Recipient must be a non-empty string")

    recipient = recipient.strip()
    if "@" in recipient:
        return recipient

    digits = re.sub(r"\D", "", recipient)
    if not digits:
        raise ValueError(f"Invalid recipient: {recipient!r}")
    return f"{digits}{USER_JID_SUFFIX}"


class SessionClient(ABC):
    """Abstract base class for WhatsApp session clients."""

    def __init__(self, config: GatewayConfig):
        self.config = config
        self.on_event: Optional[EventCallback] = None

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the underlying transport is currently open."""
        pass

    @abstractmethod
    async def connect(self, on_event: EventCallback) -> None:
        """
        Establish the session.

        Returns once the transport is up; pairing, open and close
        notifications arrive later through ``on_event``.
        """
        pass

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> str:
        """Send a text message and return the message id."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the session transport."""
        pass

    async def _emit(self, event: SessionEvent) -> None:
        if self.on_event:
            await self.on_event(event)


class BridgeSessionClient(SessionClient):
    """WebSocket client for the WhatsApp bridge sidecar."""

    def __init__(self, config: GatewayConfig, credentials: Optional[CredentialStore] = None):
        super().__init__(config)
        self.credentials = credentials or CredentialStore(config.auth_dir)
        self._session: Optional[ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def get_bridge_url(self) -> str:
        """Bridge URL with http(s) converted to ws(s)."""
        url = self.config.bridge_url.rstrip("/")
        if url.startswith("https://"):
            return "wss://" + url[8:]
        if url.startswith("http://"):
            return "ws://" + url[7:]
        return url

    def _get_headers(self) -> Dict[str, str]:
        headers = {"X-Instance-Name": self.config.instance_name}
        if self.config.bridge_api_key:
            headers["X-API-Key"] = self.config.bridge_api_key
        return headers

    async def connect(self, on_event: EventCallback) -> None:
        """Open the bridge socket and start the session."""
        if self.is_open:
            logger.debug("Bridge socket already open, ignoring connect")
            return

        self.on_event = on_event
        self._closing = False
        await self._close_socket()

        url = self.get_bridge_url()
        session = aiohttp.ClientSession()
        self._session = session
        try:
            self._ws = await asyncio.wait_for(
                session.ws_connect(url, headers=self._get_headers(), heartbeat=30.0),
                timeout=self.config.connection_timeout,
            )
            await self._ws.send_json({
                "type": "start",
                "session": self.config.instance_name,
                "creds": self.credentials.load(),
            })
        except asyncio.TimeoutError:
            await self._close_socket()
            raise SessionClientError(
                f"Timed out connecting to bridge after {self.config.connection_timeout}s"
            )
        except (aiohttp.ClientError, OSError) as e:
            await self._close_socket()
            raise SessionClientError(f"Bridge connection failed: {e}")

        logger.info(f"Bridge socket connected to {url}")
        self._reader_task = asyncio.create_task(self._reader_loop(self._ws))

    async def _reader_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Process frames until the bridge closes the session."""
        close_emitted = False
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError as e:
                        logger.error(f"Failed to parse bridge frame: {e}")
                        continue

                    try:
                        close_emitted = await self._handle_frame(data)
                    except Exception as e:
                        logger.error(f"Error handling bridge frame: {e}")

                    if close_emitted:
                        break

                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"Bridge socket error: {ws.exception()}")
                    break

                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    logger.info("Bridge socket closed by server")
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Bridge reader failed: {e}")
        finally:
            self._fail_pending(SessionClientError("Bridge connection closed"))
            if ws is self._ws:
                await self._close_socket()

        if not close_emitted and not self._closing:
            await self._emit(ConnectionClosed(
                reason=DisconnectReason.CONNECTION_LOST,
                error="Bridge connection lost",
            ))

    async def _handle_frame(self, data: Dict[str, Any]) -> bool:
        """
        Dispatch one bridge frame.

        Returns:
            True when the frame ended the session
        """
        frame_type = data.get("type")

        if frame_type == "qr":
            code = data.get("qr")
            if code:
                await self._emit(PairingIssued(code=str(code)))

        elif frame_type == "open":
            await self._emit(ConnectionOpened(user=data.get("user")))

        elif frame_type == "close":
            status_code = data.get("status_code")
            if status_code == DisconnectReason.LOGGED_OUT:
                self.credentials.clear()
            await self._emit(ConnectionClosed(reason=status_code, error=data.get("error")))
            return True

        elif frame_type == "message":
            messages = data.get("messages")
            if messages is None:
                messages = [data.get("message")]
            for message in messages:
                if isinstance(message, dict):
                    await self._emit(InboundMessageEvent.from_raw(message))

        elif frame_type == "creds.update":
            creds = data.get("creds")
            if isinstance(creds, dict):
                self.credentials.save(creds)

        elif frame_type == "send.result":
            self._resolve(data.get("request_id"), result=str(data.get("message_id") or ""))

        elif frame_type == "send.error":
            self._resolve(
                data.get("request_id"),
                error=SessionClientError(data.get("error") or "Send failed"),
            )

        else:
            logger.warning(f"Unknown bridge frame type: {frame_type}")

        return False

    def _resolve(self, request_id: Optional[str], result: Optional[str] = None,
                 error: Optional[Exception] = None) -> None:
        future = self._pending.get(request_id) if request_id else None
        if future is None or future.done():
            logger.debug(f"No pending send for request {request_id}")
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _fail_pending(self, error: Exception) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)

    async def send_text(self, jid: str, text: str) -> str:
        """Send a text message through the bridge and wait for its id."""
        if not self.is_open:
            raise SessionClientError("Bridge connection is not open")

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send_json({
                "type": "send",
                "request_id": request_id,
                "jid": normalize_jid(jid),
                "text": text,
            })
            return await asyncio.wait_for(future, timeout=self.config.send_timeout)
        except asyncio.TimeoutError:
            raise SessionClientError(
                f"Timed out waiting for send acknowledgement after {self.config.send_timeout}s"
            )
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise SessionClientError(f"Failed to send message: {e}")
        finally:
            self._pending.pop(request_id, None)

    async def _close_socket(self) -> None:
        ws, session = self._ws, self._session
        self._ws = None
        self._session = None
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None and not session.closed:
            await session.close()

    async def close(self) -> None:
        """Close the bridge socket without reporting a closure."""
        self._closing = True
        reader = self._reader_task
        self._reader_task = None
        if reader and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self._fail_pending(SessionClientError("Session client closed"))
        await self._close_socket()


def create_session_client(config: GatewayConfig) -> SessionClient:
    """
    Create the session client for the configured bridge.

    Args:
        config: Gateway configuration

    Returns:
        SessionClient instance
    """
    scheme = config.bridge_url.split("://", 1)[0].lower()
    if scheme in ("ws", "wss", "http", "https"):
        return BridgeSessionClient(config)
    raise ValueError(f"Unsupported bridge URL scheme: {scheme}")
