"""Exceptions raised by the gateway core."""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotConnectedError(GatewayError):
    """Operation requires an open WhatsApp connection."""

    def __init__(self, message: str = "WhatsApp not connected"):
        super().__init__(message=message, status_code=400)


class SessionClientError(GatewayError):
    """The session client failed to perform an operation."""

    def __init__(self, message: str):
        super().__init__(message=message, status_code=500)

