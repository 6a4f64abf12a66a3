"""
WhatsApp Gateway.

HTTP façade over a WhatsApp bridge session: pairing QR, connection status,
text sending and inbound message relay to a webhook.

Usage:
    # As a service
    wagateway --port 8080 --instance-name kore

    # Programmatically
    from wagateway import GatewayConfig
    from wagateway.main import create_app

    app = create_app(GatewayConfig.load("gateway.json"))
"""

from wagateway.__version__ import __version__
from wagateway.config import GatewayConfig
from wagateway.models import ConnectionState, DisconnectReason, WebhookTarget

__all__ = [
    "__version__",
    "GatewayConfig",
    "ConnectionState",
    "DisconnectReason",
    "WebhookTarget",
]
