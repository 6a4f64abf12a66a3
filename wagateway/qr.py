"""QR code rendering for pairing codes."""

import base64
import html
import io
from typing import Optional

import qrcode

from wagateway.models import ConnectionState

QR_PAGE_REFRESH_SECONDS = 30
PENDING_PAGE_REFRESH_SECONDS = 3


def qr_png(code: str) -> bytes:
    """Render a pairing code as PNG bytes."""
    image = qrcode.make(code)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_data_url(code: str) -> str:
    """Render a pairing code as a ``data:image/png;base64`` URL."""
    encoded = base64.b64encode(qr_png(code)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def qr_ascii(code: str) -> str:
    """Render a pairing code as ASCII art for terminals."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(code)
    qr.make(fit=True)
    out = io.StringIO()
    qr.print_ascii(out=out)
    return out.getvalue()


def _page(title: str, body: str, refresh: Optional[int] = None) -> str:
    refresh_tag = f'<meta http-equiv="refresh" content="{refresh}">' if refresh else ""
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        f"<title>{html.escape(title)}</title>\n"
        '<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"{refresh_tag}\n"
        "</head>\n"
        '<body style="text-align:center; font-family:Arial; padding:20px; background:#f5f5f5;">\n'
        '<div style="background:white; padding:30px; border-radius:10px; max-width:400px; margin:0 auto;">\n'
        f"{body}\n"
        "</div>\n"
        "</body>\n"
        "</html>\n"
    )


def render_qr_page(state: ConnectionState, data_url: Optional[str] = None,
                   error: Optional[str] = None) -> str:
    """
    Render the human-facing pairing page.

    Args:
        state: Current connection state
        data_url: Rendered QR image, when a pairing code is available
        error: Error message to display instead of the QR code
    """
    if error is not None:
        return _page(
            "Error",
            "<h1>Error</h1>\n"
            f"<p>{html.escape(error)}</p>\n"
            '<p><a href="/qr">Retry</a></p>',
        )

    if state == ConnectionState.CONNECTED:
        return _page(
            "WhatsApp Connected",
            '<h1 style="color:#25D366;">WhatsApp Connected</h1>\n'
            "<p>This instance is already linked to WhatsApp.</p>\n"
            '<p><a href="/qr">Refresh</a></p>',
        )

    if data_url:
        return _page(
            "Connect WhatsApp",
            '<h1 style="color:#25D366;">Connect WhatsApp</h1>\n'
            '<p style="color:#666;">Scan this code with WhatsApp</p>\n'
            f'<img src="{html.escape(data_url, quote=True)}" alt="Pairing QR code" '
            'style="max-width:300px; border:2px solid #25D366; border-radius:10px;">\n'
            '<p style="font-size:14px; color:#888;">'
            "WhatsApp &rarr; Settings &rarr; Linked devices &rarr; Link a device</p>\n"
            '<p><a href="/qr">Refresh QR</a></p>',
            refresh=QR_PAGE_REFRESH_SECONDS,
        )

    return _page(
        "Generating QR...",
        "<h1>Generating QR code...</h1>\n"
        "<p>Please wait while the pairing code is generated.</p>\n"
        '<p><a href="/qr">Refresh</a></p>',
        refresh=PENDING_PAGE_REFRESH_SECONDS,
    )
