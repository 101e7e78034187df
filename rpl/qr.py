"""
Payment QR codes for the signup page.

Encodes a UPI collect URI for the fixed registration fee. Uses `segno`, a
pure-Python QR encoder, so no native imaging libraries are needed.
"""
from __future__ import annotations

import io
from urllib.parse import quote

import segno

PAYMENT_NOTE = "RPL Registration"
DEFAULT_QR_IMAGE = "/images/qr-default.jpg"
TARGET_WIDTH = 800
BORDER = 2


def build_upi_uri(upi_id: str, amount: str, note: str = PAYMENT_NOTE) -> str:
    """Return ``upi://pay?...`` for the given payee and amount in INR."""
    return (
        f"upi://pay?pa={quote(upi_id, safe='')}"
        f"&am={quote(str(amount), safe='')}"
        f"&tn={quote(note, safe='')}"
        f"&cu=INR"
    )


def _make(uri: str) -> tuple[segno.QRCode, int]:
    qr = segno.make_qr(uri, error="m")
    modules, _ = qr.symbol_size(scale=1, border=BORDER)
    return qr, max(1, TARGET_WIDTH // modules)


def render_png(uri: str) -> bytes:
    """Render ``uri`` as PNG bytes roughly ``TARGET_WIDTH`` pixels wide."""
    qr, scale = _make(uri)
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=scale, border=BORDER)
    return buf.getvalue()


def render_data_url(uri: str) -> str:
    """Render ``uri`` as a ``data:image/png;base64,...`` URL."""
    qr, scale = _make(uri)
    return qr.png_data_uri(scale=scale, border=BORDER)
