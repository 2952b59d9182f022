"""Webhook signature checks."""

from __future__ import annotations

import base64
import hashlib
import hmac


def _digest(body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def sign_line_body(body: bytes, channel_secret: str) -> str:
    return base64.b64encode(_digest(body, channel_secret)).decode("ascii")


def verify_line_signature(body: bytes, signature: str | None, channel_secret: str) -> bool:
    """Validate ``X-Line-Signature`` (base64 HMAC-SHA256 of the raw body)."""

    if not signature or not channel_secret:
        return False
    return hmac.compare_digest(signature.strip(), sign_line_body(body, channel_secret))


def sign_billing_body(body: bytes, secret: str) -> str:
    return _digest(body, secret).hex()


def verify_billing_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Validate the hex HMAC-SHA256 sent by the billing processor."""

    if not signature or not secret:
        return False
    return hmac.compare_digest(signature.strip().lower(), sign_billing_body(body, secret))


def verify_shared_secret(received: str | None, expected: str | None) -> bool:
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
