"""Webhook signature helpers.

The transcript service signs each delivery with HMAC-SHA256 over the raw
request body, base64-encoded, in the ``X-Fireflies-Signature`` header.
Verification must use the exact bytes received, before any JSON parsing.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

from src.utils.errors import WebhookSignatureError

SIGNATURE_HEADER = "X-Fireflies-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of *body* keyed by *secret*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(secret: str, body: bytes | None, signature: str | None) -> None:
    """Raise :class:`WebhookSignatureError` unless *signature* matches *body*."""
    if body is None or not signature:
        raise WebhookSignatureError(message="Missing webhook body or signature")
    expected = compute_signature(secret, body)
    if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "ignore")):
        raise WebhookSignatureError(message="Webhook signature does not match")
