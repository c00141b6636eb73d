"""HMAC-SHA256 signatures for webhook payloads.

Receivers verify a delivery by recomputing the digest over the raw request
body with their shared secret and comparing it to the
``X-Webhook-Signature`` header (``sha256=<hex>``).
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="


def sign_payload(payload: bytes, secret: str) -> str:
    """Compute the HMAC-SHA256 signature of a payload.

    Args:
        payload: Exact bytes of the request body.
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()


def signature_header(payload: bytes, secret: str) -> str:
    """Signature in header format "sha256=<hex_digest>"."""
    return f"{SIGNATURE_PREFIX}{sign_payload(payload, secret)}"


def verify_signature(payload: bytes, secret: str, signature: str) -> bool:
    """Verify a presented signature in constant time.

    Args:
        payload: Bytes that were signed.
        secret: Shared secret for HMAC.
        signature: Hex digest, with or without the "sha256=" prefix.

    Returns:
        True if the signature is valid. False for an empty secret or
        signature, never raises.
    """
    if not secret or not signature:
        return False
    presented = signature.strip()
    if presented.startswith(SIGNATURE_PREFIX):
        presented = presented[len(SIGNATURE_PREFIX) :]
    expected = sign_payload(payload, secret)
    # compare_digest rejects non-ASCII str, so compare bytes
    return hmac.compare_digest(expected.encode("ascii"), presented.lower().encode("utf-8"))
