"""
Webhook signature verification.

Payloads are signed with HMAC-SHA256 over the raw request body and the
digest is sent as ``v1=<hex>``.
"""

import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "v1="


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the ``v1=<hex>`` header value for a payload."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(payload: bytes, signature_header: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify a webhook signature in constant time.

    Never raises: a missing header, wrong prefix, non-hex digest or length
    mismatch is simply reported as unverified.
    """
    if not signature_header or not secret:
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Webhook signature rejected: unsupported scheme")
        return False

    try:
        received = bytes.fromhex(signature_header[len(SIGNATURE_PREFIX):].strip())
    except ValueError:
        logger.warning("Webhook signature rejected: digest is not hex")
        return False

    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    if len(received) != len(expected):
        logger.warning("Webhook signature rejected: digest length mismatch")
        return False

    return hmac.compare_digest(received, expected)
