"""
Security utilities for inbound webhook authentication.
"""

from .webhook_signature import compute_signature, verify_signature

__all__ = [
    "compute_signature",
    "verify_signature",
]
