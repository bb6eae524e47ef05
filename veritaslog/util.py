"""
Utility functions for VeritasLog.

Provides base64 encoding and display helpers.
"""

import base64


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def short_hex(value: str, length: int = 16) -> str:
    """Prefix of a hex digest for human-facing messages."""
    return f"{value[:length]}..."


def mask_address(address: str, visible_chars: int = 8) -> str:
    """
    Shorten an account address for logging.
    Keeps the first N characters.
    """
    if len(address) <= visible_chars:
        return address
    return address[:visible_chars] + '...'
