"""HMAC-SHA256 signing of delivery payloads."""
from __future__ import annotations

import hmac
from hashlib import sha256

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the exact payload bytes, keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, sha256).hexdigest()


def verify(payload: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of ``signature`` against the expected one.

    Receivers hand us whatever arrived in the header, so anything that is not an
    ASCII string simply fails verification.
    """
    if not isinstance(signature, str):
        return False
    try:
        provided = signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    expected = sign(payload, secret).encode("ascii")
    return hmac.compare_digest(expected, provided)
