"""Signature engine: HMAC-SHA256 over the exact payload bytes."""
from __future__ import annotations

import hashlib
import hmac

from webhook_service.services.signature import SIGNATURE_HEADER, sign, verify

SECRET = "s3cr3t-s3cr3t-s3cr3t"


def test_sign_matches_reference_hmac():
    payload = b'{"event":"product.created","id":"wh_abc"}'
    expected = hmac.new(SECRET.encode(), payload, hashlib.sha256).hexdigest()
    assert sign(payload, SECRET) == expected


def test_sign_is_lowercase_hex_of_sha256_length():
    signature = sign(b"{}", SECRET)
    assert len(signature) == 64
    assert signature == signature.lower()
    int(signature, 16)


def test_sign_is_deterministic():
    assert sign(b"payload", SECRET) == sign(b"payload", SECRET)


def test_different_secrets_give_different_signatures():
    assert sign(b"payload", SECRET) != sign(b"payload", SECRET + "x")


def test_verify_accepts_own_signature():
    payload = '{"data":{"name":"Café"}}'.encode("utf-8")
    assert verify(payload, SECRET, sign(payload, SECRET)) is True


def test_verify_rejects_tampered_payload():
    payload = b'{"data":{"qty":1}}'
    signature = sign(payload, SECRET)
    assert verify(b'{"data":{"qty":2}}', SECRET, signature) is False


def test_verify_rejects_wrong_secret():
    payload = b"{}"
    assert verify(payload, "another-secret-value", sign(payload, SECRET)) is False


def test_verify_rejects_garbage_without_raising():
    payload = b"{}"
    assert verify(payload, SECRET, "") is False
    assert verify(payload, SECRET, "not-hex") is False
    assert verify(payload, SECRET, "é" * 64) is False
    assert verify(payload, SECRET, None) is False  # type: ignore[arg-type]


def test_header_name():
    assert SIGNATURE_HEADER == "X-Webhook-Signature"
