from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any

from refundwatch.core.errors import CursorError


def encode_cursor(payload: dict[str, Any], secret: str) -> str:
    # Sign cursor payloads to prevent client-side tampering.
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    encoded = base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")
    return f"{encoded}.{signature}"


def decode_cursor(token: str, secret: str) -> dict[str, Any]:
    # Verify cursor signatures and return the decoded payload.
    try:
        encoded, signature = token.split(".", 1)
    except ValueError as exc:
        raise CursorError("Invalid cursor format") from exc
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise CursorError("Invalid cursor encoding") from exc
    expected = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise CursorError("Invalid cursor signature")
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CursorError("Invalid cursor payload") from exc
    if not isinstance(payload, dict):
        raise CursorError("Invalid cursor payload")
    return payload


def encode_case_cursor(last_case_id: str, secret: str) -> str:
    return encode_cursor({"kind": "case_scan", "after_id": last_case_id}, secret)


def decode_case_cursor(token: str, secret: str) -> str:
    # Return the case id the next page must start after.
    payload = decode_cursor(token, secret)
    after_id = payload.get("after_id")
    if payload.get("kind") != "case_scan" or not isinstance(after_id, str) or not after_id:
        raise CursorError("Cursor does not belong to this listing")
    return after_id
