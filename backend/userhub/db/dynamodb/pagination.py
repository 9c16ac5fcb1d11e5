"""
Opaque pagination cursors.

DynamoDB's LastEvaluatedKey exposes key attributes (user ids, emails inside
index keys). Clients get it back encrypted with AES-GCM instead, so a cursor
can be neither read nor forged.
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import DdbValidation

_PREFIX = "c1."
_NONCE_BYTES = 12


def _aead(secret: str) -> AESGCM:
    return AESGCM(hashlib.sha256(f"cursor:{secret}".encode("utf-8")).digest())


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def encode_next_token(last_evaluated_key: dict[str, Any] | None, *, secret: str) -> str | None:
    if not last_evaluated_key:
        return None
    raw = json.dumps(last_evaluated_key, separators=(",", ":"), sort_keys=True, default=str)
    nonce = os.urandom(_NONCE_BYTES)
    return _PREFIX + _b64(nonce + _aead(secret).encrypt(nonce, raw.encode("utf-8"), None))


def decode_next_token(next_token: str | None, *, secret: str) -> dict[str, Any] | None:
    if not next_token:
        return None
    token = str(next_token).strip()
    if not token.startswith(_PREFIX):
        raise DdbValidation(message="Invalid nextToken")
    try:
        blob = _unb64(token[len(_PREFIX) :])
        plain = _aead(secret).decrypt(blob[:_NONCE_BYTES], blob[_NONCE_BYTES:], None)
        lek = json.loads(plain.decode("utf-8"))
    except (ValueError, InvalidTag) as e:
        raise DdbValidation(message="Invalid nextToken", cause=e) from e
    if not isinstance(lek, dict):
        raise DdbValidation(message="Invalid nextToken")
    return lek
