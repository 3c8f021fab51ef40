"""
Signed unsubscribe tokens.

Token layout (before base64url encoding, no padding):

    <user_id>:<action>:<issued_ms>:<signature>

where ``signature`` is the first 16 hex chars of
HMAC-SHA256(secret, "<user_id>:<action>:<issued_ms>").
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Literal
from urllib.parse import urlencode

from core.errors import ConfigurationError

UnsubscribeAction = Literal["all", "digest"]

SIGNATURE_LENGTH = 16
MAX_TOKEN_AGE_MS = 30 * 24 * 60 * 60 * 1000


def _sign(secret: str, payload: str) -> str:
    digest = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def generate_unsubscribe_token(
    secret: str,
    user_id: str,
    action: UnsubscribeAction = "all",
    now_ms: int | None = None,
) -> str:
    if not secret:
        raise ConfigurationError("UNSUBSCRIBE_SECRET not configured")
    issued = int(time.time() * 1000) if now_ms is None else now_ms
    payload = f"{user_id}:{action}:{issued}"
    raw = f"{payload}:{_sign(secret, payload)}".encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def verify_unsubscribe_token(
    secret: str,
    token: str,
    now_ms: int | None = None,
    max_age_ms: int = MAX_TOKEN_AGE_MS,
) -> tuple[str, str] | None:
    """Returns ``(user_id, action)`` for a valid, unexpired token, else None."""
    if not secret or not token:
        return None
    try:
        decoded = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)).decode()
    except (binascii.Error, UnicodeDecodeError):
        return None

    parts = decoded.split(":")
    if len(parts) != 4:
        return None
    user_id, action, issued, signature = parts
    if not hmac.compare_digest(signature, _sign(secret, f"{user_id}:{action}:{issued}")):
        return None
    try:
        issued_ms = int(issued)
    except ValueError:
        return None

    now = int(time.time() * 1000) if now_ms is None else now_ms
    if now - issued_ms > max_age_ms:
        return None
    return user_id, action


def build_unsubscribe_url(base_url: str, token: str) -> str:
    return f"{base_url}?{urlencode({'token': token})}"


__all__ = [
    "MAX_TOKEN_AGE_MS",
    "build_unsubscribe_url",
    "generate_unsubscribe_token",
    "verify_unsubscribe_token",
]
