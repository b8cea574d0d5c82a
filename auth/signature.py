"""HMAC request signatures.

A client signs ``method + path + timestamp + body`` with its API secret
using HMAC-SHA256 and sends the hex digest in ``X-SIGNATURE``.
"""
import hashlib
import hmac
import json
import time
from typing import Any, Optional, Union

DEFAULT_WINDOW_SECONDS = 300

Body = Union[str, bytes, dict, list, None]


def _body_string(body: Body) -> str:
    if body is None:
        return ''
    if isinstance(body, bytes):
        return body.decode('utf-8')
    if isinstance(body, (dict, list)):
        return json.dumps(body, separators=(',', ':'))
    return body


def create_signature_payload(method: str, path: str, timestamp: Union[str, int], body: Body = None) -> str:
    return f"{method.upper()}{path}{timestamp}{_body_string(body)}"


def generate_signature(method: str, path: str, timestamp: Union[str, int], body: Body, secret: str) -> str:
    """Compute the hex HMAC-SHA256 signature of a request."""
    payload = create_signature_payload(method, path, timestamp, body)
    return hmac.new(secret.encode('utf-8'), payload.encode('utf-8'), hashlib.sha256).hexdigest()


def verify_signature(
    signature: Any,
    method: str,
    path: str,
    timestamp: Union[str, int],
    body: Body,
    secret: str
) -> bool:
    """Check a request signature in constant time.

    Returns False for any malformed signature instead of raising.
    """
    if not isinstance(signature, str) or not signature:
        return False
    try:
        expected = generate_signature(method, path, timestamp, body, secret)
    except (UnicodeDecodeError, TypeError):
        return False
    return hmac.compare_digest(expected.encode('ascii'), signature.strip().lower().encode('ascii', 'ignore'))


def is_timestamp_valid(
    timestamp: Any,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now: Optional[float] = None
) -> bool:
    """Check that a Unix timestamp (seconds) is inside the replay window."""
    try:
        value = int(str(timestamp).strip())
    except (TypeError, ValueError):
        return False
    current = time.time() if now is None else now
    return abs(current - value) <= window_seconds
