"""Deterministic request fingerprints."""
import hashlib
import json
import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict
from uuid import UUID

_KEY_PATTERN = re.compile(r'^[a-f0-9]{64}$')


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Serialize ``value`` with sorted keys and compact separators."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=_default)


def generate_idempotency_key(operation_type: Any, payload: Dict[str, Any]) -> str:
    """Fingerprint an operation request.

    Equal inputs give equal keys regardless of dict key order.

    Args:
        operation_type: Operation type name or enum member
        payload: Operation parameters

    Returns:
        64 character lowercase hex SHA-256 digest
    """
    body = canonical_json({'operationType': operation_type, 'payload': payload})
    return hashlib.sha256(body.encode('utf-8')).hexdigest()


def create_custom_idempotency_key(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def is_valid_idempotency_key(key: Any) -> bool:
    return isinstance(key, str) and bool(_KEY_PATTERN.match(key))
