"""Shared helpers for decimal arithmetic and request fingerprints."""
from .decimal_math import DecimalContext, DEFAULT_CONTEXT, SafeMath
from .idempotency import (
    canonical_json,
    generate_idempotency_key,
    create_custom_idempotency_key,
    is_valid_idempotency_key,
)

__all__ = [
    'DecimalContext',
    'DEFAULT_CONTEXT',
    'SafeMath',
    'canonical_json',
    'generate_idempotency_key',
    'create_custom_idempotency_key',
    'is_valid_idempotency_key',
]
