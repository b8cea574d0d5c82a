"""Tests for idempotency keys and HMAC request signatures."""

from decimal import Decimal

from auth.signature import (
    create_signature_payload,
    generate_signature,
    is_timestamp_valid,
    verify_signature,
)
from database.models import OperationType
from utils.idempotency import (
    canonical_json,
    create_custom_idempotency_key,
    generate_idempotency_key,
    is_valid_idempotency_key,
)

SECRET = "s3cr3t"


def test_key_ignores_dict_order():
    first = generate_idempotency_key('MINT', {'tokenSymbol': 'GOLD', 'totalSupply': '100'})
    second = generate_idempotency_key('MINT', {'totalSupply': '100', 'tokenSymbol': 'GOLD'})
    assert first == second
    assert is_valid_idempotency_key(first)


def test_key_depends_on_type_and_payload():
    payload = {'amount': '10'}
    assert generate_idempotency_key('BURN', payload) != generate_idempotency_key('WITHDRAW', payload)
    assert generate_idempotency_key('BURN', payload) != generate_idempotency_key('BURN', {'amount': '11'})


def test_key_accepts_enum_and_decimal():
    assert generate_idempotency_key(OperationType.BURN, {'amount': Decimal('10')}) == \
        generate_idempotency_key('BURN', {'amount': '10'})


def test_canonical_json():
    assert canonical_json({'b': 1, 'a': [1, 2]}) == '{"a":[1,2],"b":1}'


def test_custom_key():
    key = create_custom_idempotency_key("tenant-1:A1:mint")
    assert key == create_custom_idempotency_key("tenant-1:A1:mint")
    assert is_valid_idempotency_key(key)


def test_key_validation():
    assert not is_valid_idempotency_key("abc")
    assert not is_valid_idempotency_key("A" * 64)
    assert not is_valid_idempotency_key(None)


def test_signature_payload():
    assert create_signature_payload('post', '/v1/operations', 1700000000, '{"a":1}') == \
        'POST/v1/operations1700000000{"a":1}'
    assert create_signature_payload('GET', '/', '1', None) == 'GET/1'


def test_signature_roundtrip():
    signature = generate_signature('POST', '/v1/operations', '1700000000', b'{"a":1}', SECRET)

    assert len(signature) == 64
    assert verify_signature(signature, 'POST', '/v1/operations', '1700000000', '{"a":1}', SECRET)
    assert verify_signature(signature.upper(), 'POST', '/v1/operations', '1700000000', '{"a":1}', SECRET)


def test_signature_rejects_tampering():
    signature = generate_signature('POST', '/v1/operations', '1700000000', '{"a":1}', SECRET)

    assert not verify_signature(signature, 'POST', '/v1/operations', '1700000000', '{"a":2}', SECRET)
    assert not verify_signature(signature, 'POST', '/v1/operations', '1700000001', '{"a":1}', SECRET)
    assert not verify_signature(signature, 'GET', '/v1/operations', '1700000000', '{"a":1}', SECRET)
    assert not verify_signature(signature, 'POST', '/v1/operations', '1700000000', '{"a":1}', "other")


def test_malformed_signatures_are_false():
    assert not verify_signature(None, 'GET', '/', '1', None, SECRET)
    assert not verify_signature('', 'GET', '/', '1', None, SECRET)
    assert not verify_signature('zzé', 'GET', '/', '1', None, SECRET)
    assert not verify_signature(12345, 'GET', '/', '1', None, SECRET)


def test_timestamp_window():
    now = 1_700_000_000
    assert is_timestamp_valid(str(now), now=now)
    assert is_timestamp_valid(now - 300, now=now)
    assert is_timestamp_valid(now + 299, now=now)
    assert not is_timestamp_valid(now - 301, now=now)
    assert not is_timestamp_valid(now + 10, window_seconds=5, now=now)
    assert not is_timestamp_valid("yesterday", now=now)
    assert not is_timestamp_valid(None, now=now)
