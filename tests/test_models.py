"""Tests for entity state machines and serialization."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from database.models import (
    ApiKey,
    BidStatus,
    CustodyRecord,
    CustodyStatus,
    Listing,
    ListingStatus,
    Operation,
    OperationStatus,
    OperationType,
    Role,
)
from errors import StateError

CUSTODY_MOVES = {
    ('PENDING', 'LINKED'), ('PENDING', 'UNLINKED'),
    ('LINKED', 'MINTED'), ('LINKED', 'FAILED'),
    ('FAILED', 'MINTED'), ('FAILED', 'FAILED'),
    ('UNLINKED', 'PENDING'),
}

OPERATION_MOVES = {
    ('PENDING_CHECKER', 'APPROVED'), ('PENDING_CHECKER', 'REJECTED'),
    ('APPROVED', 'EXECUTED'), ('APPROVED', 'FAILED'),
}

LISTING_MOVES = {
    ('DRAFT', 'ACTIVE'), ('DRAFT', 'CANCELLED'),
    ('ACTIVE', 'SOLD'), ('ACTIVE', 'CANCELLED'),
}

BID_MOVES = {('PENDING', 'ACCEPTED'), ('PENDING', 'REJECTED')}


@pytest.mark.parametrize("enum_cls,moves", [
    (CustodyStatus, CUSTODY_MOVES),
    (OperationStatus, OPERATION_MOVES),
    (ListingStatus, LISTING_MOVES),
    (BidStatus, BID_MOVES),
])
def test_transition_tables_are_exhaustive(enum_cls, moves):
    """Every pair of states is either an allowed move or a StateError."""
    for source in enum_cls:
        for target in enum_cls:
            if (source.value, target.value) in moves:
                assert source.can_transition_to(target)
                assert source.transition(target) is target
            else:
                assert not source.can_transition_to(target)
                with pytest.raises(StateError):
                    source.transition(target)


def test_terminal_states():
    assert CustodyStatus.MINTED.is_terminal
    assert not CustodyStatus.FAILED.is_terminal
    assert {s for s in OperationStatus if s.is_terminal} == {
        OperationStatus.REJECTED, OperationStatus.EXECUTED, OperationStatus.FAILED
    }


def test_transition_accepts_values():
    assert OperationStatus.PENDING_CHECKER.transition('APPROVED') is OperationStatus.APPROVED


def test_roles():
    assert Role.MAKER.can_create and not Role.MAKER.can_check
    assert Role.CHECKER.can_check and not Role.CHECKER.can_create
    assert not Role.VIEWER.can_create and not Role.VIEWER.can_check


def test_value_moving_operations():
    assert OperationType.MINT.moves_value
    assert OperationType.WITHDRAW.moves_value
    assert not OperationType.FREEZE.moves_value


def test_to_api_uses_camel_case():
    record = CustodyRecord(
        asset_id="A1", tenant_id="t", created_by="alice", quantity=Decimal("1.500"),
        nav_oracle_address="0xnav",
    )
    data = record.to_api()

    assert data['assetId'] == "A1"
    assert data['navOracleAddress'] == "0xnav"
    assert data['status'] == 'PENDING'
    assert data['quantity'] == "1.5"
    assert data['id'] == str(record.id)
    assert 'asset_id' not in data


def test_api_key_hides_secret():
    key = ApiKey(public_key="ak_1", secret_key="very-secret", tenant_id="t", role=Role.MAKER)
    data = key.to_api()
    assert 'secretKey' not in data
    assert data['publicKey'] == "ak_1"
    assert "very-secret" not in repr(key)


def test_operation_in_flight():
    operation = Operation(
        type=OperationType.MINT, custody_record_id=uuid4(), tenant_id="t", created_by="alice"
    )
    assert operation.in_flight
    operation.status = OperationStatus.REJECTED
    assert not operation.in_flight


def test_listing_expiry():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    listing = Listing(
        asset_id="A1", custody_record_id=uuid4(), tenant_id="t", seller_id="alice",
        price="10", quantity_listed="5", expiry_date=now,
    )
    assert listing.is_expired(now)
    assert not listing.is_expired(now - timedelta(seconds=1))
    assert listing.quantity_sold == Decimal(0)
