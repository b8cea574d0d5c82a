"""Tests for the marketplace ledger."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from conftest import TENANT
from database.models import BidStatus, CustodyStatus, ListingStatus
from errors import (
    InsufficientQuantityError,
    NotMintedError,
    OversellError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)

ISSUER = "alice"
BUYER = "dave"


def tomorrow():
    return datetime.now(timezone.utc) + timedelta(days=1)


@pytest_asyncio.fixture
async def listing(marketplace, minted_record):
    """Active listing of 10 units by the issuer."""
    return await marketplace.create_listing("A1", TENANT, ISSUER, "25.00", "10", tomorrow())


@pytest.mark.asyncio
async def test_create_listing(marketplace, minted_record):
    listing = await marketplace.create_listing("A1", TENANT, ISSUER, "25.00", "10", tomorrow())

    assert listing.status is ListingStatus.ACTIVE
    assert listing.custody_record_id == minted_record.id
    assert str(listing.quantity_listed) == "10"
    assert listing.quantity_sold == 0
    assert listing.currency == "USD"


@pytest.mark.asyncio
async def test_listing_requires_minted_asset(marketplace, linked_record):
    with pytest.raises(NotMintedError):
        await marketplace.create_listing("A1", TENANT, ISSUER, "25", "10", tomorrow())


@pytest.mark.asyncio
async def test_listing_validation(marketplace, minted_record):
    with pytest.raises(ValidationError):
        await marketplace.create_listing("A1", TENANT, ISSUER, "0", "10", tomorrow())
    with pytest.raises(ValidationError):
        await marketplace.create_listing("A1", TENANT, ISSUER, "25", "-1", tomorrow())
    with pytest.raises(ValidationError):
        await marketplace.create_listing(
            "A1", TENANT, ISSUER, "25", "1", datetime.now(timezone.utc) - timedelta(minutes=1)
        )


@pytest.mark.asyncio
async def test_listing_limited_by_balance(marketplace, minted_record):
    """Open listings reserve balance, so the issuer cannot list more than was minted."""
    await marketplace.create_listing("A1", TENANT, ISSUER, "25", "60", tomorrow())
    with pytest.raises(InsufficientQuantityError):
        await marketplace.create_listing("A1", TENANT, ISSUER, "25", "41", tomorrow())
    await marketplace.create_listing("A1", TENANT, ISSUER, "25", "40", tomorrow())

    with pytest.raises(InsufficientQuantityError):
        await marketplace.create_listing("A1", TENANT, BUYER, "25", "1", tomorrow())


@pytest.mark.asyncio
async def test_bid_and_accept(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "4")
    assert bid.status is BidStatus.PENDING

    ownership = await marketplace.accept_bid(bid.id, TENANT, ISSUER)

    assert ownership.owner_id == BUYER
    assert ownership.seller_id == ISSUER
    assert str(ownership.quantity) == "4"
    assert str(ownership.purchase_price) == "100"
    assert ownership.bid_id == bid.id

    updated = await marketplace.get_listing(listing.id, TENANT)
    assert str(updated.quantity_sold) == "4"
    assert updated.status is ListingStatus.ACTIVE

    bids = await marketplace.list_bids(listing.id, TENANT)
    assert bids[0].status is BidStatus.ACCEPTED


@pytest.mark.asyncio
async def test_fully_sold_listing(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "250", "10")
    await marketplace.accept_bid(bid.id, TENANT, ISSUER)

    updated = await marketplace.get_listing(listing.id, TENANT)
    assert updated.status is ListingStatus.SOLD
    assert updated.quantity_sold == updated.quantity_listed


@pytest.mark.asyncio
async def test_oversell_leaves_state_unchanged(marketplace, store, listing):
    """Accepting a bid beyond the unsold quantity fails and changes nothing."""
    first = await marketplace.place_bid(listing.id, TENANT, BUYER, "150", "6")
    second = await marketplace.place_bid(listing.id, TENANT, "erin", "125", "5")
    await marketplace.accept_bid(first.id, TENANT, ISSUER)

    with pytest.raises(OversellError):
        await marketplace.accept_bid(second.id, TENANT, ISSUER)

    updated = await marketplace.get_listing(listing.id, TENANT)
    assert str(updated.quantity_sold) == "6"
    assert updated.status is ListingStatus.ACTIVE
    bids = {bid.id: bid for bid in await marketplace.list_bids(listing.id, TENANT)}
    assert bids[second.id].status is BidStatus.PENDING
    assert len(await marketplace.list_ownership("A1", TENANT)) == 1


@pytest.mark.asyncio
async def test_only_seller_mutates(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "1")

    with pytest.raises(PermissionDeniedError):
        await marketplace.accept_bid(bid.id, TENANT, "erin")
    with pytest.raises(PermissionDeniedError):
        await marketplace.reject_bid(bid.id, TENANT, BUYER)
    with pytest.raises(PermissionDeniedError):
        await marketplace.cancel_listing(listing.id, TENANT, BUYER)


@pytest.mark.asyncio
async def test_bid_rules(marketplace, listing):
    with pytest.raises(ValidationError):
        await marketplace.place_bid(listing.id, TENANT, ISSUER, "100", "1")
    with pytest.raises(ValidationError):
        await marketplace.place_bid(listing.id, TENANT, BUYER, "0", "1")
    with pytest.raises(OversellError):
        await marketplace.place_bid(listing.id, TENANT, BUYER, "300", "11")


@pytest.mark.asyncio
async def test_bid_quantity_defaults_to_one(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "25")
    assert str(bid.quantity) == "1"

    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "25", None)
    assert str(bid.quantity) == "1"


@pytest.mark.asyncio
async def test_bid_bounded_by_unsold_quantity(marketplace, listing):
    first = await marketplace.place_bid(listing.id, TENANT, BUYER, "175", "7")
    await marketplace.accept_bid(first.id, TENANT, ISSUER)

    with pytest.raises(OversellError) as exc:
        await marketplace.place_bid(listing.id, TENANT, "erin", "100", "4")
    assert exc.value.details['remaining'] == '3'
    await marketplace.place_bid(listing.id, TENANT, "erin", "75", "3")


@pytest.mark.asyncio
async def test_reject_bid(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "1")
    rejected = await marketplace.reject_bid(bid.id, TENANT, ISSUER)
    assert rejected.status is BidStatus.REJECTED

    with pytest.raises(StateError):
        await marketplace.accept_bid(bid.id, TENANT, ISSUER)


@pytest.mark.asyncio
async def test_cancel_rejects_pending_bids(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "1")

    cancelled = await marketplace.cancel_listing(listing.id, TENANT, ISSUER)

    assert cancelled.status is ListingStatus.CANCELLED
    bids = await marketplace.list_bids(listing.id, TENANT)
    assert bids[0].id == bid.id and bids[0].status is BidStatus.REJECTED
    with pytest.raises(StateError):
        await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "1")


@pytest.mark.asyncio
async def test_draft_listing(marketplace, minted_record):
    draft = await marketplace.create_listing("A1", TENANT, ISSUER, "25", "5", tomorrow(), draft=True)
    assert draft.status is ListingStatus.DRAFT

    with pytest.raises(StateError):
        await marketplace.place_bid(draft.id, TENANT, BUYER, "100", "1")

    published = await marketplace.publish_listing(draft.id, TENANT, ISSUER)
    assert published.status is ListingStatus.ACTIVE
    with pytest.raises(StateError):
        await marketplace.publish_listing(draft.id, TENANT, ISSUER)


@pytest.mark.asyncio
async def test_balances_follow_transfers(marketplace, listing):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "100", "4")
    await marketplace.accept_bid(bid.id, TENANT, ISSUER)

    issuer = await marketplace.get_balance("A1", TENANT, ISSUER)
    assert issuer['held'] == "96"
    assert issuer['reserved'] == "6"
    assert issuer['available'] == "90"

    buyer = await marketplace.get_balance("A1", TENANT, BUYER)
    assert buyer == {'assetId': "A1", 'userId': BUYER, 'held': "4", 'reserved': "0", 'available': "4"}

    # Buyers can resell what they own
    resale = await marketplace.create_listing("A1", TENANT, BUYER, "30", "4", tomorrow())
    assert resale.seller_id == BUYER
    with pytest.raises(InsufficientQuantityError):
        await marketplace.create_listing("A1", TENANT, BUYER, "30", "1", tomorrow())


@pytest.mark.asyncio
async def test_marketplace_never_touches_custody(marketplace, custody, listing, minted_record):
    bid = await marketplace.place_bid(listing.id, TENANT, BUYER, "250", "10")
    await marketplace.accept_bid(bid.id, TENANT, ISSUER)

    record = await custody.get(minted_record.id, TENANT)
    assert record.status is CustodyStatus.MINTED
    assert record.quantity == minted_record.quantity
    assert record.updated_at == minted_record.updated_at


@pytest.mark.asyncio
async def test_list_listings(marketplace, minted_record):
    await marketplace.create_listing("A1", TENANT, ISSUER, "25", "5", tomorrow())
    await marketplace.create_listing("A1", TENANT, ISSUER, "25", "5", tomorrow(), draft=True)

    listings, total = await marketplace.list_listings(TENANT)
    assert total == 2
    active, total = await marketplace.list_listings(TENANT, status=ListingStatus.ACTIVE)
    assert total == 1 and active[0].status is ListingStatus.ACTIVE
    _, total = await marketplace.list_listings("tenant-2")
    assert total == 0
