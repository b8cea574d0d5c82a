"""Marketplace module for trading tokens of minted custody records.

This module provides functionality for:
- Creating, publishing and cancelling listings
- Placing, accepting and rejecting bids
- Recording ownership transfers and computing balances

The marketplace only reads custody records. It never writes custody
records or operations.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID

import audit
from custody import parse_id
from database import get_store
from database.models import (
    OPEN_LISTING,
    Bid,
    BidStatus,
    CustodyRecord,
    CustodyStatus,
    Listing,
    ListingStatus,
    OwnershipRecord,
    utcnow,
)
from errors import (
    InsufficientQuantityError,
    NotFoundError,
    NotMintedError,
    OversellError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from utils.decimal_math import SafeMath

logger = logging.getLogger(__name__)


def issuer_of(record: CustodyRecord) -> str:
    """User that holds a record's minted quantity before any sale."""
    return record.created_by or record.tenant_id


async def compute_balance(tx, math: SafeMath, record: CustodyRecord, user_id: str) -> Dict[str, Decimal]:
    """Holdings of one user for one asset.

    ``held`` is the minted quantity (for the issuer) plus ownership
    received minus ownership sold. ``reserved`` is the unsold remainder
    of the user's open listings.
    """
    held = (record.quantity or Decimal(0)) if user_id == issuer_of(record) else Decimal(0)

    received = await tx.find(
        OwnershipRecord, tenant_id=record.tenant_id, asset_id=record.asset_id, owner_id=user_id
    )
    sold = await tx.find(
        OwnershipRecord, tenant_id=record.tenant_id, asset_id=record.asset_id, seller_id=user_id
    )
    held = math.from_string(math.sum([held] + [r.quantity for r in received]))
    held = math.from_string(math.subtract(held, math.sum(r.quantity for r in sold)))

    listings = await tx.find(
        Listing,
        tenant_id=record.tenant_id,
        asset_id=record.asset_id,
        seller_id=user_id,
        status=list(OPEN_LISTING),
    )
    reserved = math.from_string(math.sum(
        math.subtract(listing.quantity_listed, listing.quantity_sold) for listing in listings
    ))
    available = math.from_string(math.subtract(held, reserved))
    return {'held': held, 'reserved': reserved, 'available': available}


class MarketplaceManager:
    """Manager class for listings, bids and ownership."""

    def __init__(self, store=None, math: Optional[SafeMath] = None):
        """Initialize marketplace manager.

        Args:
            store: Optional store. If not provided, will get from database module.
            math: Decimal policy for prices and quantities
        """
        self.store = store
        self.math = math or SafeMath()

    async def ensure_store(self):
        """Ensure a store is available."""
        if not self.store:
            self.store = await get_store()

    def _positive(self, value: Any, name: str) -> Decimal:
        if value is None:
            raise ValidationError(f"{name} is required", {'field': name})
        result = self.math.from_string(value)
        if not self.math.is_positive(result):
            raise ValidationError(f"{name} must be positive", {'field': name})
        return result

    async def _minted_record(self, tx, asset_id: str, tenant_id: str) -> CustodyRecord:
        record = await tx.find_one(CustodyRecord, tenant_id=tenant_id, asset_id=asset_id)
        if not record:
            raise NotFoundError(f"No custody record for asset {asset_id}")
        if record.status is not CustodyStatus.MINTED:
            raise NotMintedError(
                f"Asset {asset_id} is {record.status.value}, only MINTED assets can be listed",
                {'custodyStatus': record.status.value}
            )
        return record

    async def _balance(self, tx, record: CustodyRecord, user_id: str) -> Dict[str, Decimal]:
        return await compute_balance(tx, self.math, record, user_id)

    async def create_listing(
        self,
        asset_id: str,
        tenant_id: str,
        seller_id: str,
        price: Any,
        quantity: Any,
        expiry_date: datetime,
        currency: str = 'USD',
        draft: bool = False
    ) -> Listing:
        """Create a listing.

        Args:
            asset_id: Business key of a MINTED custody record
            tenant_id: Tenant of the seller
            seller_id: Seller identity
            price: Unit price as a decimal string
            quantity: Quantity to list
            expiry_date: When the listing stops accepting bids
            currency: Price currency code
            draft: Create as DRAFT instead of ACTIVE

        Returns:
            The new listing

        Raises:
            ValidationError: If price, quantity or expiry is invalid
            NotFoundError: If the asset has no custody record
            NotMintedError: If the asset is not MINTED
            InsufficientQuantityError: If the seller's available balance is too low
        """
        await self.ensure_store()

        price = self._positive(price, 'price')
        quantity = self._positive(quantity, 'quantity')
        if expiry_date is None:
            raise ValidationError("expiryDate is required", {'field': 'expiryDate'})
        if expiry_date.tzinfo is None:
            expiry_date = expiry_date.replace(tzinfo=timezone.utc)
        if expiry_date <= utcnow():
            raise ValidationError("expiryDate must be in the future", {'field': 'expiryDate'})

        async with self.store.transaction() as tx:
            record = await self._minted_record(tx, asset_id, tenant_id)
            balance = await self._balance(tx, record, seller_id)
            if self.math.is_greater_than(quantity, balance['available']):
                raise InsufficientQuantityError(
                    f"Cannot list {self.math.to_string(quantity)} of {asset_id}, "
                    f"{self.math.to_string(balance['available'])} available",
                    {'requested': self.math.to_string(quantity),
                     'available': self.math.to_string(balance['available'])}
                )

            listing = Listing(
                asset_id=asset_id,
                custody_record_id=record.id,
                tenant_id=tenant_id,
                seller_id=seller_id,
                price=price,
                currency=currency,
                quantity_listed=quantity,
                status=ListingStatus.DRAFT if draft else ListingStatus.ACTIVE,
                expiry_date=expiry_date,
            )
            await tx.insert(listing)
            await audit.log_event(
                tx, audit.LISTING_CREATED, seller_id,
                {'listingId': str(listing.id), 'quantity': self.math.to_string(quantity),
                 'price': self.math.format_price(price)},
                tenant_id=tenant_id, custody_record_id=record.id
            )

        logger.info(f"Listing {listing.id} created for {asset_id} by {seller_id}")
        return listing

    async def _seller_listing(self, tx, listing_id: UUID, tenant_id: str, seller_id: str) -> Listing:
        listing = await tx.get(Listing, listing_id, for_update=True)
        if not listing or listing.tenant_id != tenant_id:
            raise NotFoundError(f"Listing {listing_id} not found")
        if listing.seller_id != seller_id:
            raise PermissionDeniedError("Only the seller may change this listing")
        return listing

    async def publish_listing(self, listing_id: Union[str, UUID], tenant_id: str, seller_id: str) -> Listing:
        """Move a DRAFT listing to ACTIVE."""
        await self.ensure_store()
        listing_id = parse_id(listing_id, 'Listing')

        async with self.store.transaction() as tx:
            listing = await self._seller_listing(tx, listing_id, tenant_id, seller_id)
            if listing.is_expired():
                raise StateError(f"Listing {listing_id} has expired")
            previous = listing.status
            listing.status = previous.transition(ListingStatus.ACTIVE)
            await tx.update(listing, expected_status=previous)
            await audit.log_event(
                tx, audit.LISTING_PUBLISHED, seller_id, {'listingId': str(listing.id)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )
        return listing

    async def cancel_listing(self, listing_id: Union[str, UUID], tenant_id: str, seller_id: str) -> Listing:
        """Cancel a listing and reject its pending bids."""
        await self.ensure_store()
        listing_id = parse_id(listing_id, 'Listing')

        async with self.store.transaction() as tx:
            listing = await self._seller_listing(tx, listing_id, tenant_id, seller_id)
            previous = listing.status
            listing.status = previous.transition(ListingStatus.CANCELLED)
            await tx.update(listing, expected_status=previous)

            pending = await tx.find(Bid, listing_id=listing.id, status=BidStatus.PENDING)
            for bid in pending:
                bid.status = bid.status.transition(BidStatus.REJECTED)
                await tx.update(bid, expected_status=BidStatus.PENDING)

            await audit.log_event(
                tx, audit.LISTING_CANCELLED, seller_id,
                {'listingId': str(listing.id), 'rejectedBids': len(pending)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )

        logger.info(f"Listing {listing.id} cancelled, {len(pending)} pending bids rejected")
        return listing

    async def place_bid(
        self,
        listing_id: Union[str, UUID],
        tenant_id: str,
        buyer_id: str,
        amount: Any,
        quantity: Any = '1'
    ) -> Bid:
        """Place a bid on an active listing.

        A missing ``quantity`` bids for one unit.

        Raises:
            ValidationError: If amount or quantity is not positive, or the buyer is the seller
            NotFoundError: If the listing is unknown
            StateError: If the listing is not ACTIVE or has expired
            OversellError: If quantity exceeds the listing's unsold remainder
        """
        await self.ensure_store()
        listing_id = parse_id(listing_id, 'Listing')
        amount = self._positive(amount, 'amount')
        quantity = self._positive('1' if quantity is None else quantity, 'quantity')

        async with self.store.transaction() as tx:
            listing = await tx.get(Listing, listing_id)
            if not listing or listing.tenant_id != tenant_id:
                raise NotFoundError(f"Listing {listing_id} not found")
            if listing.status is not ListingStatus.ACTIVE:
                raise StateError(f"Listing {listing_id} is {listing.status.value}, not ACTIVE")
            if listing.is_expired():
                raise StateError(f"Listing {listing_id} has expired")
            if listing.seller_id == buyer_id:
                raise ValidationError("Sellers cannot bid on their own listing")
            remaining = self.math.subtract(listing.quantity_listed, listing.quantity_sold)
            if self.math.is_greater_than(quantity, remaining):
                raise OversellError(
                    f"Bid quantity {self.math.to_string(quantity)} exceeds the {remaining} "
                    f"units left on listing {listing_id}",
                    {'remaining': remaining}
                )

            bid = Bid(
                listing_id=listing.id,
                tenant_id=tenant_id,
                buyer_id=buyer_id,
                amount=amount,
                quantity=quantity,
            )
            await tx.insert(bid)
            await audit.log_event(
                tx, audit.BID_PLACED, buyer_id,
                {'listingId': str(listing.id), 'bidId': str(bid.id),
                 'amount': self.math.to_string(amount), 'quantity': self.math.to_string(quantity)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )

        logger.info(f"Bid {bid.id} placed on listing {listing.id} by {buyer_id}")
        return bid

    async def _seller_bid(self, tx, bid_id: UUID, tenant_id: str, seller_id: str) -> Tuple[Bid, Listing]:
        bid = await tx.get(Bid, bid_id, for_update=True)
        if not bid or bid.tenant_id != tenant_id:
            raise NotFoundError(f"Bid {bid_id} not found")
        listing = await self._seller_listing(tx, bid.listing_id, tenant_id, seller_id)
        return bid, listing

    async def accept_bid(self, bid_id: Union[str, UUID], tenant_id: str, seller_id: str) -> OwnershipRecord:
        """Accept a bid and transfer ownership to the buyer.

        Returns:
            The new ownership record

        Raises:
            PermissionDeniedError: If the caller is not the listing's seller
            StateError: If the bid is not PENDING or the listing is not ACTIVE
            OversellError: If the bid exceeds the listing's unsold quantity;
                nothing is changed
        """
        await self.ensure_store()
        bid_id = parse_id(bid_id, 'Bid')

        async with self.store.transaction() as tx:
            bid, listing = await self._seller_bid(tx, bid_id, tenant_id, seller_id)
            if bid.status is not BidStatus.PENDING:
                raise StateError(f"Bid {bid_id} is {bid.status.value}, not PENDING")
            if listing.status is not ListingStatus.ACTIVE:
                raise StateError(f"Listing {listing.id} is {listing.status.value}, not ACTIVE")
            if listing.is_expired():
                raise StateError(f"Listing {listing.id} has expired")

            sold = self.math.from_string(self.math.add(listing.quantity_sold, bid.quantity))
            if self.math.is_greater_than(sold, listing.quantity_listed):
                raise OversellError(
                    f"Accepting bid {bid_id} would sell {self.math.to_string(sold)} "
                    f"of {self.math.to_string(listing.quantity_listed)} listed",
                    {'quantityListed': self.math.to_string(listing.quantity_listed),
                     'quantitySold': self.math.to_string(listing.quantity_sold),
                     'bidQuantity': self.math.to_string(bid.quantity)}
                )

            ownership = OwnershipRecord(
                asset_id=listing.asset_id,
                custody_record_id=listing.custody_record_id,
                tenant_id=tenant_id,
                owner_id=bid.buyer_id,
                seller_id=listing.seller_id,
                quantity=bid.quantity,
                purchase_price=bid.amount,
                listing_id=listing.id,
                bid_id=bid.id,
            )
            await tx.insert(ownership)

            bid.status = bid.status.transition(BidStatus.ACCEPTED)
            await tx.update(bid, expected_status=BidStatus.PENDING)

            listing.quantity_sold = sold
            if self.math.is_equal(sold, listing.quantity_listed):
                listing.status = listing.status.transition(ListingStatus.SOLD)
            await tx.update(listing, expected_status=ListingStatus.ACTIVE)

            await audit.log_event(
                tx, audit.BID_ACCEPTED, seller_id,
                {'bidId': str(bid.id), 'listingId': str(listing.id)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )
            await audit.log_event(
                tx, audit.OWNERSHIP_TRANSFERRED, seller_id,
                {'ownershipId': str(ownership.id), 'ownerId': bid.buyer_id,
                 'quantity': self.math.to_string(bid.quantity)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )

        logger.info(
            f"Bid {bid.id} accepted: {self.math.to_string(bid.quantity)} {listing.asset_id} "
            f"from {listing.seller_id} to {bid.buyer_id}"
        )
        return ownership

    async def reject_bid(self, bid_id: Union[str, UUID], tenant_id: str, seller_id: str) -> Bid:
        await self.ensure_store()
        bid_id = parse_id(bid_id, 'Bid')

        async with self.store.transaction() as tx:
            bid, listing = await self._seller_bid(tx, bid_id, tenant_id, seller_id)
            bid.status = bid.status.transition(BidStatus.REJECTED)
            await tx.update(bid, expected_status=BidStatus.PENDING)
            await audit.log_event(
                tx, audit.BID_REJECTED, seller_id,
                {'bidId': str(bid.id), 'listingId': str(listing.id)},
                tenant_id=tenant_id, custody_record_id=listing.custody_record_id
            )
        return bid

    async def get_listing(self, listing_id: Union[str, UUID], tenant_id: str) -> Listing:
        await self.ensure_store()
        listing_id = parse_id(listing_id, 'Listing')
        async with self.store.transaction() as tx:
            listing = await tx.get(Listing, listing_id)
        if not listing or listing.tenant_id != tenant_id:
            raise NotFoundError(f"Listing {listing_id} not found")
        return listing

    async def list_listings(
        self,
        tenant_id: str,
        status: Optional[ListingStatus] = None,
        asset_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Listing], int]:
        await self.ensure_store()
        filters = dict(tenant_id=tenant_id, status=status, asset_id=asset_id, seller_id=seller_id)
        async with self.store.transaction() as tx:
            listings = await tx.find(Listing, limit=limit, offset=offset, **filters)
            total = await tx.count(Listing, **filters)
        return listings, total

    async def list_bids(
        self,
        listing_id: Union[str, UUID],
        tenant_id: str,
        status: Optional[BidStatus] = None
    ) -> List[Bid]:
        listing = await self.get_listing(listing_id, tenant_id)
        async with self.store.transaction() as tx:
            return await tx.find(Bid, listing_id=listing.id, status=status)

    async def get_balance(self, asset_id: str, tenant_id: str, user_id: str) -> Dict[str, str]:
        """Balance of one user for one asset.

        Returns:
            Dict with ``held``, ``reserved`` and ``available`` decimal strings
        """
        await self.ensure_store()
        async with self.store.transaction() as tx:
            record = await tx.find_one(CustodyRecord, tenant_id=tenant_id, asset_id=asset_id)
            if not record:
                raise NotFoundError(f"No custody record for asset {asset_id}")
            balance = await self._balance(tx, record, user_id)
        return {
            'assetId': asset_id,
            'userId': user_id,
            **{key: self.math.to_string(value) for key, value in balance.items()},
        }

    async def list_ownership(
        self,
        asset_id: str,
        tenant_id: str,
        owner_id: Optional[str] = None
    ) -> List[OwnershipRecord]:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            return await tx.find(
                OwnershipRecord, order_by='acquired_at',
                tenant_id=tenant_id, asset_id=asset_id, owner_id=owner_id
            )


__all__ = ['MarketplaceManager', 'compute_balance', 'issuer_of']
