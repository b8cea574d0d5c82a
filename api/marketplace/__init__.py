"""Marketplace API endpoints.

The caller's identity (``X-USER-ID``, or the API key) acts as seller
or buyer.
"""

from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, status

from auth import Principal, get_principal
from database.models import BidStatus, ListingStatus
from errors import AssetLinkError
from marketplace import MarketplaceManager
from ..common import CamelModel, get_marketplace, http_error, internal_error

router = APIRouter(
    prefix="/v1/marketplace",
    tags=["Marketplace"]
)

Numeric = Union[str, int, float]


class CreateListingRequest(CamelModel):
    """Request model for creating a listing."""
    asset_id: str
    price: Optional[Numeric] = None
    quantity: Optional[Numeric] = None
    expiry_date: Optional[datetime] = None
    currency: str = 'USD'
    draft: bool = False


class PlaceBidRequest(CamelModel):
    """Request model for placing a bid."""
    amount: Optional[Numeric] = None
    quantity: Optional[Numeric] = None


@router.post("/listings", status_code=status.HTTP_201_CREATED)
async def create_listing(
    body: CreateListingRequest,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        listing = await marketplace.create_listing(
            body.asset_id,
            principal.tenant_id,
            principal.identity,
            price=body.price,
            quantity=body.quantity,
            expiry_date=body.expiry_date,
            currency=body.currency,
            draft=body.draft,
        )
        return listing.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "create listing")


@router.get("/listings")
async def list_listings(
    status: Optional[ListingStatus] = Query(None),
    asset_id: Optional[str] = Query(None, alias="assetId"),
    seller_id: Optional[str] = Query(None, alias="sellerId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        listings, total = await marketplace.list_listings(
            principal.tenant_id, status=status, asset_id=asset_id, seller_id=seller_id,
            limit=limit, offset=offset
        )
        return {'listings': [listing.to_api() for listing in listings], 'total': total}
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "list listings")


@router.get("/listings/{listing_id}")
async def get_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        listing = await marketplace.get_listing(listing_id, principal.tenant_id)
        return listing.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get listing")


@router.post("/listings/{listing_id}/publish")
async def publish_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        listing = await marketplace.publish_listing(listing_id, principal.tenant_id, principal.identity)
        return listing.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "publish listing")


@router.post("/listings/{listing_id}/cancel")
async def cancel_listing(
    listing_id: str,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        listing = await marketplace.cancel_listing(listing_id, principal.tenant_id, principal.identity)
        return listing.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "cancel listing")


@router.post("/listings/{listing_id}/bids", status_code=status.HTTP_201_CREATED)
async def place_bid(
    listing_id: str,
    body: PlaceBidRequest,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        bid = await marketplace.place_bid(
            listing_id, principal.tenant_id, principal.identity, body.amount, body.quantity
        )
        return bid.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "place bid")


@router.get("/listings/{listing_id}/bids")
async def list_bids(
    listing_id: str,
    status: Optional[BidStatus] = Query(None),
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        bids = await marketplace.list_bids(listing_id, principal.tenant_id, status=status)
        return {'bids': [bid.to_api() for bid in bids]}
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "list bids")


@router.post("/bids/{bid_id}/accept")
async def accept_bid(
    bid_id: str,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    """Accept a bid; returns the buyer's new ownership record."""
    try:
        ownership = await marketplace.accept_bid(bid_id, principal.tenant_id, principal.identity)
        return ownership.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "accept bid")


@router.post("/bids/{bid_id}/reject")
async def reject_bid(
    bid_id: str,
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        bid = await marketplace.reject_bid(bid_id, principal.tenant_id, principal.identity)
        return bid.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "reject bid")


@router.get("/balances/{asset_id}")
async def get_balance(
    asset_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    """Balance of the caller, or of ``userId``, for an asset."""
    try:
        return await marketplace.get_balance(asset_id, principal.tenant_id, user_id or principal.identity)
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get balance")


@router.get("/ownership/{asset_id}")
async def list_ownership(
    asset_id: str,
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    principal: Principal = Depends(get_principal),
    marketplace: MarketplaceManager = Depends(get_marketplace)
):
    try:
        records = await marketplace.list_ownership(asset_id, principal.tenant_id, owner_id=owner_id)
        return {'ownership': [record.to_api() for record in records]}
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "list ownership")
