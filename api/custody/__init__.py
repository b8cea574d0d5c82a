"""Custody API endpoints."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, Request, status

import audit
from auth import Principal, get_principal
from custody import CustodyManager
from database.models import CustodyStatus
from errors import AssetLinkError
from ..common import CamelModel, get_custody, http_error, internal_error

router = APIRouter(
    prefix="/v1/custody",
    tags=["Custody"]
)


class LinkRequest(CamelModel):
    """Request model for a custody link."""
    asset_id: str
    created_by: Optional[str] = None
    blockchain: Optional[str] = None
    token_standard: Optional[str] = None
    quantity: Optional[Union[str, int, float]] = None
    nav_oracle_address: Optional[str] = None
    por_oracle_address: Optional[str] = None
    vault_id: Optional[str] = None


class RejectRequest(CamelModel):
    reason: Optional[str] = None


@router.post("/link", status_code=status.HTTP_201_CREATED)
async def link_asset(
    body: LinkRequest,
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    """Request a custody link; a checker must approve it."""
    try:
        record = await custody.link_asset(
            body.asset_id,
            principal,
            **body.model_dump(exclude={'asset_id'})
        )
        return record.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "link asset")


@router.post("/{custody_id}/approve")
async def approve_link(
    custody_id: str,
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    try:
        record = await custody.approve_link(custody_id, principal)
        return record.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "approve custody link")


@router.post("/{custody_id}/reject")
async def reject_link(
    custody_id: str,
    body: RejectRequest,
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    try:
        record = await custody.reject_link(custody_id, principal, body.reason)
        return record.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "reject custody link")


@router.get("")
async def list_custody_records(
    status: Optional[CustodyStatus] = Query(None),
    created_by: Optional[str] = Query(None, alias="createdBy"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    try:
        records, total = await custody.list(
            principal.tenant_id, status=status, created_by=created_by, limit=limit, offset=offset
        )
        return {'records': [record.to_api() for record in records], 'total': total}
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "list custody records")


@router.get("/{asset_id}")
async def get_custody_record(
    asset_id: str,
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    """Get the custody record of an asset by its asset id."""
    try:
        record = await custody.get_by_asset_id(asset_id, principal.tenant_id)
        return record.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get custody record")


@router.get("/{asset_id}/audit")
async def get_audit_trail(
    asset_id: str,
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    principal: Principal = Depends(get_principal),
    custody: CustodyManager = Depends(get_custody)
):
    """Audit entries for an asset's custody record, newest first."""
    try:
        record = await custody.get_by_asset_id(asset_id, principal.tenant_id)
        async with request.app.state.store.transaction() as tx:
            entries = await audit.get_trail(
                tx, custody_record_id=record.id, tenant_id=principal.tenant_id, limit=limit
            )
        return {'entries': [entry.to_api() for entry in entries]}
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get audit trail")
