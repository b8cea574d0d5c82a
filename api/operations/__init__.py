"""Operation API endpoints.

Makers create operations, checkers approve or reject them. Approval
executes the operation before the response is sent, so the returned
status is EXECUTED or FAILED.
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Query, status

from auth import Principal, get_principal
from database.models import OperationStatus, OperationType
from errors import AssetLinkError
from operations import OperationEngine
from ..common import CamelModel, get_engine, http_error, internal_error

router = APIRouter(
    prefix="/v1/operations",
    tags=["Operations"]
)

Numeric = Union[str, int, float]


class MintRequest(CamelModel):
    """Request model for creating a MINT operation."""
    asset_id: str
    token_symbol: Optional[str] = None
    token_name: Optional[str] = None
    total_supply: Optional[Numeric] = None
    decimals: Optional[Union[int, str]] = None
    blockchain_id: Optional[Union[str, int]] = None
    vault_id: Optional[str] = None


class CreateOperationRequest(CamelModel):
    """Request model for creating an operation of any type."""
    type: str
    custody_record_id: str
    payload: Dict[str, Any] = {}


class ApproveRequest(CamelModel):
    comment: Optional[str] = None


class RejectRequest(CamelModel):
    reason: Optional[str] = None


@router.post("/mint", status_code=status.HTTP_201_CREATED)
async def create_mint_operation(
    body: MintRequest,
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    """Create a MINT operation for an asset addressed by its asset id."""
    params = body.model_dump(by_alias=True, exclude={'asset_id'}, exclude_none=True)
    try:
        operation = await engine.create_mint_operation(body.asset_id, principal, **params)
        return operation.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "create mint operation")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_operation(
    body: CreateOperationRequest,
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    """Create an operation of any type."""
    try:
        operation = await engine.create_operation(
            body.type.upper(), body.custody_record_id, body.payload, principal
        )
        return operation.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "create operation")


@router.get("")
async def list_operations(
    status: Optional[OperationStatus] = Query(None),
    type: Optional[OperationType] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    """List the tenant's operations, newest first."""
    try:
        operations, total = await engine.list_operations(
            principal.tenant_id, status=status, type=type, limit=limit, offset=offset
        )
        return {
            'operations': [operation.to_api() for operation in operations],
            'total': total,
        }
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "list operations")


@router.get("/{operation_id}")
async def get_operation(
    operation_id: str,
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    try:
        operation = await engine.get_operation(operation_id, principal.tenant_id)
        return operation.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get operation")


@router.post("/{operation_id}/approve")
async def approve_operation(
    operation_id: str,
    body: Optional[ApproveRequest] = None,
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    """Approve and execute an operation.

    Gateway failures are reported through the operation's FAILED status
    and ``errorMessage``, not as an HTTP error.
    """
    try:
        operation = await engine.approve_operation(
            operation_id, principal, comment=body.comment if body else None
        )
        return operation.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "approve operation")


@router.post("/{operation_id}/reject")
async def reject_operation(
    operation_id: str,
    body: RejectRequest,
    principal: Principal = Depends(get_principal),
    engine: OperationEngine = Depends(get_engine)
):
    try:
        operation = await engine.reject_operation(operation_id, principal, body.reason)
        return operation.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "reject operation")
