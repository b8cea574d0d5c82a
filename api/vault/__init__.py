"""Vault API endpoints.

Read-only view of custodian vault balances, used to confirm a vault
holds enough native gas before a checker approves an operation.
"""

from fastapi import APIRouter, Depends

from auth import Principal, get_principal
from errors import AssetLinkError
from gateway import SignerGateway
from ..common import get_gateway, http_error, internal_error

router = APIRouter(
    prefix="/v1/vault",
    tags=["Vault"]
)


@router.get("/{vault_id}/balance/{asset_id}")
async def get_vault_balance(
    vault_id: str,
    asset_id: str,
    principal: Principal = Depends(get_principal),
    gateway: SignerGateway = Depends(get_gateway)
):
    """Balance of one asset in a vault.

    ``asset_id`` is a custodian asset id (ETH_TEST5) or an EVM chain id (11155111).
    """
    try:
        balance = await gateway.get_vault_balance(vault_id, asset_id)
        return balance.to_api()
    except AssetLinkError as e:
        raise http_error(e)
    except Exception as e:
        raise internal_error(e, "get vault balance")
