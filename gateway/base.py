"""Signer gateway contract shared by the real and simulated custodians."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

# EVM chain ids to custodian asset ids
CHAIN_ASSETS = {
    '1': 'ETH',
    '11155111': 'ETH_TEST5',
    '137': 'MATIC',
    '80001': 'MATIC_MUMBAI',
    '80002': 'MATIC_AMOY',
    '56': 'BNB',
    '97': 'BNB_TEST',
    '43114': 'AVAX',
    '43113': 'AVAX_TEST',
}
DEFAULT_CHAIN_ASSET = 'ETH_TEST5'


def map_chain_to_asset(chain: Any) -> str:
    """Map a chain id to the custodian's native asset id.

    Ids that are already asset ids (alphabetic) pass through unchanged.
    """
    if chain is None or str(chain).strip() == '':
        return DEFAULT_CHAIN_ASSET
    chain = str(chain).strip()
    if chain in CHAIN_ASSETS:
        return CHAIN_ASSETS[chain]
    if not chain.isdigit():
        return chain
    return DEFAULT_CHAIN_ASSET


class TaskKind(str, Enum):
    TOKEN_LINK = 'TOKEN_LINK'
    TRANSACTION = 'TRANSACTION'


class CompletionStatus(str, Enum):
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    TIMEOUT = 'TIMEOUT'


@dataclass(frozen=True)
class GasCheck:
    sufficient: bool
    available: str
    required: str


@dataclass(frozen=True)
class VaultBalance:
    vault_id: str
    asset_id: str
    total: str
    available: str
    pending: str = '0'

    def to_api(self) -> Dict[str, str]:
        return {
            'vaultId': self.vault_id,
            'assetId': self.asset_id,
            'total': self.total,
            'available': self.available,
            'pending': self.pending,
        }


@dataclass(frozen=True)
class Submission:
    task_id: str
    kind: TaskKind = TaskKind.TRANSACTION
    status: Optional[str] = None


@dataclass(frozen=True)
class Completion:
    status: CompletionStatus
    tx_hash: Optional[str] = None
    contract_address: Optional[str] = None
    token_id: Optional[str] = None
    error_message: Optional[str] = None


class SignerGateway(ABC):
    """Custodial MPC signer.

    Submissions return as soon as the custodian accepts the request. The
    custodian is not trusted to deduplicate retried submissions, so
    submissions are never retried.
    """

    @abstractmethod
    async def get_vault_balance(self, vault_id: str, asset_id: str) -> VaultBalance:
        """Read a vault's balance of one custodian asset (native gas or token)."""

    @abstractmethod
    async def ensure_gas_for_vault(self, vault_id: str, chain_asset_id: str) -> GasCheck:
        """Compare the vault's native balance to the configured minimum."""

    @abstractmethod
    async def mint(self, vault_id: str, asset_id: str, contract_params: Dict[str, Any]) -> Submission:
        """Deploy a token contract and mint its supply.

        Args:
            vault_id: Vault that deploys and holds the supply
            asset_id: Custodian asset id of the chain (see ``map_chain_to_asset``)
            contract_params: ``name``, ``symbol``, ``decimals`` and ``totalSupply``
        """

    @abstractmethod
    async def burn(self, vault_id: str, token_id: str, amount: str) -> Submission:
        """Burn ``amount`` tokens held by the vault."""

    @abstractmethod
    async def freeze(self, vault_id: str, token_id: str, address: Optional[str] = None) -> Submission:
        """Freeze one holder, or pause the whole token when no address is given."""

    @abstractmethod
    async def withdraw(self, vault_id: str, token_id: str, amount: str, destination: str) -> Submission:
        """Transfer ``amount`` tokens from the vault to an external address."""

    @abstractmethod
    async def await_completion(
        self,
        task_id: str,
        timeout_seconds: float,
        kind: TaskKind = TaskKind.TRANSACTION
    ) -> Completion:
        """Wait for a submitted task to reach a terminal state.

        Returns a TIMEOUT completion rather than raising when the deadline passes.
        """

    async def close(self) -> None:
        pass
