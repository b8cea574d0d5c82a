"""Signer gateway used when no custodian credentials are configured.

Every submission completes immediately. Ids and addresses are derived
from the request, so repeated runs produce the same values.
"""
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional

from .base import (
    Completion,
    CompletionStatus,
    GasCheck,
    SignerGateway,
    Submission,
    TaskKind,
    VaultBalance,
    map_chain_to_asset,
)

logger = logging.getLogger(__name__)


def _digest(*parts: Any) -> str:
    return hashlib.sha256(':'.join(str(part) for part in parts).encode('utf-8')).hexdigest()


class SimulatedGateway(SignerGateway):
    """In-process stand-in for the custodian."""

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}

    def _task(self, kind: TaskKind, **details) -> Submission:
        task_id = f"sim_{secrets.token_hex(8)}"
        self.tasks[task_id] = {'kind': kind, **details}
        logger.warning(f"Simulated {kind.value} task {task_id}: {details}")
        return Submission(task_id=task_id, kind=kind, status='COMPLETED')

    async def get_vault_balance(self, vault_id: str, asset_id: str) -> VaultBalance:
        return VaultBalance(
            vault_id=str(vault_id), asset_id=map_chain_to_asset(asset_id), total='1', available='1'
        )

    async def ensure_gas_for_vault(self, vault_id: str, chain_asset_id: str) -> GasCheck:
        return GasCheck(sufficient=True, available='1', required='0')

    async def mint(self, vault_id: str, asset_id: str, contract_params: Dict[str, Any]) -> Submission:
        return self._task(
            TaskKind.TOKEN_LINK,
            vault_id=vault_id,
            asset_id=asset_id,
            symbol=contract_params.get('symbol'),
        )

    async def burn(self, vault_id: str, token_id: str, amount: str) -> Submission:
        return self._task(TaskKind.TRANSACTION, vault_id=vault_id, token_id=token_id, amount=amount)

    async def freeze(self, vault_id: str, token_id: str, address: Optional[str] = None) -> Submission:
        return self._task(TaskKind.TRANSACTION, vault_id=vault_id, token_id=token_id, address=address)

    async def withdraw(self, vault_id: str, token_id: str, amount: str, destination: str) -> Submission:
        return self._task(
            TaskKind.TRANSACTION,
            vault_id=vault_id,
            token_id=token_id,
            amount=amount,
            destination=destination,
        )

    async def await_completion(
        self,
        task_id: str,
        timeout_seconds: float,
        kind: TaskKind = TaskKind.TRANSACTION
    ) -> Completion:
        task = self.tasks.get(task_id, {})
        contract_address = None
        token_id = None
        if kind is TaskKind.TOKEN_LINK:
            contract_address = '0x' + _digest('contract', task.get('asset_id'), task.get('symbol'))[:40]
            token_id = task_id
        return Completion(
            status=CompletionStatus.COMPLETED,
            tx_hash='0x' + _digest('tx', task_id),
            contract_address=contract_address,
            token_id=token_id,
        )
