"""Signer gateway backed by the Fireblocks REST API."""
import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from eth_abi import encode
from eth_utils import keccak

from errors import GatewayError, SubmissionError, ValidationError
from utils.decimal_math import SafeMath
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
from .client import CustodianAPIError, CustodianClient

logger = logging.getLogger(__name__)

TOKEN_LINK_SUCCESS = {'COMPLETED'}
TOKEN_LINK_FAILURE = {'FAILED'}
TRANSACTION_SUCCESS = {'COMPLETED'}
TRANSACTION_FAILURE = {'FAILED', 'CANCELLED', 'REJECTED', 'BLOCKED'}

MAX_POLL_INTERVAL = 10.0


def encode_call(signature: str, types: list, args: list) -> str:
    """ABI encode a contract call as 0x-prefixed hex.

    Example:
        >>> encode_call('burn(uint256)', ['uint256'], [1])[:10]
        '0x42966c68'
    """
    selector = keccak(text=signature)[:4]
    return '0x' + (selector + encode(types, args)).hex()


class FireblocksGateway(SignerGateway):
    """Submits contract deployments and calls through the custodian's vaults."""

    def __init__(
        self,
        client: CustodianClient,
        conf: Mapping[str, Any],
        poll_interval: float = 2.0,
        math: Optional[SafeMath] = None
    ):
        """Initialize the gateway.

        Args:
            client: Signed REST client
            conf: The [custodian] settings
            poll_interval: Initial delay between completion polls
            math: Decimal policy for amount scaling
        """
        self.client = client
        self.conf = conf
        self.poll_interval = poll_interval
        self.math = math or SafeMath()

    async def _get(self, path: str) -> Any:
        return await asyncio.to_thread(self.client.get, path)

    async def _submit(self, path: str, payload: Dict[str, Any], kind: TaskKind) -> Submission:
        try:
            response = await asyncio.to_thread(self.client.post, path, payload)
        except CustodianAPIError as e:
            logger.error(f"Submission to {path} failed: {e}")
            raise SubmissionError(str(e), e.details) from e

        task_id = response.get('id') if isinstance(response, dict) else None
        if not task_id:
            raise SubmissionError(f"Custodian accepted {path} without returning a task id")

        status = response.get('status')
        if status in TOKEN_LINK_FAILURE | TRANSACTION_FAILURE:
            message = response.get('errorMessage') or response.get('subStatus') or status
            raise SubmissionError(f"Custodian rejected task {task_id}: {message}", {'taskId': task_id})

        logger.info(f"Custodian accepted {kind.value} task {task_id} ({status})")
        return Submission(task_id=task_id, kind=kind, status=status)

    async def _token_details(self, token_id: str) -> Dict[str, Any]:
        details = await self._get(f"/v1/tokenization/tokens/{token_id}")
        metadata = details.get('tokenMetadata') or {}
        address = metadata.get('contractAddress')
        if not address:
            raise SubmissionError(f"Token {token_id} has no contract address")
        return {
            'contract_address': address,
            'decimals': int(metadata.get('decimals', self.math.ctx.token_decimals)),
            'asset_id': details.get('blockchainId') or map_chain_to_asset(None),
        }

    async def _contract_call(
        self,
        vault_id: str,
        token_id: str,
        call_data_for: Any,
        note: str
    ) -> Submission:
        token = await self._token_details(token_id)
        try:
            call_data = call_data_for(token)
        except ValidationError as e:
            raise SubmissionError(e.message) from e
        payload = {
            'operation': 'CONTRACT_CALL',
            'assetId': token['asset_id'],
            'source': {'type': 'VAULT_ACCOUNT', 'id': str(vault_id)},
            'destination': {
                'type': 'ONE_TIME_ADDRESS',
                'oneTimeAddress': {'address': token['contract_address']},
            },
            'amount': '0',
            'extraParameters': {'contractCallData': call_data},
            'note': note,
        }
        return await self._submit('/v1/transactions', payload, TaskKind.TRANSACTION)

    async def get_vault_balance(self, vault_id: str, asset_id: str) -> VaultBalance:
        asset = map_chain_to_asset(asset_id)
        data = await self._get(f"/v1/vault/accounts/{vault_id}/{asset}")
        if not isinstance(data, dict):
            raise GatewayError(f"Unreadable balance for vault {vault_id}: {data!r}")

        amounts = {}
        for field in ('available', 'total', 'pending'):
            value = data.get(field)
            if value is None:
                value = data.get('balance', data.get('available', '0')) if field == 'total' else '0'
            try:
                amounts[field] = self.math.to_string(Decimal(str(value)))
            except (InvalidOperation, ValidationError):
                raise GatewayError(f"Unreadable {field} balance for vault {vault_id}: {value!r}")
        return VaultBalance(vault_id=str(vault_id), asset_id=asset, **amounts)

    async def ensure_gas_for_vault(self, vault_id: str, chain_asset_id: str) -> GasCheck:
        required = Decimal(str(self.conf.get('min_gas_balance', '0.001')))
        balance = await self.get_vault_balance(vault_id, chain_asset_id)
        available = Decimal(balance.available)

        sufficient = available >= required
        if not sufficient:
            logger.warning(f"Vault {vault_id} holds {available} {balance.asset_id}, needs {required}")
        return GasCheck(
            sufficient=sufficient,
            available=balance.available,
            required=self.math.to_string(required),
        )

    async def mint(self, vault_id: str, asset_id: str, contract_params: Dict[str, Any]) -> Submission:
        chain_asset = map_chain_to_asset(asset_id)
        decimals = int(contract_params.get('decimals', self.math.ctx.token_decimals))
        try:
            supply = self.math.to_base_units(contract_params['totalSupply'], decimals)
        except ValidationError as e:
            raise SubmissionError(e.message) from e

        payload = {
            'blockchainId': chain_asset,
            'assetId': chain_asset,
            'vaultAccountId': str(vault_id),
            'createParams': {
                'contractId': self.conf.get('contract_template_id', ''),
                'deployFunctionParams': [
                    {'name': 'name', 'type': 'string', 'value': contract_params['name']},
                    {'name': 'symbol', 'type': 'string', 'value': contract_params['symbol']},
                    {'name': 'decimals', 'type': 'uint8', 'value': str(decimals)},
                    {'name': 'totalSupply', 'type': 'uint256', 'value': str(supply)},
                ],
            },
            'displayName': contract_params['name'],
            'useGasless': False,
            'feeLevel': 'MEDIUM',
        }
        return await self._submit('/v1/tokenization/tokens', payload, TaskKind.TOKEN_LINK)

    async def burn(self, vault_id: str, token_id: str, amount: str) -> Submission:
        return await self._contract_call(
            vault_id,
            token_id,
            lambda token: encode_call(
                'burn(uint256)', ['uint256'],
                [self.math.to_base_units(amount, token['decimals'])]
            ),
            f"Burn {amount} of token {token_id}",
        )

    async def freeze(self, vault_id: str, token_id: str, address: Optional[str] = None) -> Submission:
        if address:
            call = lambda token: encode_call('freeze(address)', ['address'], [address])
            note = f"Freeze {address} on token {token_id}"
        else:
            call = lambda token: encode_call('pause()', [], [])
            note = f"Pause token {token_id}"
        return await self._contract_call(vault_id, token_id, call, note)

    async def withdraw(self, vault_id: str, token_id: str, amount: str, destination: str) -> Submission:
        return await self._contract_call(
            vault_id,
            token_id,
            lambda token: encode_call(
                'transfer(address,uint256)', ['address', 'uint256'],
                [destination, self.math.to_base_units(amount, token['decimals'])]
            ),
            f"Withdraw {amount} of token {token_id} to {destination}",
        )

    async def _poll(self, task_id: str, kind: TaskKind) -> Optional[Completion]:
        if kind is TaskKind.TOKEN_LINK:
            data = await self._get(f"/v1/tokenization/tokens/{task_id}")
            status = data.get('status')
            if status in TOKEN_LINK_SUCCESS:
                return Completion(
                    status=CompletionStatus.COMPLETED,
                    tx_hash=data.get('txHash'),
                    contract_address=(data.get('tokenMetadata') or {}).get('contractAddress'),
                    token_id=data.get('id') or task_id,
                )
            if status in TOKEN_LINK_FAILURE:
                return Completion(
                    status=CompletionStatus.FAILED,
                    tx_hash=data.get('txHash'),
                    error_message=data.get('errorMessage') or data.get('substatus') or status,
                )
            return None

        data = await self._get(f"/v1/transactions/{task_id}")
        status = data.get('status')
        if status in TRANSACTION_SUCCESS:
            return Completion(status=CompletionStatus.COMPLETED, tx_hash=data.get('txHash'))
        if status in TRANSACTION_FAILURE:
            return Completion(
                status=CompletionStatus.FAILED,
                tx_hash=data.get('txHash'),
                error_message=data.get('subStatus') or status,
            )
        return None

    async def await_completion(
        self,
        task_id: str,
        timeout_seconds: float,
        kind: TaskKind = TaskKind.TRANSACTION
    ) -> Completion:
        deadline = time.monotonic() + timeout_seconds
        interval = self.poll_interval

        while True:
            try:
                completion = await self._poll(task_id, kind)
                if completion is not None:
                    logger.info(f"Task {task_id} finished {completion.status.value}")
                    return completion
            except GatewayError as e:
                logger.warning(f"Polling task {task_id} failed, will retry: {e}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Task {task_id} still pending after {timeout_seconds}s")
                return Completion(
                    status=CompletionStatus.TIMEOUT,
                    error_message=f"task {task_id} still pending after {timeout_seconds}s",
                )
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * 1.5, MAX_POLL_INTERVAL)

    async def close(self) -> None:
        await asyncio.to_thread(self.client.close)
