"""Shared fixtures: in-process store, recording signer gateway and principals."""

from collections import Counter
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from auth import Principal
from custody import CustodyManager
from database import MemoryStore
from database.models import Role
from errors import SubmissionError
from gateway import Completion, CompletionStatus, GasCheck, SignerGateway, Submission, TaskKind, VaultBalance
from marketplace import MarketplaceManager
from operations import OperationEngine

TENANT = "tenant-1"
CONTRACT_ADDRESS = "0xabc"


class StubGateway(SignerGateway):
    """Signer gateway that records every call and answers from its settings."""

    def __init__(self):
        self.calls = Counter()
        self.submissions: List[Dict[str, Any]] = []
        self.gas_sufficient = True
        self.gas_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.completions: List[Completion] = []
        self.contract_address = CONTRACT_ADDRESS

    async def get_vault_balance(self, vault_id, asset_id):
        self.calls['get_vault_balance'] += 1
        if self.gas_error:
            raise self.gas_error
        available = '1' if self.gas_sufficient else '0'
        return VaultBalance(vault_id=vault_id, asset_id=asset_id, total=available, available=available)

    async def ensure_gas_for_vault(self, vault_id, chain_asset_id):
        self.calls['ensure_gas_for_vault'] += 1
        if self.gas_error:
            raise self.gas_error
        return GasCheck(
            sufficient=self.gas_sufficient,
            available='1' if self.gas_sufficient else '0',
            required='0.001',
        )

    def _submit(self, name: str, kind: TaskKind, **details) -> Submission:
        self.calls[name] += 1
        if self.submit_error:
            raise self.submit_error
        task_id = f"task-{sum(self.calls[n] for n in ('mint', 'burn', 'freeze', 'withdraw'))}"
        self.submissions.append({'name': name, 'task_id': task_id, **details})
        return Submission(task_id=task_id, kind=kind)

    async def mint(self, vault_id, asset_id, contract_params):
        return self._submit('mint', TaskKind.TOKEN_LINK, vault_id=vault_id, asset_id=asset_id,
                            params=contract_params)

    async def burn(self, vault_id, token_id, amount):
        return self._submit('burn', TaskKind.TRANSACTION, vault_id=vault_id, token_id=token_id,
                            amount=amount)

    async def freeze(self, vault_id, token_id, address=None):
        return self._submit('freeze', TaskKind.TRANSACTION, vault_id=vault_id, token_id=token_id,
                            address=address)

    async def withdraw(self, vault_id, token_id, amount, destination):
        return self._submit('withdraw', TaskKind.TRANSACTION, vault_id=vault_id, token_id=token_id,
                            amount=amount, destination=destination)

    async def await_completion(self, task_id, timeout_seconds, kind=TaskKind.TRANSACTION):
        self.calls['await_completion'] += 1
        if self.completions:
            return self.completions.pop(0)
        return Completion(
            status=CompletionStatus.COMPLETED,
            tx_hash=f"0xtx-{task_id}",
            contract_address=self.contract_address if kind is TaskKind.TOKEN_LINK else None,
            token_id=task_id if kind is TaskKind.TOKEN_LINK else None,
        )

    @property
    def submitted(self) -> int:
        return sum(self.calls[name] for name in ('mint', 'burn', 'freeze', 'withdraw'))


MINT_PAYLOAD = {
    'tokenSymbol': 'GOLD',
    'tokenName': 'Gold Bar Token',
    'totalSupply': '100',
    'decimals': 18,
    'blockchainId': 'ETH_TEST5',
}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def maker():
    return Principal(key_id="ak_maker", tenant_id=TENANT, role=Role.MAKER, user_id="alice")


@pytest.fixture
def checker():
    return Principal(key_id="ak_checker", tenant_id=TENANT, role=Role.CHECKER, user_id="bob")


@pytest.fixture
def second_checker():
    return Principal(key_id="ak_checker2", tenant_id=TENANT, role=Role.CHECKER, user_id="carol")


@pytest.fixture
def viewer():
    return Principal(key_id="ak_viewer", tenant_id=TENANT, role=Role.VIEWER, user_id="victor")


@pytest.fixture
def custody(store):
    return CustodyManager(store)


@pytest.fixture
def engine(store, gateway):
    return OperationEngine(
        store,
        gateway,
        confirmation_timeout=0.05,
        confirmation_attempts=2,
        poll_interval=0.01,
    )


@pytest.fixture
def marketplace(store):
    return MarketplaceManager(store)


@pytest_asyncio.fixture
async def linked_record(custody, maker, checker):
    """Custody record for asset A1 approved to LINKED."""
    record = await custody.link_asset("A1", maker, quantity="100")
    return await custody.approve_link(record.id, checker)


@pytest_asyncio.fixture
async def minted_record(engine, custody, linked_record, maker, checker):
    """Custody record for asset A1 minted with a supply of 100."""
    operation = await engine.create_operation('MINT', linked_record.id, dict(MINT_PAYLOAD), maker)
    await engine.approve_operation(operation.id, checker)
    return await custody.get(linked_record.id, TENANT)


def failing_submission(message: str = "custodian unavailable") -> SubmissionError:
    return SubmissionError(message)
