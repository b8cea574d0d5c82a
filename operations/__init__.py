"""Operations module implementing the maker-checker workflow.

This module provides:
1. Operation creation by makers (MINT, BURN, FREEZE, WITHDRAW)
2. Approval and rejection by a distinct checker
3. Exactly-once execution of approved operations against the signer gateway

Execution runs in short phases, each in its own transaction, so no
transaction is held open across custodian I/O:

    claim -> re-fetch -> gas check and submit -> record task -> await -> finalize

An approved operation is submitted at most once. Only the approval that
moves an operation out of PENDING_CHECKER executes it; every other
attempt fails with ``StateError`` before touching the gateway.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from uuid import UUID

import backoff

import audit
from auth import Principal, require_checker, require_maker
from custody import parse_id
from database import get_store
from database.models import (
    IN_FLIGHT,
    CustodyRecord,
    CustodyStatus,
    Operation,
    OperationStatus,
    OperationType,
    utcnow,
)
from errors import (
    ConflictError,
    GasInsufficientError,
    GatewayError,
    InsufficientQuantityError,
    NotFoundError,
    SelfApprovalError,
    StateError,
    ValidationError,
)
from gateway import Completion, CompletionStatus, SignerGateway, Submission, TaskKind, map_chain_to_asset
from marketplace import compute_balance, issuer_of
from utils.decimal_math import SafeMath
from utils.idempotency import generate_idempotency_key
from .payloads import validate_payload

logger = logging.getLogger(__name__)

INSUFFICIENT_GAS = "insufficient gas"
DEFAULT_TOKEN_STANDARD = 'ERC20'


class OperationEngine:
    """Creates, decides and executes operations."""

    def __init__(
        self,
        store=None,
        gateway: Optional[SignerGateway] = None,
        *,
        default_vault_id: str = '88',
        gas_asset_id: Optional[str] = None,
        confirmation_timeout: float = 120.0,
        confirmation_attempts: int = 3,
        poll_interval: float = 2.0,
        math: Optional[SafeMath] = None
    ):
        """Initialize the engine.

        Args:
            store: Optional store. If not provided, will get from database module.
            gateway: Signer gateway used for execution
            default_vault_id: Vault used when neither payload nor record names one
            gas_asset_id: Native asset checked for gas when the record has no chain
            confirmation_timeout: Seconds one completion wait may take
            confirmation_attempts: Completion waits before giving up
            poll_interval: Base delay between completion waits
            math: Decimal policy for amounts
        """
        self.store = store
        self.gateway = gateway
        self.default_vault_id = default_vault_id
        self.gas_asset_id = gas_asset_id
        self.confirmation_timeout = confirmation_timeout
        self.confirmation_attempts = max(1, confirmation_attempts)
        self.poll_interval = poll_interval
        self.math = math or SafeMath()

    @classmethod
    def from_config(
        cls,
        settings: Mapping[str, Any],
        custodian_conf: Mapping[str, Any],
        store=None,
        gateway: Optional[SignerGateway] = None
    ) -> 'OperationEngine':
        return cls(
            store,
            gateway,
            default_vault_id=custodian_conf.get('default_vault_id', '88'),
            gas_asset_id=custodian_conf.get('gas_asset_id'),
            confirmation_timeout=settings.get('confirmation_timeout_seconds', 120),
            confirmation_attempts=settings.get('confirmation_attempts', 3),
            poll_interval=settings.get('poll_interval_seconds', 2),
        )

    async def ensure_store(self):
        """Ensure a store is available."""
        if not self.store:
            self.store = await get_store()

    async def create_operation(
        self,
        operation_type: Union[str, OperationType],
        custody_record_id: Union[str, UUID],
        payload: Optional[Dict[str, Any]],
        principal: Principal
    ) -> Operation:
        """Create an operation awaiting a checker.

        Args:
            operation_type: MINT, BURN, FREEZE or WITHDRAW
            custody_record_id: Custody record the operation acts on
            payload: Type-specific parameters
            principal: Calling maker

        Returns:
            The PENDING_CHECKER operation

        Raises:
            RoleError: If the caller is not a maker
            ValidationError: If the type or payload is malformed
            NotFoundError: If the custody record is unknown to the caller's tenant
            StateError: If the custody record's status does not allow the type
            InsufficientQuantityError: If a BURN or WITHDRAW exceeds the issuer's available quantity
            ConflictError: If an operation of this type is already in flight
        """
        require_maker(principal, "create operations")
        await self.ensure_store()

        try:
            operation_type = OperationType(operation_type)
        except ValueError:
            raise ValidationError(f"Unknown operation type {operation_type!r}")
        custody_record_id = parse_id(custody_record_id, 'Custody record')

        async with self.store.transaction() as tx:
            record = await tx.get(CustodyRecord, custody_record_id, for_update=True)
            if not record or record.tenant_id != principal.tenant_id:
                raise NotFoundError(f"Custody record {custody_record_id} not found")

            payload = validate_payload(self.math, operation_type, record, payload)
            await self._check_available(tx, record, operation_type, payload)

            in_flight = await tx.find_one(
                Operation,
                custody_record_id=record.id,
                type=operation_type,
                status=list(IN_FLIGHT),
            )
            if in_flight:
                raise ConflictError(
                    f"{operation_type.value} operation {in_flight.id} is already in flight "
                    f"for asset {record.asset_id}",
                    {'operationId': str(in_flight.id), 'status': in_flight.status.value}
                )

            operation = Operation(
                type=operation_type,
                custody_record_id=record.id,
                tenant_id=principal.tenant_id,
                payload=payload,
                created_by=principal.identity,
                vault_id=payload.get('vaultId') or record.vault_id or self.default_vault_id,
                idempotency_key=generate_idempotency_key(
                    operation_type, {'custodyRecordId': str(record.id), **payload}
                ),
            )
            await tx.insert(operation)
            await audit.log_event(
                tx, audit.OPERATION_CREATED, principal.identity,
                {'type': operation_type.value, 'assetId': record.asset_id},
                tenant_id=principal.tenant_id, custody_record_id=record.id, operation_id=operation.id
            )

        logger.info(f"{operation_type.value} operation {operation.id} created by {principal.identity}")
        return operation

    async def create_mint_operation(self, asset_id: str, principal: Principal, **params) -> Operation:
        """Create a MINT operation for an asset addressed by its business key."""
        require_maker(principal, "create operations")
        await self.ensure_store()

        async with self.store.transaction() as tx:
            record = await tx.find_one(CustodyRecord, tenant_id=principal.tenant_id, asset_id=asset_id)
        if not record:
            raise NotFoundError(f"No custody record for asset {asset_id}")
        return await self.create_operation(OperationType.MINT, record.id, params, principal)

    async def _load_for_decision(self, tx, operation_id: UUID, principal: Principal, action: str) -> Operation:
        operation = await tx.get(Operation, operation_id, for_update=True)
        if not operation or operation.tenant_id != principal.tenant_id:
            raise NotFoundError(f"Operation {operation_id} not found")
        if operation.created_by == principal.identity:
            raise SelfApprovalError(f"Cannot {action} your own operation")
        return operation

    async def approve_operation(
        self,
        operation_id: Union[str, UUID],
        principal: Principal,
        comment: Optional[str] = None
    ) -> Operation:
        """Approve an operation and execute it.

        Returns:
            The operation in its final state, EXECUTED or FAILED. Gateway
            failures are recorded on the operation rather than raised.

        Raises:
            RoleError: If the caller is not a checker
            NotFoundError: If the operation is unknown to the caller's tenant
            SelfApprovalError: If the caller created the operation
            StateError: If the operation is not PENDING_CHECKER
        """
        require_checker(principal, "approve operations")
        await self.ensure_store()
        operation_id = parse_id(operation_id, 'Operation')

        async with self.store.transaction() as tx:
            operation = await self._load_for_decision(tx, operation_id, principal, 'approve')
            previous = operation.status
            operation.status = previous.transition(OperationStatus.APPROVED)
            operation.checked_by = principal.identity
            operation.checked_at = utcnow()
            operation.comment = comment
            await tx.update(operation, expected_status=previous)
            await audit.log_event(
                tx, audit.OPERATION_APPROVED, principal.identity,
                {'type': operation.type.value, 'comment': comment},
                tenant_id=operation.tenant_id,
                custody_record_id=operation.custody_record_id,
                operation_id=operation.id
            )

        logger.info(f"Operation {operation.id} approved by {principal.identity}")
        return await self._execute(operation.id, principal.identity)

    async def reject_operation(
        self,
        operation_id: Union[str, UUID],
        principal: Principal,
        reason: str
    ) -> Operation:
        """Reject an operation (PENDING_CHECKER -> REJECTED).

        Raises:
            ValidationError: If no reason is given
        """
        require_checker(principal, "reject operations")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        await self.ensure_store()
        operation_id = parse_id(operation_id, 'Operation')

        async with self.store.transaction() as tx:
            operation = await self._load_for_decision(tx, operation_id, principal, 'reject')
            previous = operation.status
            operation.status = previous.transition(OperationStatus.REJECTED)
            operation.checked_by = principal.identity
            operation.checked_at = utcnow()
            operation.rejection_reason = reason.strip()
            await tx.update(operation, expected_status=previous)
            await audit.log_event(
                tx, audit.OPERATION_REJECTED, principal.identity,
                {'type': operation.type.value, 'reason': operation.rejection_reason},
                tenant_id=operation.tenant_id,
                custody_record_id=operation.custody_record_id,
                operation_id=operation.id
            )

        logger.info(f"Operation {operation.id} rejected by {principal.identity}")
        return operation

    async def get_operation(self, operation_id: Union[str, UUID], tenant_id: str) -> Operation:
        await self.ensure_store()
        operation_id = parse_id(operation_id, 'Operation')
        async with self.store.transaction() as tx:
            operation = await tx.get(Operation, operation_id)
        if not operation or operation.tenant_id != tenant_id:
            raise NotFoundError(f"Operation {operation_id} not found")
        return operation

    async def list_operations(
        self,
        tenant_id: str,
        status: Optional[OperationStatus] = None,
        type: Optional[OperationType] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Operation], int]:
        """List a tenant's operations, newest first.

        Returns:
            Tuple of (operations page, total matching)
        """
        await self.ensure_store()
        filters = dict(tenant_id=tenant_id, status=status, type=type)
        async with self.store.transaction() as tx:
            operations = await tx.find(Operation, limit=limit, offset=offset, **filters)
            total = await tx.count(Operation, **filters)
        return operations, total

    async def _execute(self, operation_id: UUID, actor: str) -> Operation:
        if self.gateway is None:
            raise RuntimeError("OperationEngine has no signer gateway")

        async with self.store.transaction() as tx:
            operation = await tx.get(Operation, operation_id, for_update=True)
            if not operation or operation.status is not OperationStatus.APPROVED or operation.fireblocks_task_id:
                raise StateError(f"Operation {operation_id} is no longer ready to execute")
            record = await tx.get(CustodyRecord, operation.custody_record_id, for_update=True)
            if not record:
                raise NotFoundError(f"Custody record {operation.custody_record_id} not found")
            try:
                await self._check_available(tx, record, operation.type, operation.payload)
                shortfall = None
            except InsufficientQuantityError as e:
                shortfall = e

        if shortfall:
            logger.error(f"Operation {operation.id} blocked: {shortfall.message}")
            return await self._finalize_failure(
                operation, shortfall.message, actor, fail_record=False, details=shortfall.details
            )

        if operation.type.moves_value:
            try:
                gas = await self.gateway.ensure_gas_for_vault(operation.vault_id, self._chain_asset(operation, record))
                if not gas.sufficient:
                    raise GasInsufficientError(available=gas.available, required=gas.required)
            except GasInsufficientError as e:
                logger.error(f"Operation {operation.id} blocked: vault {operation.vault_id} lacks gas")
                return await self._finalize_failure(operation, INSUFFICIENT_GAS, actor, fail_record=False,
                                                    details=e.details)
            except GatewayError as e:
                logger.error(f"Gas check for operation {operation.id} failed: {e}")
                return await self._finalize_failure(operation, f"gas check failed: {e.message}", actor)
            except Exception as e:
                logger.error(f"Gas check for operation {operation.id} raised: {e}", exc_info=True)
                return await self._finalize_failure(operation, f"gas check failed: {e}", actor)

        try:
            submission = await self._submit(operation, record)
        except GatewayError as e:
            logger.error(f"Submission of operation {operation.id} failed: {e}")
            return await self._finalize_failure(operation, e.message, actor)
        except Exception as e:
            # No task id yet, so nothing is pending at the custodian
            logger.error(f"Submission of operation {operation.id} raised: {e}", exc_info=True)
            return await self._finalize_failure(operation, f"submission failed: {e}", actor)

        async with self.store.transaction() as tx:
            operation.fireblocks_task_id = submission.task_id
            await tx.update(operation, expected_status=OperationStatus.APPROVED)
            await audit.log_event(
                tx, audit.OPERATION_SUBMITTED, actor,
                {'taskId': submission.task_id, 'kind': submission.kind.value},
                tenant_id=operation.tenant_id,
                custody_record_id=operation.custody_record_id,
                operation_id=operation.id
            )
        logger.info(f"Operation {operation.id} submitted as task {submission.task_id}")

        completion = await self._await_confirmation(submission)

        if completion.status is CompletionStatus.COMPLETED:
            return await self._finalize_success(operation, completion, actor)
        if completion.status is CompletionStatus.TIMEOUT:
            message = (
                f"confirmation timeout: task {submission.task_id} may still be pending at the custodian"
            )
            return await self._finalize_failure(operation, message, actor, fail_record=False)
        return await self._finalize_failure(
            operation, completion.error_message or "custodian reported failure", actor,
            tx_hash=completion.tx_hash
        )

    async def _check_available(
        self,
        tx,
        record: CustodyRecord,
        operation_type: OperationType,
        payload: Dict[str, Any]
    ) -> None:
        """Bound a BURN or WITHDRAW by what the issuer has neither sold nor listed."""
        if operation_type not in (OperationType.BURN, OperationType.WITHDRAW):
            return
        balance = await compute_balance(tx, self.math, record, issuer_of(record))
        if self.math.is_greater_than(payload['amount'], balance['available']):
            available = self.math.to_string(balance['available'])
            raise InsufficientQuantityError(
                f"{operation_type.value} of {payload['amount']} exceeds the issuer's available "
                f"quantity {available} for asset {record.asset_id}",
                {'available': available, 'reserved': self.math.to_string(balance['reserved'])}
            )

    def _chain_asset(self, operation: Operation, record: CustodyRecord) -> str:
        if operation.type is OperationType.MINT:
            return map_chain_to_asset(operation.payload.get('blockchainId'))
        return map_chain_to_asset(record.blockchain or self.gas_asset_id)

    async def _submit(self, operation: Operation, record: CustodyRecord) -> Submission:
        payload = operation.payload
        if operation.type is OperationType.MINT:
            return await self.gateway.mint(
                operation.vault_id,
                payload['blockchainId'],
                {
                    'name': payload['tokenName'],
                    'symbol': payload['tokenSymbol'],
                    'decimals': payload['decimals'],
                    'totalSupply': payload['totalSupply'],
                },
            )
        if operation.type is OperationType.BURN:
            return await self.gateway.burn(operation.vault_id, record.token_id, payload['amount'])
        if operation.type is OperationType.FREEZE:
            return await self.gateway.freeze(operation.vault_id, record.token_id, payload.get('address'))
        return await self.gateway.withdraw(
            operation.vault_id, record.token_id, payload['amount'], payload['destinationAddress']
        )

    async def _await_confirmation(self, submission: Submission) -> Completion:
        def log_retry(details):
            logger.warning(
                f"Task {submission.task_id} not confirmed after try {details['tries']}, "
                f"waiting {details['wait']:.1f}s"
            )

        @backoff.on_predicate(
            backoff.expo,
            lambda completion: completion.status is CompletionStatus.TIMEOUT,
            max_tries=self.confirmation_attempts,
            factor=self.poll_interval,
            jitter=None,
            on_backoff=log_retry
        )
        async def wait():
            try:
                return await self.gateway.await_completion(
                    submission.task_id, self.confirmation_timeout, kind=submission.kind
                )
            except GatewayError as e:
                # Outcome unknown
                return Completion(status=CompletionStatus.TIMEOUT, error_message=e.message)
            except Exception as e:
                logger.error(f"Waiting on task {submission.task_id} raised: {e}", exc_info=True)
                return Completion(status=CompletionStatus.TIMEOUT, error_message=str(e))

        return await wait()

    async def _finalize_success(self, operation: Operation, completion: Completion, actor: str) -> Operation:
        async with self.store.transaction() as tx:
            operation = await tx.get(Operation, operation.id, for_update=True)
            record = await tx.get(CustodyRecord, operation.custody_record_id, for_update=True)

            if operation.type is OperationType.MINT and not completion.contract_address:
                message = "custodian reported completion without a contract address"
                return await self._write_failure(
                    tx, operation, record, message, actor, fail_record=False, tx_hash=completion.tx_hash
                )

            operation.status = operation.status.transition(OperationStatus.EXECUTED)
            operation.tx_hash = completion.tx_hash
            operation.executed_at = utcnow()
            operation.error_message = None
            await tx.update(operation, expected_status=OperationStatus.APPROVED)

            record.error_message = None
            event = None
            if operation.type is OperationType.MINT:
                previous = record.status
                record.status = previous.transition(CustodyStatus.MINTED)
                record.token_address = completion.contract_address
                record.token_id = completion.token_id or operation.fireblocks_task_id
                record.minted_at = utcnow()
                record.quantity = self.math.from_string(operation.payload['totalSupply'])
                record.blockchain = str(operation.payload['blockchainId'])
                record.token_standard = record.token_standard or DEFAULT_TOKEN_STANDARD
                await tx.update(record, expected_status=previous)
                event = audit.TOKEN_MINTED
            else:
                if operation.type is OperationType.BURN and record.quantity is not None:
                    record.quantity = self.math.from_string(
                        self.math.subtract(record.quantity, operation.payload['amount'])
                    )
                    event = audit.TOKEN_BURNED
                await tx.update(record)

            await audit.log_event(
                tx, audit.OPERATION_EXECUTED, actor,
                {'type': operation.type.value, 'txHash': completion.tx_hash},
                tenant_id=operation.tenant_id, custody_record_id=record.id, operation_id=operation.id
            )
            if event:
                await audit.log_event(
                    tx, event, actor,
                    {'tokenAddress': record.token_address, 'quantity': self.math.to_string(record.quantity)},
                    tenant_id=operation.tenant_id, custody_record_id=record.id, operation_id=operation.id
                )

        logger.info(f"Operation {operation.id} executed (tx {completion.tx_hash})")
        return operation

    async def _finalize_failure(
        self,
        operation: Operation,
        message: str,
        actor: str,
        fail_record: bool = True,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Operation:
        async with self.store.transaction() as tx:
            operation = await tx.get(Operation, operation.id, for_update=True)
            record = await tx.get(CustodyRecord, operation.custody_record_id, for_update=True)
            return await self._write_failure(
                tx, operation, record, message, actor, fail_record, tx_hash, details
            )

    async def _write_failure(
        self,
        tx,
        operation: Operation,
        record: CustodyRecord,
        message: str,
        actor: str,
        fail_record: bool = True,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Operation:
        """Mark the operation FAILED and copy the message to its custody record.

        Only a failed MINT moves the record to FAILED, and only when
        ``fail_record`` is set; otherwise the record keeps its status.
        """
        operation.status = operation.status.transition(OperationStatus.FAILED)
        operation.error_message = message
        operation.tx_hash = tx_hash or operation.tx_hash
        await tx.update(operation, expected_status=OperationStatus.APPROVED)

        record.error_message = message
        if fail_record and operation.type is OperationType.MINT:
            previous = record.status
            record.status = previous.transition(CustodyStatus.FAILED)
            await tx.update(record, expected_status=previous)
        else:
            await tx.update(record)

        await audit.log_event(
            tx, audit.OPERATION_FAILED, actor,
            {'type': operation.type.value, 'errorMessage': message, **(details or {})},
            tenant_id=operation.tenant_id, custody_record_id=record.id, operation_id=operation.id
        )
        logger.error(f"Operation {operation.id} failed: {message}")
        return operation


__all__ = ['OperationEngine', 'INSUFFICIENT_GAS', 'validate_payload']
