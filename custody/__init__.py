"""Custody module for linking off-chain assets to tokenization.

This module provides functionality for:
- Requesting custody links (maker)
- Approving and rejecting link requests (checker)
- Looking up custody records within a tenant
"""

import logging
from typing import Any, List, Optional, Tuple, Union
from uuid import UUID

import audit
from auth import Principal, require_checker, require_maker
from database import get_store
from database.models import CustodyRecord, CustodyStatus, utcnow
from errors import ConflictError, NotFoundError, SelfApprovalError, ValidationError
from utils.decimal_math import SafeMath

logger = logging.getLogger(__name__)


def parse_id(value: Union[str, UUID], kind: str = 'record') -> UUID:
    """Parse a UUID path parameter.

    Raises:
        NotFoundError: If the value is not a UUID, since no row can match it
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{kind} {value} not found")


class CustodyManager:
    """Manager class for custody records."""

    def __init__(self, store=None, math: Optional[SafeMath] = None):
        """Initialize custody manager.

        Args:
            store: Optional store. If not provided, will get from database module.
            math: Decimal policy used to validate quantities
        """
        self.store = store
        self.math = math or SafeMath()

    async def ensure_store(self):
        """Ensure a store is available."""
        if not self.store:
            self.store = await get_store()

    async def link_asset(
        self,
        asset_id: str,
        principal: Principal,
        *,
        created_by: Optional[str] = None,
        blockchain: Optional[str] = None,
        token_standard: Optional[str] = None,
        quantity: Any = None,
        nav_oracle_address: Optional[str] = None,
        por_oracle_address: Optional[str] = None,
        vault_id: Optional[str] = None
    ) -> CustodyRecord:
        """Request a custody link for an asset.

        A rejected (UNLINKED) record for the same asset is reopened instead
        of creating a second one.

        Args:
            asset_id: Business key of the asset within the tenant
            principal: Calling maker
            created_by: Issuer identity, defaults to the caller
            quantity: Optional expected quantity as a decimal string

        Returns:
            The PENDING custody record

        Raises:
            RoleError: If the caller is not a maker
            ValidationError: If the asset id or quantity is malformed
            ConflictError: If the asset already has an active record
        """
        require_maker(principal, "request custody links")
        await self.ensure_store()

        asset_id = (asset_id or '').strip()
        if not asset_id:
            raise ValidationError("assetId is required")
        if quantity is not None:
            quantity = self.math.from_string(quantity)
            if not self.math.is_positive(quantity):
                raise ValidationError("quantity must be positive")

        async with self.store.transaction() as tx:
            record = await tx.find_one(
                CustodyRecord, for_update=True, tenant_id=principal.tenant_id, asset_id=asset_id
            )
            if record and record.status is not CustodyStatus.UNLINKED:
                raise ConflictError(
                    f"Asset {asset_id} already has a custody record ({record.status.value})",
                    {'custodyRecordId': str(record.id), 'status': record.status.value}
                )

            fields = dict(
                created_by=created_by or principal.user_id or principal.identity,
                requested_by=principal.identity,
                blockchain=blockchain,
                token_standard=token_standard,
                quantity=quantity,
                nav_oracle_address=nav_oracle_address,
                por_oracle_address=por_oracle_address,
                vault_id=vault_id,
            )
            if record:
                previous = record.status
                record.status = record.status.transition(CustodyStatus.PENDING)
                for key, value in fields.items():
                    setattr(record, key, value)
                record.checked_by = None
                record.rejection_reason = None
                record.error_message = None
                await tx.update(record, expected_status=previous)
            else:
                record = CustodyRecord(asset_id=asset_id, tenant_id=principal.tenant_id, **fields)
                await tx.insert(record)

            await audit.log_event(
                tx, audit.ASSET_LINK_REQUESTED, principal.identity,
                {'assetId': asset_id},
                tenant_id=principal.tenant_id, custody_record_id=record.id
            )

        logger.info(f"Custody link requested for {asset_id} by {principal.identity}")
        return record

    async def _load_for_decision(self, tx, custody_id: UUID, principal: Principal, action: str) -> CustodyRecord:
        record = await tx.get(CustodyRecord, custody_id, for_update=True)
        if not record or record.tenant_id != principal.tenant_id:
            raise NotFoundError(f"Custody record {custody_id} not found")
        if record.requested_by == principal.identity:
            raise SelfApprovalError(f"Cannot {action} your own custody link request")
        return record

    async def approve_link(self, custody_id: Union[str, UUID], principal: Principal) -> CustodyRecord:
        """Approve a pending link request (PENDING -> LINKED).

        Raises:
            RoleError: If the caller is not a checker
            NotFoundError: If the record is unknown to the caller's tenant
            SelfApprovalError: If the caller requested the link
            StateError: If the record is not PENDING
        """
        require_checker(principal, "approve custody links")
        await self.ensure_store()
        custody_id = parse_id(custody_id, 'Custody record')

        async with self.store.transaction() as tx:
            record = await self._load_for_decision(tx, custody_id, principal, 'approve')
            previous = record.status
            record.status = previous.transition(CustodyStatus.LINKED)
            record.checked_by = principal.identity
            record.linked_at = utcnow()
            await tx.update(record, expected_status=previous)
            await audit.log_event(
                tx, audit.ASSET_LINKED, principal.identity,
                {'assetId': record.asset_id},
                tenant_id=record.tenant_id, custody_record_id=record.id
            )
        logger.info(f"Custody record {record.id} linked by {principal.identity}")
        return record

    async def reject_link(
        self,
        custody_id: Union[str, UUID],
        principal: Principal,
        reason: str
    ) -> CustodyRecord:
        """Reject a pending link request (PENDING -> UNLINKED).

        Raises:
            ValidationError: If no reason is given
        """
        require_checker(principal, "reject custody links")
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        await self.ensure_store()
        custody_id = parse_id(custody_id, 'Custody record')

        async with self.store.transaction() as tx:
            record = await self._load_for_decision(tx, custody_id, principal, 'reject')
            previous = record.status
            record.status = previous.transition(CustodyStatus.UNLINKED)
            record.checked_by = principal.identity
            record.rejection_reason = reason.strip()
            await tx.update(record, expected_status=previous)
            await audit.log_event(
                tx, audit.ASSET_LINK_REJECTED, principal.identity,
                {'assetId': record.asset_id, 'reason': record.rejection_reason},
                tenant_id=record.tenant_id, custody_record_id=record.id
            )
        logger.info(f"Custody record {record.id} rejected by {principal.identity}")
        return record

    async def get(self, custody_id: Union[str, UUID], tenant_id: str) -> CustodyRecord:
        await self.ensure_store()
        custody_id = parse_id(custody_id, 'Custody record')
        async with self.store.transaction() as tx:
            record = await tx.get(CustodyRecord, custody_id)
        if not record or record.tenant_id != tenant_id:
            raise NotFoundError(f"Custody record {custody_id} not found")
        return record

    async def get_by_asset_id(self, asset_id: str, tenant_id: str) -> CustodyRecord:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            record = await tx.find_one(CustodyRecord, tenant_id=tenant_id, asset_id=asset_id)
        if not record:
            raise NotFoundError(f"No custody record for asset {asset_id}")
        return record

    async def list(
        self,
        tenant_id: str,
        status: Optional[CustodyStatus] = None,
        created_by: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[CustodyRecord], int]:
        """List a tenant's custody records, newest first.

        Returns:
            Tuple of (records page, total matching)
        """
        await self.ensure_store()
        filters = dict(tenant_id=tenant_id, status=status, created_by=created_by)
        async with self.store.transaction() as tx:
            records = await tx.find(CustodyRecord, limit=limit, offset=offset, **filters)
            total = await tx.count(CustodyRecord, **filters)
        return records, total


__all__ = ['CustodyManager', 'parse_id']
