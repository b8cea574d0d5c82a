"""Append-only audit trail.

Entries are written through the caller's open session so they commit or
roll back together with the change they describe.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from database.models import AuditEntry
from database.store import Session

logger = logging.getLogger(__name__)

ASSET_LINK_REQUESTED = 'ASSET_LINK_REQUESTED'
ASSET_LINKED = 'ASSET_LINKED'
ASSET_LINK_REJECTED = 'ASSET_LINK_REJECTED'
OPERATION_CREATED = 'OPERATION_CREATED'
OPERATION_APPROVED = 'OPERATION_APPROVED'
OPERATION_REJECTED = 'OPERATION_REJECTED'
OPERATION_SUBMITTED = 'OPERATION_SUBMITTED'
OPERATION_EXECUTED = 'OPERATION_EXECUTED'
OPERATION_FAILED = 'OPERATION_FAILED'
TOKEN_MINTED = 'TOKEN_MINTED'
TOKEN_BURNED = 'TOKEN_BURNED'
LISTING_CREATED = 'LISTING_CREATED'
LISTING_PUBLISHED = 'LISTING_PUBLISHED'
LISTING_CANCELLED = 'LISTING_CANCELLED'
BID_PLACED = 'BID_PLACED'
BID_ACCEPTED = 'BID_ACCEPTED'
BID_REJECTED = 'BID_REJECTED'
OWNERSHIP_TRANSFERRED = 'OWNERSHIP_TRANSFERRED'


async def log_event(
    session: Session,
    event_type: str,
    actor: str,
    metadata: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[str] = None,
    custody_record_id: Optional[UUID] = None,
    operation_id: Optional[UUID] = None
) -> AuditEntry:
    """Record an audit event in the current transaction.

    Args:
        session: Open store session
        event_type: One of the event type constants in this module
        actor: Identity that caused the event
        metadata: JSON-serializable event details
        tenant_id: Tenant the event belongs to
        custody_record_id: Related custody record, if any
        operation_id: Related operation, if any

    Returns:
        The stored entry
    """
    entry = AuditEntry(
        event_type=event_type,
        actor=actor,
        tenant_id=tenant_id,
        custody_record_id=custody_record_id,
        operation_id=operation_id,
        metadata=metadata or {},
    )
    await session.insert(entry)
    logger.debug(f"Audit {event_type} by {actor}")
    return entry


async def get_trail(
    session: Session,
    custody_record_id: Optional[UUID] = None,
    operation_id: Optional[UUID] = None,
    tenant_id: Optional[str] = None,
    limit: int = 100
) -> List[AuditEntry]:
    """Audit entries for a record or operation, newest first."""
    return await session.find(
        AuditEntry,
        limit=limit,
        custody_record_id=custody_record_id,
        operation_id=operation_id,
        tenant_id=tenant_id,
    )
