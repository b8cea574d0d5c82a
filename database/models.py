"""Entities and their state machines.

Entities are pydantic models with snake_case fields that match the
database columns. ``to_api()`` renders them as camelCase JSON.

Every status enum has an exhaustive transition table. Use
``status.transition(target)`` to move between states; it returns the
target member or raises ``StateError``.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from errors import StateError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _plain_decimal(value: Decimal) -> str:
    value = value.normalize()
    if value.is_zero():
        return '0'
    return format(value, 'f')


Amount = Annotated[Decimal, PlainSerializer(_plain_decimal, return_type=str, when_used='json')]


class TransitionEnum(str, Enum):
    """String enum whose moves are governed by a transition table."""

    def allowed(self) -> FrozenSet['TransitionEnum']:
        return _TRANSITIONS[type(self)][self]

    @property
    def is_terminal(self) -> bool:
        return not self.allowed()

    def can_transition_to(self, target: Any) -> bool:
        return type(self)(target) in self.allowed()

    def transition(self, target: Any) -> 'TransitionEnum':
        """Validate a move to ``target``.

        Returns:
            The target member

        Raises:
            StateError: If the move is not in the transition table
        """
        target = type(self)(target)
        if target not in self.allowed():
            raise StateError(
                f"Cannot move {type(self).__name__} from {self.value} to {target.value}",
                {'from': self.value, 'to': target.value}
            )
        return target


_TRANSITIONS: Dict[type, Dict[Any, FrozenSet[Any]]] = {}


def _register(enum_cls, table: Dict[Any, Any]) -> None:
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(
            f"Transition table for {enum_cls.__name__} misses {sorted(m.value for m in missing)}"
        )
    _TRANSITIONS[enum_cls] = {state: frozenset(targets) for state, targets in table.items()}


class Role(str, Enum):
    MAKER = 'MAKER'
    CHECKER = 'CHECKER'
    VIEWER = 'VIEWER'

    @property
    def can_create(self) -> bool:
        return self is Role.MAKER

    @property
    def can_check(self) -> bool:
        return self is Role.CHECKER


class CustodyStatus(TransitionEnum):
    PENDING = 'PENDING'
    LINKED = 'LINKED'
    UNLINKED = 'UNLINKED'
    MINTED = 'MINTED'
    FAILED = 'FAILED'


_register(CustodyStatus, {
    CustodyStatus.PENDING: {CustodyStatus.LINKED, CustodyStatus.UNLINKED},
    CustodyStatus.LINKED: {CustodyStatus.MINTED, CustodyStatus.FAILED},
    CustodyStatus.FAILED: {CustodyStatus.MINTED, CustodyStatus.FAILED},
    CustodyStatus.UNLINKED: {CustodyStatus.PENDING},
    CustodyStatus.MINTED: set(),
})


class OperationType(str, Enum):
    MINT = 'MINT'
    BURN = 'BURN'
    FREEZE = 'FREEZE'
    WITHDRAW = 'WITHDRAW'

    @property
    def moves_value(self) -> bool:
        return self in (OperationType.MINT, OperationType.WITHDRAW)


class OperationStatus(TransitionEnum):
    PENDING_CHECKER = 'PENDING_CHECKER'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    EXECUTED = 'EXECUTED'
    FAILED = 'FAILED'


_register(OperationStatus, {
    OperationStatus.PENDING_CHECKER: {OperationStatus.APPROVED, OperationStatus.REJECTED},
    OperationStatus.APPROVED: {OperationStatus.EXECUTED, OperationStatus.FAILED},
    OperationStatus.REJECTED: set(),
    OperationStatus.EXECUTED: set(),
    OperationStatus.FAILED: set(),
})

IN_FLIGHT = frozenset({OperationStatus.PENDING_CHECKER, OperationStatus.APPROVED})


class ListingStatus(TransitionEnum):
    DRAFT = 'DRAFT'
    ACTIVE = 'ACTIVE'
    SOLD = 'SOLD'
    CANCELLED = 'CANCELLED'


_register(ListingStatus, {
    ListingStatus.DRAFT: {ListingStatus.ACTIVE, ListingStatus.CANCELLED},
    ListingStatus.ACTIVE: {ListingStatus.SOLD, ListingStatus.CANCELLED},
    ListingStatus.SOLD: set(),
    ListingStatus.CANCELLED: set(),
})

# Listings whose unsold remainder still reserves seller balance
OPEN_LISTING = frozenset({ListingStatus.DRAFT, ListingStatus.ACTIVE})


class BidStatus(TransitionEnum):
    PENDING = 'PENDING'
    ACCEPTED = 'ACCEPTED'
    REJECTED = 'REJECTED'


_register(BidStatus, {
    BidStatus.PENDING: {BidStatus.ACCEPTED, BidStatus.REJECTED},
    BidStatus.ACCEPTED: set(),
    BidStatus.REJECTED: set(),
})


class Entity(BaseModel):
    """Base model for persisted rows."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    __tablename__: ClassVar[str] = ''

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utcnow)

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)


class ApiKey(Entity):
    __tablename__ = 'api_keys'

    public_key: str
    secret_key: str = Field(repr=False)
    tenant_id: str
    role: Role
    permissions: List[str] = Field(default_factory=list)
    end_user_id: Optional[str] = None
    name: Optional[str] = None
    is_active: bool = True

    def to_api(self) -> Dict[str, Any]:
        data = super().to_api()
        data.pop('secretKey', None)
        return data


class CustodyRecord(Entity):
    __tablename__ = 'custody_records'

    asset_id: str
    tenant_id: str
    created_by: str
    requested_by: Optional[str] = None
    checked_by: Optional[str] = None
    status: CustodyStatus = CustodyStatus.PENDING
    blockchain: Optional[str] = None
    token_standard: Optional[str] = None
    token_address: Optional[str] = None
    token_id: Optional[str] = None
    quantity: Optional[Amount] = None
    nav_oracle_address: Optional[str] = None
    por_oracle_address: Optional[str] = None
    vault_id: Optional[str] = None
    error_message: Optional[str] = None
    rejection_reason: Optional[str] = None
    linked_at: Optional[datetime] = None
    minted_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class Operation(Entity):
    __tablename__ = 'operations'

    type: OperationType
    status: OperationStatus = OperationStatus.PENDING_CHECKER
    custody_record_id: UUID
    tenant_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_by: str
    checked_by: Optional[str] = None
    checked_at: Optional[datetime] = None
    comment: Optional[str] = None
    rejection_reason: Optional[str] = None
    fireblocks_task_id: Optional[str] = None
    tx_hash: Optional[str] = None
    vault_id: Optional[str] = None
    error_message: Optional[str] = None
    idempotency_key: Optional[str] = None
    executed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT


class Listing(Entity):
    __tablename__ = 'listings'

    asset_id: str
    custody_record_id: UUID
    tenant_id: str
    seller_id: str
    price: Amount
    currency: str = 'USD'
    quantity_listed: Amount
    quantity_sold: Amount = Decimal(0)
    status: ListingStatus = ListingStatus.ACTIVE
    expiry_date: datetime
    updated_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expiry_date <= (now or utcnow())


class Bid(Entity):
    __tablename__ = 'bids'

    listing_id: UUID
    tenant_id: str
    buyer_id: str
    amount: Amount
    quantity: Amount
    status: BidStatus = BidStatus.PENDING
    updated_at: datetime = Field(default_factory=utcnow)


class OwnershipRecord(Entity):
    __tablename__ = 'ownership_records'

    asset_id: str
    custody_record_id: UUID
    tenant_id: str
    owner_id: str
    seller_id: str
    quantity: Amount
    purchase_price: Amount
    listing_id: Optional[UUID] = None
    bid_id: Optional[UUID] = None
    acquired_at: datetime = Field(default_factory=utcnow)


class AuditEntry(Entity):
    __tablename__ = 'audit_logs'

    event_type: str
    actor: str
    tenant_id: Optional[str] = None
    custody_record_id: Optional[UUID] = None
    operation_id: Optional[UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


ENTITIES = [ApiKey, CustodyRecord, Operation, Listing, Bid, OwnershipRecord, AuditEntry]

__all__ = [
    'utcnow',
    'Role',
    'TransitionEnum',
    'CustodyStatus',
    'OperationType',
    'OperationStatus',
    'IN_FLIGHT',
    'ListingStatus',
    'OPEN_LISTING',
    'BidStatus',
    'Entity',
    'ApiKey',
    'CustodyRecord',
    'Operation',
    'Listing',
    'Bid',
    'OwnershipRecord',
    'AuditEntry',
    'ENTITIES',
]
