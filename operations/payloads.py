"""Per-type payload validation for operations.

Each validator returns a normalized copy of the payload: decimal
amounts become plain decimal strings and optional blanks are dropped.
"""
from typing import Any, Callable, Dict, Optional

from eth_utils import is_address

from database.models import CustodyRecord, CustodyStatus, OperationType
from errors import StateError, ValidationError
from utils.decimal_math import SafeMath, TOKEN_DECIMALS

MINTABLE = frozenset({CustodyStatus.LINKED, CustodyStatus.FAILED})


def _text(payload: Dict[str, Any], key: str, required: bool = True) -> Optional[str]:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required", {'field': key})
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"{key} must be a string", {'field': key})
    return str(value).strip()


def _address(payload: Dict[str, Any], key: str, required: bool = True) -> Optional[str]:
    value = _text(payload, key, required)
    if value is None:
        return None
    # Mixed case must carry a valid checksum
    if not value.startswith('0x') or not is_address(value):
        raise ValidationError(f"{key} must be a 0x-prefixed 20-byte hex address", {'field': key})
    return value


def _positive(math: SafeMath, payload: Dict[str, Any], key: str) -> str:
    if payload.get(key) is None:
        raise ValidationError(f"{key} is required", {'field': key})
    try:
        value = math.from_string(payload[key])
    except ValidationError:
        raise ValidationError(f"{key} must be a decimal number", {'field': key})
    if not math.is_positive(value):
        raise ValidationError(f"{key} must be positive", {'field': key})
    return math.to_string(value)


def _decimals(payload: Dict[str, Any]) -> int:
    value = payload.get('decimals')
    if value is None:
        raise ValidationError("decimals is required", {'field': 'decimals'})
    if isinstance(value, bool):
        raise ValidationError("decimals must be an integer", {'field': 'decimals'})
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or not 0 <= value <= TOKEN_DECIMALS:
        raise ValidationError(
            f"decimals must be an integer between 0 and {TOKEN_DECIMALS}", {'field': 'decimals'}
        )
    return value


def _require_status(record: CustodyRecord, allowed, action: str) -> None:
    if record.status not in allowed:
        raise StateError(
            f"Cannot {action} asset {record.asset_id} in status {record.status.value}",
            {'custodyStatus': record.status.value}
        )


def _within_quantity(math: SafeMath, record: CustodyRecord, amount: str) -> None:
    if record.quantity is not None and math.is_greater_than(amount, record.quantity):
        raise ValidationError(
            f"amount {amount} exceeds the minted quantity {math.to_string(record.quantity)}",
            {'field': 'amount'}
        )


def validate_mint(math: SafeMath, record: CustodyRecord, payload: Dict[str, Any]) -> Dict[str, Any]:
    result = {
        'tokenSymbol': _text(payload, 'tokenSymbol'),
        'tokenName': _text(payload, 'tokenName'),
        'totalSupply': _positive(math, payload, 'totalSupply'),
        'decimals': _decimals(payload),
        'blockchainId': _text(payload, 'blockchainId'),
    }
    # Supply must be representable in base units
    math.to_base_units(result['totalSupply'], result['decimals'])
    _require_status(record, MINTABLE, 'mint')
    return result


def validate_burn(math: SafeMath, record: CustodyRecord, payload: Dict[str, Any]) -> Dict[str, Any]:
    amount = _positive(math, payload, 'amount')
    _require_status(record, {CustodyStatus.MINTED}, 'burn')
    _within_quantity(math, record, amount)
    return {'amount': amount}


def validate_freeze(math: SafeMath, record: CustodyRecord, payload: Dict[str, Any]) -> Dict[str, Any]:
    result = {
        'address': _address(payload, 'address', required=False),
        'reason': _text(payload, 'reason', required=False),
    }
    _require_status(record, {CustodyStatus.MINTED}, 'freeze')
    return {key: value for key, value in result.items() if value is not None}


def validate_withdraw(math: SafeMath, record: CustodyRecord, payload: Dict[str, Any]) -> Dict[str, Any]:
    result = {
        'amount': _positive(math, payload, 'amount'),
        'destinationAddress': _address(payload, 'destinationAddress'),
    }
    _require_status(record, {CustodyStatus.MINTED}, 'withdraw')
    _within_quantity(math, record, result['amount'])
    return result


VALIDATORS: Dict[OperationType, Callable[[SafeMath, CustodyRecord, Dict[str, Any]], Dict[str, Any]]] = {
    OperationType.MINT: validate_mint,
    OperationType.BURN: validate_burn,
    OperationType.FREEZE: validate_freeze,
    OperationType.WITHDRAW: validate_withdraw,
}


def validate_payload(
    math: SafeMath,
    operation_type: OperationType,
    record: CustodyRecord,
    payload: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Validate and normalize an operation payload against its custody record.

    ``vaultId`` is accepted for every type and carried through unchanged.

    Raises:
        ValidationError: If a field is missing or malformed
        StateError: If the custody record's status does not allow the operation
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")

    result = VALIDATORS[operation_type](math, record, payload)
    vault_id = _text(payload, 'vaultId', required=False)
    if vault_id:
        result['vaultId'] = vault_id
    return result


__all__ = ['validate_payload', 'VALIDATORS', 'MINTABLE']
