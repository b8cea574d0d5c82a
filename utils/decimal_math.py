"""Fixed-precision arithmetic for token quantities and prices.

Precision and rounding live in an immutable ``DecimalContext`` that each
``SafeMath`` instance is bound to, so alternate policies can be used side
by side without touching the process-wide ``decimal`` context.

Example:
    >>> math = SafeMath()
    >>> math.add('0.1', '0.2')
    '0.3'
    >>> SafeMath(DecimalContext(precision=4)).divide('2', '3')
    '0.6666'
"""
import decimal
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from errors import ValidationError

Numeric = Union[str, int, float, Decimal]

TOKEN_DECIMALS = 18
PRICE_DECIMALS = 2
FEE_DECIMALS = 4

# Wide enough for uint256 amounts
_BASE_UNIT_PRECISION = 80


@dataclass(frozen=True)
class DecimalContext:
    """Precision and rounding policy for decimal arithmetic."""
    precision: int = 28
    rounding: str = ROUND_DOWN
    token_decimals: int = TOKEN_DECIMALS
    price_decimals: int = PRICE_DECIMALS
    fee_decimals: int = FEE_DECIMALS

    def __post_init__(self):
        if self.precision < 1:
            raise ValueError("precision must be at least 1")

    def with_(self, **changes) -> 'DecimalContext':
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_context(self) -> decimal.Context:
        """Build a ``decimal.Context`` for this policy."""
        return decimal.Context(prec=self.precision, rounding=self.rounding)


DEFAULT_CONTEXT = DecimalContext()


class SafeMath:
    """Decimal arithmetic over strings, bound to one ``DecimalContext``.

    Arithmetic results are plain decimal strings: no exponent notation and
    no trailing fractional zeros.
    """

    def __init__(self, ctx: DecimalContext = DEFAULT_CONTEXT):
        self.ctx = ctx
        self._context = ctx.to_context()

    def from_string(self, value: Numeric) -> Decimal:
        """Parse a value into a finite ``Decimal``.

        Raises:
            ValidationError: If the value is not a finite decimal number
        """
        if isinstance(value, bool):
            raise ValidationError(f"Invalid decimal value: {value!r}")
        try:
            if isinstance(value, Decimal):
                result = value
            elif isinstance(value, int):
                result = Decimal(value)
            elif isinstance(value, float):
                result = Decimal(repr(value))
            elif isinstance(value, str):
                result = Decimal(value.strip())
            else:
                raise ValidationError(f"Invalid decimal value: {value!r}")
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid decimal value: {value!r}")
        if not result.is_finite():
            raise ValidationError(f"Invalid decimal value: {value!r}")
        return result

    def to_string(self, value: Numeric) -> str:
        """Render a value as a normalized plain decimal string."""
        result = self.from_string(value).normalize(self._context)
        if result.is_zero():
            return '0'
        return format(result, 'f')

    def add(self, a: Numeric, b: Numeric) -> str:
        return self.to_string(self._context.add(self.from_string(a), self.from_string(b)))

    def subtract(self, a: Numeric, b: Numeric) -> str:
        return self.to_string(self._context.subtract(self.from_string(a), self.from_string(b)))

    def multiply(self, a: Numeric, b: Numeric) -> str:
        return self.to_string(self._context.multiply(self.from_string(a), self.from_string(b)))

    def divide(self, a: Numeric, b: Numeric) -> str:
        """Divide ``a`` by ``b``.

        Raises:
            ZeroDivisionError: If ``b`` is zero, whatever ``a`` is
        """
        divisor = self.from_string(b)
        if divisor.is_zero():
            raise ZeroDivisionError("Division by zero")
        return self.to_string(self._context.divide(self.from_string(a), divisor))

    def sum(self, values) -> str:
        total = Decimal(0)
        for value in values:
            total = self._context.add(total, self.from_string(value))
        return self.to_string(total)

    def compare(self, a: Numeric, b: Numeric) -> int:
        """Return -1, 0 or 1 as ``a`` is less than, equal to or greater than ``b``."""
        return int(self.from_string(a).compare(self.from_string(b)))

    def is_greater_than(self, a: Numeric, b: Numeric) -> bool:
        return self.compare(a, b) > 0

    def is_less_than(self, a: Numeric, b: Numeric) -> bool:
        return self.compare(a, b) < 0

    def is_equal(self, a: Numeric, b: Numeric) -> bool:
        return self.compare(a, b) == 0

    def is_zero(self, value: Numeric) -> bool:
        return self.from_string(value).is_zero()

    def is_negative(self, value: Numeric) -> bool:
        result = self.from_string(value)
        return result.is_signed() and not result.is_zero()

    def is_positive(self, value: Numeric) -> bool:
        result = self.from_string(value)
        return not result.is_signed() and not result.is_zero()

    def to_fixed(self, value: Numeric, decimals: int) -> str:
        """Round to ``decimals`` places and keep trailing zeros.

        Raises:
            ValidationError: If the result needs more digits than the context's precision
        """
        exponent = Decimal(1).scaleb(-decimals)
        try:
            result = self.from_string(value).quantize(
                exponent, rounding=self.ctx.rounding, context=self._context
            )
        except InvalidOperation:
            raise ValidationError(
                f"{value} with {decimals} decimal places exceeds precision {self.ctx.precision}"
            )
        return format(result, 'f')

    def format_price(self, value: Numeric) -> str:
        return self.to_fixed(value, self.ctx.price_decimals)

    def format_fee(self, value: Numeric) -> str:
        return self.to_fixed(value, self.ctx.fee_decimals)

    def to_base_units(self, value: Numeric, decimals: int = None) -> int:
        """Scale a token amount to integer base units (``value * 10**decimals``).

        Raises:
            ValidationError: If the amount has more fractional digits than ``decimals``
        """
        if decimals is None:
            decimals = self.ctx.token_decimals
        wide = decimal.Context(prec=_BASE_UNIT_PRECISION, rounding=ROUND_DOWN)
        scaled = self.from_string(value).scaleb(decimals, context=wide)
        if scaled != scaled.to_integral_value(rounding=ROUND_DOWN, context=wide):
            raise ValidationError(
                f"Amount {value} has more than {decimals} decimal places"
            )
        return int(scaled)


__all__ = [
    'DecimalContext',
    'DEFAULT_CONTEXT',
    'SafeMath',
    'TOKEN_DECIMALS',
    'PRICE_DECIMALS',
    'FEE_DECIMALS',
]
