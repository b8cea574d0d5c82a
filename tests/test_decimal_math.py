"""Tests for fixed-precision decimal arithmetic."""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from errors import ValidationError
from utils.decimal_math import DecimalContext, SafeMath


@pytest.fixture
def math():
    return SafeMath()


def test_add_is_exact(math):
    assert math.add('0.1', '0.2') == '0.3'
    assert math.add('1.10', '2.20') == '3.3'
    assert math.add('-5', '5') == '0'


@pytest.mark.parametrize("a,b,c", [
    ('0.1', '0.2', '0.3'),
    ('123456789.123456789', '0.000000001', '-42'),
    ('1e-18', '1000000', '7.25'),
])
def test_add_commutative_and_associative(math, a, b, c):
    assert math.add(a, b) == math.add(b, a)
    assert math.add(math.add(a, b), c) == math.add(a, math.add(b, c))


def test_subtract_multiply(math):
    assert math.subtract('100', '40') == '60'
    assert math.subtract('1', '1.5') == '-0.5'
    assert math.multiply('2.5', '4') == '10'
    assert math.multiply('0.1', '0.1') == '0.01'


@pytest.mark.parametrize("dividend", ['0', '1', '-7.5', '123456789'])
def test_divide_by_zero(math, dividend):
    with pytest.raises(ZeroDivisionError, match="Division by zero"):
        math.divide(dividend, '0')
    with pytest.raises(ZeroDivisionError):
        math.divide(dividend, '0.000')


def test_divide_rounds_down(math):
    assert math.divide('10', '4') == '2.5'
    assert SafeMath(DecimalContext(precision=4)).divide('2', '3') == '0.6666'


def test_results_have_no_exponent(math):
    assert math.to_string(Decimal('1E+3')) == '1000'
    assert math.to_string('0.000000000000000001') == '0.000000000000000001'
    assert math.to_string('-0.00') == '0'


def test_sum(math):
    assert math.sum([]) == '0'
    assert math.sum(['1', Decimal('2.5'), 3]) == '6.5'


def test_comparisons(math):
    assert math.compare('1.0', '1') == 0
    assert math.compare('2', '10') == -1
    assert math.is_greater_than('10', '9.99')
    assert math.is_less_than('-1', '0')
    assert math.is_equal('0.50', '0.5')
    assert math.is_zero('0.000')
    assert math.is_negative('-0.01')
    assert not math.is_negative('-0')
    assert math.is_positive('0.01')
    assert not math.is_positive('0')


@pytest.mark.parametrize("value", ['abc', '', 'NaN', 'Infinity', None, True, [1]])
def test_from_string_rejects_invalid(math, value):
    with pytest.raises(ValidationError):
        math.from_string(value)


def test_float_inputs_use_shortest_repr(math):
    assert math.add(0.1, 0.2) == '0.3'


def test_formatting(math):
    assert math.format_price('12.999') == '12.99'
    assert math.format_price('5') == '5.00'
    assert math.format_fee('0.123456') == '0.1234'
    assert math.to_fixed('1.5', 0) == '1'


def test_to_fixed_uses_own_precision(math):
    big = '1' + '0' * 30
    with pytest.raises(ValidationError):
        math.to_fixed(big, 2)
    assert SafeMath(DecimalContext(precision=40)).to_fixed(big, 2) == big + '.00'

    narrow = SafeMath(DecimalContext(precision=3))
    assert narrow.format_price('1.5') == '1.50'
    with pytest.raises(ValidationError):
        narrow.format_price('12.5')


def test_to_base_units(math):
    assert math.to_base_units('1') == 10 ** 18
    assert math.to_base_units('100') == 100 * 10 ** 18
    assert math.to_base_units('0.5', 6) == 500000
    assert math.to_base_units('42', 0) == 42
    # Exceeds 28 significant digits
    assert math.to_base_units('123456789012.123456789012345678') == 123456789012123456789012345678


def test_to_base_units_rejects_excess_precision(math):
    with pytest.raises(ValidationError):
        math.to_base_units('0.1234567', 6)
    with pytest.raises(ValidationError):
        math.to_base_units('1.5', 0)


def test_context_is_immutable():
    ctx = DecimalContext()
    narrow = ctx.with_(precision=6)
    assert ctx.precision == 28
    assert narrow.precision == 6
    with pytest.raises(FrozenInstanceError):
        ctx.precision = 3
    with pytest.raises(ValueError):
        DecimalContext(precision=0)
