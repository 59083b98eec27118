"""
Fixed-point math: pure integer arithmetic, no floats, no state.

A fixed-point value is a signed integer with 64 fractional bits:
the integer x represents x / 2**64. Values live in the signed 256-bit
range; anything outside raises Overflow.

    ONE = 2**64          # 1.0
    multiply(a, b)       # a * b / ONE, truncated toward zero
    divide(a, b)         # a * ONE / b, truncated toward zero

The transcendental functions (exp, ln, pow2, binary_log) are evaluated
at 128 fractional bits and then rounded to 64 according to an
EstimationMode:

    LOWER_BOUND  result <= true value
    UPPER_BOUND  result >= true value
    MIDPOINT     nearest representable value

Every mode is within 2 ulps (2**-63) of the true value, so the relative
error is below 1e-9 whenever the result is at least 2**-34; below that
the absolute error dominates. Exact inputs (exp(0), ln(1), integral
pow2, binary_log of a power of two at MIDPOINT) give exact results.

Evaluation uses only integer operations whose results are fully
determined by the inputs, so any two implementations following the
same steps agree bit for bit.
"""

from decimal import Decimal
from enum import Enum

from marketmaker.errors import DivisionByZero, DomainError, Overflow


FRACTIONAL_BITS = 64
ONE = 1 << FRACTIONAL_BITS

INT256_MAX = (1 << 255) - 1
INT256_MIN = -(1 << 255)


class EstimationMode(str, Enum):
    LOWER_BOUND = "lower_bound"
    UPPER_BOUND = "upper_bound"
    MIDPOINT = "midpoint"


# ---------------------------------------------------------------------------
# Working precision
# ---------------------------------------------------------------------------

_WORK_BITS = 128
_WORK_ONE = 1 << _WORK_BITS

# Upper bound on accumulated truncation error of a series evaluation,
# in units of 2**-128. Actual error stays below 2**10.
_SLACK = 1 << 16

# Arguments beyond these produce results outside the int256 range
# (exp(133) > 2**191) or below half an ulp.
_EXP_MAX = 133 * ONE
_EXP_MIN = -50 * ONE
_POW2_MAX = 192 * ONE
_POW2_MIN = -70 * ONE


def _compute_ln2(bits: int) -> int:
    """ln 2 = sum_{k>=1} 1 / (k * 2**k), truncated to `bits` fractional bits."""
    guard = 64
    scale = 1 << (bits + guard)
    total = 0
    k = 1
    while True:
        term = scale // (k << k)
        if term == 0:
            break
        total += term
        k += 1
    return total >> guard


_LN2 = _compute_ln2(_WORK_BITS)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check(x: int) -> int:
    if x > INT256_MAX or x < INT256_MIN:
        raise Overflow(f"fixed-point value out of range: {x}")
    return x


def _div_trunc(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return -q if (a < 0) != (b < 0) else q


def _shift_floor(value: int, shift: int) -> int:
    if shift >= 0:
        return value << shift
    return value >> -shift


def _bound(value: int, shift: int, mode: EstimationMode) -> int:
    """Round value * 2**shift, widening by the series slack for bounds."""
    if mode is EstimationMode.LOWER_BOUND:
        return _shift_floor(value - _SLACK, shift)
    if mode is EstimationMode.UPPER_BOUND:
        return -_shift_floor(-(value + _SLACK), shift)
    if shift >= 0:
        return value << shift
    return (value + (1 << (-shift - 1))) >> -shift


def _exp_series(r: int) -> int:
    """e**r for 0 <= r < ln 2, both at working precision."""
    total = term = _WORK_ONE
    n = 1
    while term:
        term = (term * r >> _WORK_BITS) // n
        total += term
        n += 1
    return total


def _atanh_series(z: int) -> int:
    """atanh(z) for 0 <= z < 1/3 at working precision."""
    z2 = z * z >> _WORK_BITS
    total = 0
    term = z
    k = 1
    while term:
        total += term // k
        term = term * z2 >> _WORK_BITS
        k += 2
    return total


def _normalize(x: int) -> tuple[int, int]:
    """
    Split a positive fixed-point x into (e, m) with x = 2**e * m,
    m in [1, 2) at working precision.
    """
    top = x.bit_length() - 1
    e = top - FRACTIONAL_BITS
    shift = _WORK_BITS - top
    m = x << shift if shift >= 0 else x >> -shift
    return e, m


def _ln_mantissa(m: int) -> int:
    """ln m for m in [1, 2): 2 * atanh((m - 1) / (m + 1))."""
    if m == _WORK_ONE:
        return 0
    z = ((m - _WORK_ONE) << _WORK_BITS) // (m + _WORK_ONE)
    return 2 * _atanh_series(z)


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------

def to_fixed(n: int) -> int:
    """Integer -> fixed point."""
    return _check(n * ONE)


def from_fixed(x: int) -> int:
    """Fixed point -> integer, truncating toward zero."""
    return _div_trunc(x, ONE)


def to_decimal(x: int) -> Decimal:
    """Fixed point -> Decimal, for display only."""
    return Decimal(x) / Decimal(ONE)


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------

def multiply(a: int, b: int) -> int:
    return _check(_div_trunc(a * b, ONE))


def divide(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero("fixed-point division by zero")
    return _check(_div_trunc(a * ONE, b))


def power(base: int, exponent: int) -> int:
    """
    base ** exponent for an integer exponent. Computed exactly and
    truncated toward zero once, so repeated multiply() drift never
    accumulates.
    """
    if exponent == 0:
        return ONE
    if base == 0:
        if exponent < 0:
            raise DivisionByZero("zero raised to a negative power")
        return 0

    n = abs(exponent)
    bits = abs(base).bit_length()
    if exponent > 0:
        # |base| in [2**(bits-1), 2**bits) as raw integers
        if n * (bits - 1 - FRACTIONAL_BITS) + FRACTIONAL_BITS > 256:
            raise Overflow(f"power overflows: {bits} bits ** {exponent}")
        if n * (bits - FRACTIONAL_BITS) + FRACTIONAL_BITS <= 0:
            return 0
        return _check(_div_trunc(base ** n, ONE ** (n - 1)))

    if FRACTIONAL_BITS + n * (FRACTIONAL_BITS - bits) > 256:
        raise Overflow(f"power overflows: {bits} bits ** {exponent}")
    if FRACTIONAL_BITS + n * (FRACTIONAL_BITS + 1 - bits) < 0:
        return 0
    return _check(_div_trunc(ONE ** (n + 1), base ** n))


# ---------------------------------------------------------------------------
# Exponentials and logarithms
# ---------------------------------------------------------------------------

def exp(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    """e ** x. Raises Overflow when the result leaves the int256 range."""
    if x == 0:
        return ONE
    if x >= _EXP_MAX:
        raise Overflow(f"exp argument too large: {x}")
    if x < _EXP_MIN:
        return 1 if mode is EstimationMode.UPPER_BOUND else 0

    # x = k * ln2 + r, 0 <= r < ln2
    x_work = x << (_WORK_BITS - FRACTIONAL_BITS)
    k = x_work // _LN2
    r = x_work - k * _LN2
    result = _bound(_exp_series(r), k - FRACTIONAL_BITS, mode)
    if result < 0:
        result = 0
    return _check(result)


def pow2(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    """2 ** x."""
    if x >= _POW2_MAX:
        raise Overflow(f"pow2 argument too large: {x}")
    if x < _POW2_MIN:
        return 1 if mode is EstimationMode.UPPER_BOUND else 0

    k = x >> FRACTIONAL_BITS
    f = x - (k << FRACTIONAL_BITS)
    if f == 0 and k >= -FRACTIONAL_BITS:
        return _check(_shift_floor(ONE, k))

    r = f * _LN2 >> FRACTIONAL_BITS
    result = _bound(_exp_series(r), k - FRACTIONAL_BITS, mode)
    if result < 0:
        result = 0
    return _check(result)


def ln(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    """Natural logarithm. Raises DomainError for x <= 0."""
    if x <= 0:
        raise DomainError(f"ln of non-positive value: {x}")
    if x == ONE:
        return 0
    e, m = _normalize(x)
    value = e * _LN2 + _ln_mantissa(m)
    return _bound(value, FRACTIONAL_BITS - _WORK_BITS, mode)


def binary_log(x: int, mode: EstimationMode = EstimationMode.MIDPOINT) -> int:
    """log2(x). Raises DomainError for x <= 0."""
    if x <= 0:
        raise DomainError(f"binary_log of non-positive value: {x}")
    e, m = _normalize(x)
    value = (e << _WORK_BITS) + (_ln_mantissa(m) << _WORK_BITS) // _LN2
    if m == _WORK_ONE and mode is EstimationMode.MIDPOINT:
        return e * ONE
    return _bound(value, FRACTIONAL_BITS - _WORK_BITS, mode)
