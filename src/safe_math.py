"""
Checked unsigned 64-bit arithmetic.

Every counter and every distribution step goes through these helpers so
that an overflow or underflow aborts the operation instead of wrapping.
"""

from errors import ErrorCode, fail

U64_MAX = 2**64 - 1
U16_MAX = 2**16 - 1


def to_u64(value: int, code: ErrorCode = ErrorCode.INVALID_AMOUNT) -> int:
    """Return ``value`` if it is an int in the u64 range, else raise ``code``."""
    if isinstance(value, bool) or not isinstance(value, int):
        fail(code, f"Expected an unsigned integer, got {value!r}", operation="safe_math")
    if value < 0 or value > U64_MAX:
        fail(code, f"Value {value} is outside the u64 range", operation="safe_math")
    return value


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > U64_MAX:
        fail(ErrorCode.OVERFLOW, operation="safe_math", a=a, b=b)
    return result


def checked_sub(a: int, b: int) -> int:
    result = a - b
    if result < 0:
        fail(ErrorCode.UNDERFLOW, operation="safe_math", a=a, b=b)
    return result


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > U64_MAX:
        fail(ErrorCode.MATH_OVERFLOW, operation="safe_math", a=a, b=b)
    return result


def checked_div(a: int, b: int) -> int:
    """Truncating division. Division by zero fails closed."""
    if b == 0:
        fail(ErrorCode.MATH_OVERFLOW, "Division by zero", operation="safe_math", a=a)
    return a // b


def mul_div(value: int, numerator: int, denominator: int) -> int:
    """
    floor(value * numerator / denominator) with a checked intermediate.

    The intermediate product must itself fit in u64, matching how the
    amounts are computed on the settlement ledger.
    """
    return checked_div(checked_mul(value, numerator), denominator)


def increment(counter: int, by: int = 1) -> int:
    """Advance a monotonically increasing counter."""
    return checked_add(counter, by)
