"""Fractional rank keys for sibling order.

Keys are base-36 digit strings (``0-9a-z``) read as fractions, so plain string
comparison gives the sibling order. A key can always be generated between
two others without rewriting either of them, which keeps every reorder a
single ``move`` operation regardless of list size.

Valid keys are non-empty and never end in ``0``: ``"a"`` and ``"a0"`` denote
the same fraction, and a trailing zero would leave no room below a key.
"""

DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)
_ZERO = DIGITS[0]


class RankError(ValueError):
    """Raised for malformed or misordered rank keys."""


def is_valid(key: str) -> bool:
    """Return True if ``key`` is a well-formed rank key."""
    return bool(key) and not key.endswith(_ZERO) and all(c in DIGITS for c in key)


def _check(key: str) -> None:
    if not is_valid(key):
        msg = f"Invalid rank key: {key!r}"
        raise RankError(msg)


def _midpoint(low: str, high: str | None) -> str:
    """Shortest key strictly between ``low`` and ``high``.

    ``low=""`` is the open lower bound, ``high=None`` the open upper bound.
    """
    if high is not None:
        # Shared prefix; a missing digit of low counts as zero.
        n = 0
        while (low[n] if n < len(low) else _ZERO) == high[n]:
            n += 1
        if n > 0:
            return high[:n] + _midpoint(low[n:], high[n:])

    digit_low = DIGITS.index(low[0]) if low else 0
    digit_high = DIGITS.index(high[0]) if high is not None else BASE
    if digit_high - digit_low > 1:
        return DIGITS[(digit_low + digit_high + 1) // 2]
    if high is not None and len(high) > 1:
        return high[0]
    return DIGITS[digit_low] + _midpoint(low[1:], None)


def initial() -> str:
    """Key for the first child of an empty sibling list."""
    return _midpoint("", None)


def before(key: str) -> str:
    """Key that sorts strictly before ``key``."""
    _check(key)
    return _midpoint("", key)


def after(key: str) -> str:
    """Key that sorts strictly after ``key``."""
    _check(key)
    return _midpoint(key, None)


def between(low: str, high: str) -> str:
    """Key ``k`` with ``low < k < high``.

    Raises:
        RankError: If either key is malformed or ``low >= high``.
    """
    _check(low)
    _check(high)
    if low >= high:
        msg = f"Rank keys out of order: {low!r} >= {high!r}"
        raise RankError(msg)
    return _midpoint(low, high)


def key_between(low: str | None, high: str | None) -> str:
    """Like :func:`between`, with ``None`` meaning an open end."""
    if low is None and high is None:
        return initial()
    if low is None:
        return before(high)  # type: ignore[arg-type]
    if high is None:
        return after(low)
    return between(low, high)


def generate(count: int, low: str | None = None, high: str | None = None) -> list[str]:
    """Generate ``count`` ascending keys strictly between optional bounds.

    Keys are placed by bisection so their length grows with ``log(count)``
    rather than with ``count``; used for bulk inserts.
    """
    if count <= 0:
        return []
    mid = key_between(low, high)
    if count == 1:
        return [mid]
    left = count // 2
    return [*generate(left, low, mid), mid, *generate(count - left - 1, mid, high)]
