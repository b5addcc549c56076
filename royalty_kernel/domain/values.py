"""
Fixed-point money and percentage values.

Money and ownership percentages are both Decimals with exactly two decimal
digits.  ``round_money`` is the only sanctioned rounding function; the
``parse_*`` functions are the validation boundary for externally supplied
numbers and never round silently.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from royalty_kernel.exceptions import InvalidAmountError, InvalidPercentageError

MONEY_DECIMAL_PLACES = 2
PERCENT_DECIMAL_PLACES = 2

ZERO = Decimal("0.00")
HUNDRED = Decimal("100.00")
CENT = Decimal("0.01")


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round half-up to ``decimal_places`` (two by default)."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


def _to_decimal(value: object) -> Decimal | None:
    # float is refused: binary floats drift in balance chains
    if isinstance(value, bool) or isinstance(value, float):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def parse_amount(
    value: object,
    *,
    allow_zero: bool = False,
    allow_negative: bool = False,
) -> Decimal:
    """
    Validate a monetary amount and return it quantized to two places.

    Raises:
        InvalidAmountError: not a finite decimal, more than two decimal
            places, zero when ``allow_zero`` is False, or negative when
            ``allow_negative`` is False.
    """
    amount = _to_decimal(value)
    if amount is None or not amount.is_finite():
        raise InvalidAmountError(value, "not a decimal number")
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise InvalidAmountError(value, "more than 2 decimal places")
    if amount < 0 and not allow_negative:
        raise InvalidAmountError(value, "must be positive")
    if amount == 0 and not allow_zero:
        raise InvalidAmountError(value, "must be non-zero")
    return round_money(amount)


def parse_percentage(value: object) -> Decimal:
    """
    Validate a percentage in [0, 100] with at most two decimal places.

    Raises:
        InvalidPercentageError
    """
    pct = _to_decimal(value)
    if pct is None or not pct.is_finite():
        raise InvalidPercentageError(value)
    if pct != pct.quantize(CENT, rounding=ROUND_HALF_UP):
        raise InvalidPercentageError(value)
    if pct < 0 or pct > HUNDRED:
        raise InvalidPercentageError(value)
    return round_money(pct, PERCENT_DECIMAL_PLACES)
