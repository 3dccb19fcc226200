"""
Exact arithmetic for minor-unit amounts, interest rates and maturity times.

Amounts are Python ints (arbitrary precision). Rates are ``Decimal`` values
built from strings. Nothing here accepts or produces ``float``.
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, localcontext
from typing import Union

# Seconds between the Unix epoch and the Ripple epoch (2000-01-01T00:00:00Z)
RIPPLE_EPOCH_OFFSET = 946684800

# Total XRP supply in drops; no native amount can exceed it
MAX_DROPS = 10 ** 17
MAX_RATE = Decimal("1")
MAX_RATE_PLACES = 18
MAX_RATE_CHARS = 40


def parse_minor_units(value: Union[str, int]) -> int:
    """Parse a non-negative integer amount given as a decimal string"""
    if isinstance(value, bool):
        raise ValueError("amount must be a decimal string of minor units")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("amount must not be negative")
        if value > MAX_DROPS:
            raise ValueError(f"amount must not exceed {MAX_DROPS}")
        return value
    if not isinstance(value, str):
        raise ValueError("amount must be a decimal string of minor units")
    text = value.strip()
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"invalid minor-unit amount: {value!r}")
    if len(text.lstrip("0")) > len(str(MAX_DROPS)) or int(text) > MAX_DROPS:
        raise ValueError(f"amount must not exceed {MAX_DROPS}")
    return int(text)


def parse_rate(value: Union[str, Decimal]) -> Decimal:
    """Parse an interest rate fraction such as "0.035", between 0 and 1"""
    if isinstance(value, float):
        raise ValueError("interest rate must be given as a decimal string")
    text = str(value).strip()
    if len(text) > MAX_RATE_CHARS:
        raise ValueError(f"interest rate must be at most {MAX_RATE_CHARS} characters")
    try:
        rate = Decimal(value) if isinstance(value, Decimal) else Decimal(text)
    except InvalidOperation:
        raise ValueError(f"invalid interest rate: {value!r}")
    if not rate.is_finite() or rate < 0:
        raise ValueError("interest rate must be a non-negative number")
    if rate > MAX_RATE:
        raise ValueError(f"interest rate must not exceed {MAX_RATE}")
    if rate.as_tuple().exponent < -MAX_RATE_PLACES:
        raise ValueError(f"interest rate must have at most {MAX_RATE_PLACES} decimal places")
    return rate


def interest_for(principal: int, rate: Decimal) -> int:
    """floor(principal * rate), computed exactly"""
    digits = len(str(principal)) + len(rate.as_tuple().digits) + 10
    with localcontext() as ctx:
        ctx.prec = digits
        product = Decimal(principal) * rate
        return int(product.to_integral_value(rounding=ROUND_FLOOR))


def total_owed_for(principal: int, rate: Decimal) -> int:
    return principal + interest_for(principal, rate)


def settlement_timezone(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def maturity_epoch(due: date, offset_minutes: int) -> int:
    """Unix seconds of local midnight on ``due`` at a fixed UTC offset"""
    moment = datetime.combine(due, time(0, 0), tzinfo=settlement_timezone(offset_minutes))
    return int(moment.timestamp())


def unix_to_ripple(seconds: int) -> int:
    return seconds - RIPPLE_EPOCH_OFFSET


def ripple_to_unix(seconds: int) -> int:
    return seconds + RIPPLE_EPOCH_OFFSET


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
