import datetime
import decimal
import re
import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a max_digits=14, decimal_places=2 money column holds.
MAX_AMOUNT = Decimal("999999999999.99")

_WHITESPACE_RE = re.compile(r"\s+")


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def parse_amount(raw):
    """Coerce free-text cash input to money.

    Blank, non-numeric, negative or out-of-range input counts as zero.
    """
    if raw is None:
        return ZERO
    if isinstance(raw, Decimal):
        value = raw
    else:
        text = str(raw).strip().replace("$", "").replace(",", "")
        if not text:
            return ZERO
        try:
            value = Decimal(text)
        except InvalidOperation:
            return ZERO
    if not value.is_finite() or value < 0 or value > MAX_AMOUNT:
        return ZERO
    return to_money(value)


def slugify_employee(name):
    return _WHITESPACE_RE.sub("_", name.strip())


def epoch_millis(moment):
    return int(moment.timestamp() * 1000)


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value
