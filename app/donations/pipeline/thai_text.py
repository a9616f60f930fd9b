"""
Thai-language display helpers for receipts: amount in words (baht text),
long-form Buddhist-era dates and 24h times.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

DIGITS = ["ศูนย์", "หนึ่ง", "สอง", "สาม", "สี่", "ห้า", "หก", "เจ็ด", "แปด", "เก้า"]
POSITIONS = ["", "สิบ", "ร้อย", "พัน", "หมื่น", "แสน"]

THAI_MONTHS = [
    "มกราคม", "กุมภาพันธ์", "มีนาคม", "เมษายน", "พฤษภาคม", "มิถุนายน",
    "กรกฎาคม", "สิงหาคม", "กันยายน", "ตุลาคม", "พฤศจิกายน", "ธันวาคม",
]

BUDDHIST_ERA_OFFSET = 543
_CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def _group_words(n: int, has_prefix: bool) -> str:
    """Words for 0 <= n < 1,000,000. ``has_prefix``: a higher group precedes."""
    words: list[str] = []
    digits = str(n)
    width = len(digits)
    for i, ch in enumerate(digits):
        d = int(ch)
        pos = width - i - 1
        if d == 0:
            continue
        if pos == 1:
            if d == 1:
                words.append("สิบ")
            elif d == 2:
                words.append("ยี่สิบ")
            else:
                words.append(DIGITS[d] + "สิบ")
        elif pos == 0 and d == 1 and (n > 1 or has_prefix):
            words.append("เอ็ด")
        else:
            words.append(DIGITS[d] + POSITIONS[pos])
    return "".join(words)


def _integer_words(n: int) -> str:
    if n == 0:
        return ""
    millions, rest = divmod(n, 1_000_000)
    head = _integer_words(millions) + "ล้าน" if millions else ""
    return head + _group_words(rest, has_prefix=bool(millions))


def to_decimal(amount) -> Decimal:
    if isinstance(amount, Decimal):
        value = amount
    else:
        value = Decimal(str(amount))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def baht_text(amount) -> str:
    """Spell out a baht amount, e.g. ``1500`` → ``หนึ่งพันห้าร้อยบาทถ้วน``.

    Satang are rounded half-up to two places; ``100.50`` →
    ``หนึ่งร้อยบาทห้าสิบสตางค์``.
    """
    value = to_decimal(amount)
    if value < 0:
        raise ValueError("amount must not be negative")

    baht = int(value)
    satang = int((value - baht) * 100)

    if baht == 0 and satang == 0:
        return "ศูนย์บาทถ้วน"

    text = ""
    if baht:
        text = _integer_words(baht) + "บาท"
    if satang:
        return text + _integer_words(satang) + "สตางค์"
    return text + "ถ้วน"


def format_amount(amount) -> str:
    """Thousands-separated amount; satang only shown when non-zero."""
    value = to_decimal(amount)
    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value:,.2f}"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def to_local(dt: datetime, utc_offset_hours: int) -> datetime:
    """Naive datetimes are treated as UTC (that is how rows are stored)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone(timedelta(hours=utc_offset_hours)))


def thai_long_date(d: date) -> str:
    """``19 ตุลาคม 2569``"""
    return f"{d.day:02d} {THAI_MONTHS[d.month - 1]} {d.year + BUDDHIST_ERA_OFFSET}"


def thai_time(dt: datetime) -> str:
    """``14:05 น.``"""
    return f"{dt.hour:02d}:{dt.minute:02d} น."


def thai_short_datetime(dt: datetime) -> str:
    """``19/10/2569 เวลา 14:05 น.``"""
    return (
        f"{dt.day:02d}/{dt.month:02d}/{dt.year + BUDDHIST_ERA_OFFSET} "
        f"เวลา {thai_time(dt)}"
    )
