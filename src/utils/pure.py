import random
import string
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from db.models import AttendanceStatus, PunchKind
from utils.errors import ValidationError

Money = Union[Decimal, str, int, float]

# (start, end) hours of each shift
DAY_SHIFT = (8, 18)
EVENING_SHIFT = (18, 22)
EVENING_FROM_HOUR = 12

_BASE36 = string.digits + string.ascii_lowercase
_CENT = Decimal("0.01")


# ---------------------------
# Money
# ---------------------------


def to_cents(value: Money) -> int:
    """
    Convert a peso amount to integer centavos.

    Floats go through their string form so 0.1 stays 0.1. Amounts with more
    than two decimal places or below zero are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid price: {value!r}")
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise ValidationError(f"Invalid price: {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"Invalid price: {value!r}")
    if amount < 0:
        raise ValidationError("Price cannot be negative.")
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"Price {value} has more than two decimal places.")
    return int(amount.quantize(_CENT) * 100)


def from_cents(cents: int) -> Decimal:
    return Decimal(int(cents)).scaleb(-2)


def format_peso(amount: Money) -> str:
    return f"₱{from_cents(to_cents(amount)):,}"


# ---------------------------
# Input
# ---------------------------


def check_quantity(value, minimum: int = 1) -> int:
    # bool is an int subclass, and 1.5 or "2" must not slip through a < check
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Quantity must be a whole number, got {value!r}.")
    if value < minimum:
        if minimum == 0:
            raise ValidationError("Quantity cannot be negative.")
        raise ValidationError(f"Quantity must be at least {minimum}.")
    return value


def like_pattern(text: str) -> str:
    """Substring pattern for ``LIKE ? ESCAPE '\\'``; % and _ match literally."""
    escaped = (
        text.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


# ---------------------------
# Timestamps
# ---------------------------


def to_db_ts(when: datetime) -> str:
    # fixed width so text comparison in SQL matches chronological order
    return when.isoformat(sep=" ", timespec="microseconds")


def from_db_ts(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def generate_order_number(now: datetime, rng: Optional[random.Random] = None) -> str:
    """ORD-<epoch millis>-<9 base36 chars>; uniqueness is checked by the caller."""
    rng = rng or random
    token = "".join(rng.choice(_BASE36) for _ in range(9))
    return f"ORD-{int(now.timestamp() * 1000)}-{token}"


# ---------------------------
# Attendance
# ---------------------------


def _is_evening(when: datetime) -> bool:
    return when.hour >= EVENING_FROM_HOUR


def _at_hour(base: datetime, hour: int) -> datetime:
    return datetime.combine(base.date(), time(hour), tzinfo=base.tzinfo)


def _to_millis(when: datetime) -> datetime:
    return when.replace(microsecond=when.microsecond // 1000 * 1000)


def classify_attendance(
    when: datetime,
    kind: PunchKind,
    paired_time_in: Optional[datetime] = None,
) -> AttendanceStatus:
    """
    Classify a punch against the day (08:00-18:00) or evening (18:00-22:00) shift.

    Time in picks the shift from its own hour; time out from the paired time
    in when there is one. Arriving before the start counts as OVERTIME and
    after it as UNDERTIME; leaving after the end counts as OVERTIME and before
    it as UNDERTIME. Only an exact match on the boundary is EXACT_TIME.

    Punches are compared at millisecond precision: 08:00:00.000400 is still
    08:00:00.000.
    """
    kind = PunchKind(kind)
    when = _to_millis(when)
    if kind is PunchKind.TIME_IN:
        start = _at_hour(when, (EVENING_SHIFT if _is_evening(when) else DAY_SHIFT)[0])
        if when == start:
            return AttendanceStatus.EXACT_TIME
        if when > start:
            return AttendanceStatus.UNDERTIME
        return AttendanceStatus.OVERTIME

    anchor = paired_time_in if paired_time_in is not None else when
    end = _at_hour(when, (EVENING_SHIFT if _is_evening(anchor) else DAY_SHIFT)[1])
    if when == end:
        return AttendanceStatus.EXACT_TIME
    if when > end:
        return AttendanceStatus.OVERTIME
    return AttendanceStatus.UNDERTIME


QR_PREFIX = "employee:"


def qr_payload(employee_id: int) -> str:
    return f"{QR_PREFIX}{int(employee_id)}"


def parse_qr_payload(text: str) -> int:
    """Employee id from a scanned ``employee:<id>`` badge."""
    raw = (text or "").strip()
    if not raw.startswith(QR_PREFIX):
        raise ValidationError(f"Not an employee badge: {text!r}")
    digits = raw[len(QR_PREFIX):]
    if not (digits.isascii() and digits.isdigit()):
        raise ValidationError(f"Not an employee badge: {text!r}")
    return int(digits)
