"""
Derived-State Projector

Pure function: (Order, now) -> what a person should see. No I/O, no clock
reads inside a projection; callers sample `now` once per pass so a whole list
render is time-consistent.

Status rule (first match wins):
    1. raw status Released/Resolved                      -> completed
    2. raw status Created/Joined/PaidLocal/Disputed and
       expiry <= now                                     -> expired
    3. otherwise (including "no expiry")                 -> pending

Expiry unit: raw values above PROTOCOL.EXPIRY_MS_CUTOVER are milliseconds.
That single constant is used for status, time remaining and the exact expiry
instant alike.

Money: Decimal throughout. Everything here is advisory display. The ledger
program computes the authoritative fee with its own integer math and nothing
here is expected to match it bit-for-bit.

Designed for: peermint escrow client
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Optional

from .config import PROTOCOL
from .models import TERMINAL_STATUSES, Order

_PRINCIPAL_SCALE = Decimal(10) ** PROTOCOL.PRINCIPAL_DECIMALS
_DISPLAY_SCALE = Decimal(10) ** PROTOCOL.DISPLAY_DECIMALS
_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)

# Descending; the first unit with a quotient >= 1 is shown
_TIME_UNITS = (
    ("day", 86_400),
    ("hour", 3_600),
    ("minute", 60),
)

LABEL_COMPLETED = "Completed"
LABEL_NO_EXPIRY = "No expiry"
LABEL_EXPIRED = "Expired"
LABEL_UNDER_A_MINUTE = "Less than a minute"


class DisplayStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def label(self) -> str:
        return self.value.capitalize()


# Default list ordering groups by this priority
STATUS_PRIORITY = {
    DisplayStatus.PENDING: 0,
    DisplayStatus.COMPLETED: 1,
    DisplayStatus.EXPIRED: 2,
}


@dataclass(frozen=True)
class TimeRemaining:
    label: str
    seconds: float        # inf for completed / no expiry, 0 once expired


@dataclass(frozen=True)
class Amounts:
    principal: Decimal           # settlement currency
    display: Decimal             # display currency
    display_derived: bool        # True when computed from the advisory rate (legacy record)


@dataclass(frozen=True)
class FeeBreakdown:
    fee_percent: int
    fee_display: Decimal
    fee_principal: Decimal
    total_display: Decimal
    total_principal: Decimal


@dataclass(frozen=True)
class ProjectedOrder:
    order: Order
    status: DisplayStatus
    time_remaining: TimeRemaining
    amounts: Amounts
    fees: FeeBreakdown
    sequence_number: str
    expiry_at: Optional[datetime]
    now: int


# ============================================================
# PIECES
# ============================================================

def normalize_expiry(expiry_raw: Optional[int]) -> Optional[int]:
    """Raw expiry -> epoch seconds. None stays None."""
    if expiry_raw is None or expiry_raw <= 0:
        return None
    if expiry_raw > PROTOCOL.EXPIRY_MS_CUTOVER:
        return expiry_raw // 1000
    return expiry_raw


def derive_status(order: Order, now: int) -> DisplayStatus:
    if order.status in TERMINAL_STATUSES:
        return DisplayStatus.COMPLETED
    expiry = normalize_expiry(order.expiry_raw)
    if expiry is not None and expiry <= now:
        return DisplayStatus.EXPIRED
    return DisplayStatus.PENDING


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''} left"


def time_remaining(order: Order, now: int) -> TimeRemaining:
    if order.status in TERMINAL_STATUSES:
        return TimeRemaining(LABEL_COMPLETED, math.inf)
    expiry = normalize_expiry(order.expiry_raw)
    if expiry is None:
        return TimeRemaining(LABEL_NO_EXPIRY, math.inf)
    if expiry <= now:
        return TimeRemaining(LABEL_EXPIRED, 0)

    seconds_left = int(expiry - now)
    for unit, size in _TIME_UNITS:
        n = seconds_left // size
        if n >= 1:
            return TimeRemaining(_plural(n, unit), seconds_left)
    return TimeRemaining(LABEL_UNDER_A_MINUTE, seconds_left)


def expiry_instant(order: Order) -> Optional[datetime]:
    expiry = normalize_expiry(order.expiry_raw)
    if expiry is None:
        return None
    try:
        return datetime.fromtimestamp(expiry, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        # i64 values far past year 9999
        return None


def compute_amounts(order: Order, exchange_rate: Decimal = PROTOCOL.ADVISORY_EXCHANGE_RATE) -> Amounts:
    principal = Decimal(order.amount) / _PRINCIPAL_SCALE
    if order.display_amount is not None:
        return Amounts(principal, Decimal(order.display_amount) / _DISPLAY_SCALE, False)
    # Legacy record: display value is an estimate, never used for settlement
    derived = (principal * exchange_rate).quantize(_CENT, rounding=ROUND_HALF_UP)
    return Amounts(principal, derived, True)


def compute_fees(fee_percent: int, amounts: Amounts) -> FeeBreakdown:
    rate = Decimal(fee_percent) / _HUNDRED
    # ROUND_HALF_UP on Decimal rounds half away from zero
    fee_display = (amounts.display * rate).quantize(_CENT, rounding=ROUND_HALF_UP)
    fee_principal = amounts.principal * rate
    return FeeBreakdown(
        fee_percent=fee_percent,
        fee_display=fee_display,
        fee_principal=fee_principal,
        total_display=amounts.display + fee_display,
        total_principal=amounts.principal + fee_principal,
    )


def sequence_number(order: Order) -> str:
    return str(order.nonce).zfill(PROTOCOL.SEQUENCE_NUMBER_WIDTH)


def format_principal(value: Decimal) -> str:
    return f"{value:.{PROTOCOL.PRINCIPAL_DECIMALS}f}"


def format_display(value: Decimal) -> str:
    return f"{value:.{PROTOCOL.DISPLAY_DECIMALS}f}"


# ============================================================
# PROJECTION
# ============================================================

def project(order: Order, now: int, exchange_rate: Decimal = PROTOCOL.ADVISORY_EXCHANGE_RATE) -> ProjectedOrder:
    now = int(now)
    amounts = compute_amounts(order, exchange_rate)
    return ProjectedOrder(
        order=order,
        status=derive_status(order, now),
        time_remaining=time_remaining(order, now),
        amounts=amounts,
        fees=compute_fees(order.fee_percent, amounts),
        sequence_number=sequence_number(order),
        expiry_at=expiry_instant(order),
        now=now,
    )


def project_many(
    orders: Iterable[Order],
    now: Optional[int] = None,
    exchange_rate: Decimal = PROTOCOL.ADVISORY_EXCHANGE_RATE,
) -> list[ProjectedOrder]:
    """Project a batch against one sampled instant."""
    if now is None:
        now = int(time.time())
    return [project(o, now, exchange_rate) for o in orders]
