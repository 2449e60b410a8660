"""
Typed Order record as stored on the ledger.

Everything here is raw: integer amounts in their wire scale, the expiry in
whatever unit the producing client wrote. Interpretation lives in projector.py.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from .keys import Pubkey


class RawStatus(IntEnum):
    """Lifecycle codes written by the ledger program."""
    CREATED = 0
    JOINED = 1
    PAID_LOCAL = 2
    RELEASED = 3
    DISPUTED = 4
    RESOLVED = 5


TERMINAL_STATUSES = frozenset({RawStatus.RELEASED, RawStatus.RESOLVED})

# Reached only through join, so a helper is always recorded
HELPER_REQUIRED_STATUSES = frozenset({RawStatus.JOINED, RawStatus.PAID_LOCAL, RawStatus.RELEASED})


class SchemaLayout(str, Enum):
    CURRENT = "current"    # carries the display-currency amount
    LEGACY = "legacy"      # principal only


@dataclass(frozen=True)
class Order:
    creator: Pubkey
    helper: Optional[Pubkey]
    amount: int                      # principal, 1e-6 scale
    display_amount: Optional[int]    # 1e-2 scale, None on legacy records
    fee_percent: int
    expiry_raw: Optional[int]        # seconds or milliseconds, None = no expiry
    payment_reference: str
    status: RawStatus
    nonce: int
    layout: SchemaLayout = SchemaLayout.CURRENT


@dataclass(frozen=True)
class OrderRecord:
    """An Order together with the address it was read from."""
    address: Pubkey
    order: Order
