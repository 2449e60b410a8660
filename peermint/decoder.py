"""
Order Record Decoder

Turns raw account bytes into a typed Order.

Wire layout (little-endian, fixed offsets up to the payment reference):
    0..8     schema tag
    8..40    creator identity
    40..73   helper: 1-byte presence flag + 32 bytes (always reserved)
    u64      principal amount (1e-6)
    u64      display amount (1e-2)      -- current layout only
    u8       fee percent
    i64      expiry (seconds or milliseconds)
    u32+N    payment reference (UTF-8)
    u8       status
    u64      nonce

Two producer versions coexist on the ledger under the same tag. The current
layout is tried first, then legacy; a record is only accepted if every field
passes validation, which keeps a legacy record from parsing as current by
accident. Trailing bytes are ignored (accounts are allocated at max size).

Designed for: peermint escrow client
"""

import logging
import struct
from typing import Optional

from .config import PROTOCOL
from .errors import DecodeFailure, SchemaMismatch
from .keys import PUBKEY_LENGTH, Pubkey
from .models import HELPER_REQUIRED_STATUSES, Order, RawStatus, SchemaLayout

logger = logging.getLogger("peermint.decoder")

TAG_LENGTH = 8

# tag + creator + helper option + amount + fee + expiry + string prefix + status + nonce
LEGACY_MIN_LENGTH = TAG_LENGTH + 32 + 33 + 8 + 1 + 8 + 4 + 1 + 8
CURRENT_MIN_LENGTH = LEGACY_MIN_LENGTH + 8

_PROBE_ORDER = (SchemaLayout.CURRENT, SchemaLayout.LEGACY)


class _Reader:
    """Sequential little-endian reader that fails with DecodeFailure, never IndexError."""

    def __init__(self, data: bytes, offset: int = 0):
        self._data = data
        self.offset = offset

    def take(self, n: int, what: str) -> bytes:
        end = self.offset + n
        if end > len(self._data):
            raise DecodeFailure(
                f"truncated reading {what} at offset {self.offset} "
                f"(need {n} bytes, {len(self._data) - self.offset} left)"
            )
        chunk = self._data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self, what: str) -> int:
        return self.take(1, what)[0]

    def u32(self, what: str) -> int:
        return struct.unpack("<I", self.take(4, what))[0]

    def u64(self, what: str) -> int:
        return struct.unpack("<Q", self.take(8, what))[0]

    def i64(self, what: str) -> int:
        return struct.unpack("<q", self.take(8, what))[0]

    def pubkey(self, what: str) -> Pubkey:
        return Pubkey(self.take(PUBKEY_LENGTH, what))


def has_order_tag(data: bytes, tag: bytes = PROTOCOL.ORDER_TAG) -> bool:
    return len(data) >= TAG_LENGTH and bytes(data[:TAG_LENGTH]) == tag


def _decode_layout(data: bytes, layout: SchemaLayout) -> Order:
    r = _Reader(data, TAG_LENGTH)

    creator = r.pubkey("creator")
    flag = r.u8("helper flag")
    helper_bytes = r.take(PUBKEY_LENGTH, "helper")
    if flag == 0:
        helper = None
    elif flag == 1:
        helper = Pubkey(helper_bytes)
    else:
        raise DecodeFailure(f"invalid helper presence flag {flag}")

    amount = r.u64("amount")
    display_amount = r.u64("display amount") if layout == SchemaLayout.CURRENT else None
    fee_percent = r.u8("fee percent")
    expiry = r.i64("expiry")

    ref_len = r.u32("payment reference length")
    if ref_len > PROTOCOL.MAX_PAYMENT_REFERENCE_BYTES:
        raise DecodeFailure(f"payment reference length {ref_len} exceeds maximum")
    try:
        payment_reference = r.take(ref_len, "payment reference").decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeFailure(f"payment reference is not UTF-8: {e}")

    status_code = r.u8("status")
    nonce = r.u64("nonce")

    if amount == 0:
        raise DecodeFailure("amount must be positive")
    if fee_percent > PROTOCOL.MAX_FEE_PERCENT:
        raise DecodeFailure(f"fee percent {fee_percent} out of range")
    try:
        status = RawStatus(status_code)
    except ValueError:
        raise DecodeFailure(f"unknown status code {status_code}")
    # A dispute can be raised from any state, so Disputed/Resolved may lack a helper
    if helper is not None and status == RawStatus.CREATED:
        raise DecodeFailure("helper set on a CREATED order")
    if helper is None and status in HELPER_REQUIRED_STATUSES:
        raise DecodeFailure(f"helper missing on a {status.name} order")

    return Order(
        creator=creator,
        helper=helper,
        amount=amount,
        display_amount=display_amount,
        fee_percent=fee_percent,
        expiry_raw=expiry if expiry > 0 else None,
        payment_reference=payment_reference,
        status=status,
        nonce=nonce,
        layout=layout,
    )


def decode_order(data: bytes, tag: bytes = PROTOCOL.ORDER_TAG, address: Optional[str] = None) -> Order:
    """
    Decode one account.

    Raises:
        SchemaMismatch: the leading tag is not the Order tag
        DecodeFailure: tagged, but no known layout accepts the bytes
    """
    data = bytes(data)
    if not has_order_tag(data, tag):
        raise SchemaMismatch(f"not an order account: {address or '<unknown>'}")

    if len(data) < LEGACY_MIN_LENGTH:
        raise DecodeFailure(
            f"buffer is {len(data)} bytes, minimum is {LEGACY_MIN_LENGTH}", address
        )

    first_error: Optional[DecodeFailure] = None
    for layout in _PROBE_ORDER:
        try:
            order = _decode_layout(data, layout)
        except DecodeFailure as e:
            if first_error is None:
                first_error = e
            continue
        if layout == SchemaLayout.LEGACY:
            logger.debug(f"Decoded legacy-layout order {address or ''} (no display amount)")
        return order

    raise DecodeFailure(first_error.reason, address)


def try_decode_order(data: bytes, tag: bytes = PROTOCOL.ORDER_TAG, address: Optional[str] = None) -> Optional[Order]:
    """Batch-friendly decode: None for anything that is not a valid Order."""
    try:
        return decode_order(data, tag, address)
    except SchemaMismatch:
        logger.debug(f"Skipping non-order account {address or ''}")
        return None
    except DecodeFailure as e:
        logger.warning(f"Dropping order account: {e}")
        return None


# ============================================================
# ENCODING used by fixtures and the diagnostic script
# ============================================================

def encode_order(order: Order, tag: bytes = PROTOCOL.ORDER_TAG) -> bytes:
    """Serialize an Order in its own layout. Inverse of decode_order."""
    ref = order.payment_reference.encode("utf-8")
    parts = [
        tag,
        order.creator.raw,
        bytes([1]) + order.helper.raw if order.helper else bytes(1 + PUBKEY_LENGTH),
        struct.pack("<Q", order.amount),
    ]
    if order.layout == SchemaLayout.CURRENT:
        parts.append(struct.pack("<Q", order.display_amount or 0))
    parts += [
        struct.pack("<B", order.fee_percent),
        struct.pack("<q", order.expiry_raw or 0),
        struct.pack("<I", len(ref)),
        ref,
        struct.pack("<B", int(order.status)),
        struct.pack("<Q", order.nonce),
    ]
    return b"".join(parts)
