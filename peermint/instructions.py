"""
Lifecycle instruction builders.

Each instruction is: 8-byte discriminator sha256("global:<name>")[:8] followed
by borsh-encoded arguments, plus the ordered account list the program expects.
Signing and transaction assembly belong to the external Signer.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .config import PROTOCOL
from .keys import Pubkey, PubkeyLike, as_pubkey, associated_token_address


class LifecycleAction(str, Enum):
    JOIN = "join"
    MARK_PAID = "mark_paid"
    RELEASE = "acknowledge_and_release"


_INSTRUCTION_NAMES = {
    LifecycleAction.JOIN: "join_request",
    LifecycleAction.MARK_PAID: "mark_paid",
    LifecycleAction.RELEASE: "acknowledge_and_release",
}


@dataclass(frozen=True)
class AccountMeta:
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class Instruction:
    program_id: Pubkey
    action: LifecycleAction
    target: Pubkey                    # the Order account being transitioned
    accounts: tuple[AccountMeta, ...] = field(default_factory=tuple)
    data: bytes = b""


def instruction_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def receipt_hash(note: Optional[str]) -> Optional[bytes]:
    """Commit a free-form payment note as a 32-byte hash (the note itself stays off-ledger)."""
    if note is None:
        return None
    return hashlib.sha256(note.encode("utf-8")).digest()


def build_join(order: PubkeyLike, caller: PubkeyLike, program_id: PubkeyLike = PROTOCOL.PROGRAM_ID) -> Instruction:
    order_pk = as_pubkey(order)
    return Instruction(
        program_id=as_pubkey(program_id),
        action=LifecycleAction.JOIN,
        target=order_pk,
        accounts=(
            AccountMeta(as_pubkey(caller), is_signer=True, is_writable=True),
            AccountMeta(order_pk, is_writable=True),
        ),
        data=instruction_discriminator(_INSTRUCTION_NAMES[LifecycleAction.JOIN]),
    )


def build_mark_paid(
    order: PubkeyLike,
    caller: PubkeyLike,
    note: Optional[str] = None,
    program_id: PubkeyLike = PROTOCOL.PROGRAM_ID,
) -> Instruction:
    order_pk = as_pubkey(order)
    digest = receipt_hash(note)
    # borsh Option<[u8; 32]>
    arg = b"\x00" if digest is None else b"\x01" + digest
    return Instruction(
        program_id=as_pubkey(program_id),
        action=LifecycleAction.MARK_PAID,
        target=order_pk,
        accounts=(
            AccountMeta(as_pubkey(caller), is_signer=True, is_writable=True),
            AccountMeta(order_pk, is_writable=True),
        ),
        data=instruction_discriminator(_INSTRUCTION_NAMES[LifecycleAction.MARK_PAID]) + arg,
    )


def build_release(
    order: PubkeyLike,
    caller: PubkeyLike,
    helper: PubkeyLike,
    mint: PubkeyLike = PROTOCOL.USDC_MINT,
    program_id: PubkeyLike = PROTOCOL.PROGRAM_ID,
) -> Instruction:
    """Creator releases escrow: funds move from the order's token account to the helper's."""
    order_pk = as_pubkey(order)
    escrow_ata = associated_token_address(order_pk, mint)
    helper_ata = associated_token_address(helper, mint)
    return Instruction(
        program_id=as_pubkey(program_id),
        action=LifecycleAction.RELEASE,
        target=order_pk,
        accounts=(
            AccountMeta(as_pubkey(caller), is_signer=True, is_writable=True),
            AccountMeta(order_pk, is_writable=True),
            AccountMeta(escrow_ata, is_writable=True),
            AccountMeta(helper_ata, is_writable=True),
            AccountMeta(as_pubkey(PROTOCOL.TOKEN_PROGRAM_ID)),
        ),
        data=instruction_discriminator(_INSTRUCTION_NAMES[LifecycleAction.RELEASE]),
    )
