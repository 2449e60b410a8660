"""
Identities and deterministic addresses.

An identity is 32 raw bytes, shown to humans as base58. Program-derived
addresses (PDAs) are SHA-256 digests of (seeds, bump, program id) that are
guaranteed NOT to be valid ed25519 public keys, so no private key exists for
them. Order accounts and escrow token accounts are both PDAs, which is the only
way to locate them: there is no index.
"""

import hashlib
from dataclasses import dataclass
from typing import Sequence, Union

import base58

from .config import PROTOCOL

PUBKEY_LENGTH = 32
_PDA_MARKER = b"ProgramDerivedAddress"
_MAX_SEED_LENGTH = 32

# ed25519 field and curve parameters
_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


@dataclass(frozen=True)
class Pubkey:
    """A 32-byte ledger identity."""
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)) or len(self.raw) != PUBKEY_LENGTH:
            raise ValueError(f"identity must be {PUBKEY_LENGTH} bytes")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_base58(cls, text: str) -> "Pubkey":
        try:
            raw = base58.b58decode(text.strip())
        except ValueError as e:
            raise ValueError(f"invalid base58 identity {text!r}: {e}")
        return cls(raw)

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return base58.b58encode(self.raw).decode("ascii")

    def __repr__(self) -> str:
        return f"Pubkey({self})"


PubkeyLike = Union[Pubkey, str, bytes]


def as_pubkey(value: PubkeyLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, str):
        return Pubkey.from_base58(value)
    return Pubkey(value)


def is_on_curve(candidate: bytes) -> bool:
    """True if the 32 bytes decompress to a point on the ed25519 curve."""
    y = (int.from_bytes(candidate, "little") & ((1 << 255) - 1)) % _P
    u = (y * y - 1) % _P
    v = (_D * y * y + 1) % _P
    if v == 0:
        return u == 0
    x2 = u * pow(v, _P - 2, _P) % _P
    # x^2 must be a quadratic residue (or zero) for x to exist
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def create_program_address(seeds: Sequence[bytes], program_id: PubkeyLike) -> Pubkey:
    program = as_pubkey(program_id)
    h = hashlib.sha256()
    for seed in seeds:
        if len(seed) > _MAX_SEED_LENGTH:
            raise ValueError(f"seed longer than {_MAX_SEED_LENGTH} bytes")
        h.update(seed)
    h.update(program.raw)
    h.update(_PDA_MARKER)
    digest = h.digest()
    if is_on_curve(digest):
        raise ValueError("derived address lies on the curve")
    return Pubkey(digest)


def find_program_address(seeds: Sequence[bytes], program_id: PubkeyLike) -> tuple[Pubkey, int]:
    """Search bumps from 255 down; return the first off-curve address and its bump."""
    for bump in range(255, -1, -1):
        try:
            return create_program_address([*seeds, bytes([bump])], program_id), bump
        except ValueError:
            continue
    raise ValueError("no viable bump seed for program address")


def order_address(creator: PubkeyLike, nonce: int, program_id: PubkeyLike = PROTOCOL.PROGRAM_ID) -> Pubkey:
    """Location of the Order created by `creator` with `nonce`."""
    seeds = [PROTOCOL.ORDER_SEED, as_pubkey(creator).raw, nonce.to_bytes(8, "little")]
    address, _ = find_program_address(seeds, program_id)
    return address


def associated_token_address(owner: PubkeyLike, mint: PubkeyLike = PROTOCOL.USDC_MINT) -> Pubkey:
    """Canonical token account for (owner, mint). Owner may itself be a PDA."""
    seeds = [
        as_pubkey(owner).raw,
        as_pubkey(PROTOCOL.TOKEN_PROGRAM_ID).raw,
        as_pubkey(mint).raw,
    ]
    address, _ = find_program_address(seeds, PROTOCOL.ASSOCIATED_TOKEN_PROGRAM_ID)
    return address
