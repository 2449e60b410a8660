"""Identities, program-derived addresses and token accounts."""

import pytest

from peermint.config import PROTOCOL
from peermint.keys import (
    Pubkey,
    as_pubkey,
    associated_token_address,
    create_program_address,
    find_program_address,
    is_on_curve,
    order_address,
)

from fakes import CREATOR, HELPER

# ed25519 base point, compressed
BASE_POINT = bytes.fromhex("58" + "66" * 31)


class TestPubkey:

    def test_base58_round_trip(self):
        pk = Pubkey.from_base58(PROTOCOL.PROGRAM_ID)
        assert str(pk) == PROTOCOL.PROGRAM_ID
        assert len(bytes(pk)) == 32

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            Pubkey(b"\x00" * 31)

    def test_invalid_base58_rejected(self):
        with pytest.raises(ValueError):
            Pubkey.from_base58("0OIl-not-base58")

    def test_as_pubkey_accepts_all_forms(self):
        pk = as_pubkey(PROTOCOL.USDC_MINT)
        assert as_pubkey(pk) is pk
        assert as_pubkey(pk.raw) == pk
        assert as_pubkey(str(pk)) == pk


class TestDerivation:

    def test_base_point_is_on_curve(self):
        assert is_on_curve(BASE_POINT)

    def test_find_program_address_matches_create(self):
        seeds = [b"order", CREATOR.raw]
        address, bump = find_program_address(seeds, PROTOCOL.PROGRAM_ID)
        assert 0 <= bump <= 255
        assert create_program_address([*seeds, bytes([bump])], PROTOCOL.PROGRAM_ID) == address
        assert not is_on_curve(address.raw)

    def test_create_program_address_rejects_long_seed(self):
        with pytest.raises(ValueError):
            create_program_address([b"x" * 33], PROTOCOL.PROGRAM_ID)

    def test_order_address_is_deterministic_per_nonce(self):
        a1 = order_address(CREATOR, 1)
        assert order_address(CREATOR, 1) == a1
        assert order_address(CREATOR, 2) != a1
        assert order_address(HELPER, 1) != a1

    def test_order_address_depends_on_program(self):
        other_program = PROTOCOL.USDC_MINT
        assert order_address(CREATOR, 1, other_program) != order_address(CREATOR, 1)

    def test_associated_token_address_per_owner(self):
        creator_ata = associated_token_address(CREATOR)
        assert associated_token_address(CREATOR) == creator_ata
        assert associated_token_address(HELPER) != creator_ata
        assert not is_on_curve(creator_ata.raw)

    def test_associated_token_address_for_pda_owner(self):
        escrow = associated_token_address(order_address(CREATOR, 7))
        assert isinstance(escrow, Pubkey)
