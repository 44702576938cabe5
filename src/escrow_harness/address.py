"""Escrow account address derivation."""

from __future__ import annotations

from solders.pubkey import Pubkey

from .config import ESCROW_SEED, MAX_SEED_LEN
from .errors import ErrorCode, HarnessError


def escrow_seeds(buyer: Pubkey, seller: Pubkey, subscription_id: str) -> list[bytes]:
    sub = subscription_id.encode("utf-8")
    if len(sub) > MAX_SEED_LEN:
        raise HarnessError(
            ErrorCode.ENCODING,
            f"subscription_id is {len(sub)} bytes, seeds are limited to {MAX_SEED_LEN}",
        )
    return [ESCROW_SEED, bytes(buyer), bytes(seller), sub]


def derive_escrow_address(
    program_id: Pubkey, buyer: Pubkey, seller: Pubkey, subscription_id: str
) -> tuple[Pubkey, int]:
    """Return the program-derived escrow address and its bump seed."""
    return Pubkey.find_program_address(escrow_seeds(buyer, seller, subscription_id), program_id)
