"""Three-party balance snapshots."""

from __future__ import annotations

import logging

from solders.pubkey import Pubkey

from .rpc import RpcClient
from .types import BalanceSnapshot, Party, to_sol

logger = logging.getLogger(__name__)


class BalanceSampler:
    """Reads seller, escrow and buyer balances for one buyer/seller pair.

    The three reads are not atomic; downstream tolerance bands absorb skew.
    """

    def __init__(self, client: RpcClient, seller: Party, buyer: Party):
        self.client = client
        self.seller = seller
        self.buyer = buyer

    def for_parties(self, seller: Party, buyer: Party) -> "BalanceSampler":
        return BalanceSampler(self.client, seller, buyer)

    async def sample(self, escrow: Pubkey, label: str, verbose: bool = False) -> BalanceSnapshot:
        snapshot = BalanceSnapshot(
            label=label,
            seller=await self.client.get_balance(self.seller.address),
            escrow=await self.client.get_balance(escrow),
            buyer=await self.client.get_balance(self.buyer.address),
        )
        if verbose:
            log_snapshot(snapshot)
        return snapshot


def log_snapshot(snapshot: BalanceSnapshot) -> None:
    logger.info(
        "\n".join([
            f"=== Balances at {snapshot.label} ===",
            f"Seller: {to_sol(snapshot.seller)} SOL",
            f"Escrow: {to_sol(snapshot.escrow)} SOL",
            f"Buyer: {to_sol(snapshot.buyer)} SOL",
            "========================",
        ])
    )
