"""Faucet funding with bounded retries and confirmation polling."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from solders.pubkey import Pubkey

from .config import RetryPolicy
from .errors import ErrorCode, HarnessError
from .rpc import RpcClient
from .types import Party, to_sol

logger = logging.getLogger(__name__)

# Failures of the airdrop request itself are retried; everything else is fatal.
_RETRYABLE = frozenset({ErrorCode.CONNECTIVITY, ErrorCode.RPC_ERROR})


class FundingController:
    """Tops up balances through the ledger's airdrop faucet."""

    def __init__(self, client: RpcClient, policy: RetryPolicy):
        self.client = client
        self.policy = policy

    async def fund(self, address: Pubkey, amount: int) -> int:
        """Airdrop `amount` lamports to `address`; return the observed balance."""
        for attempt in range(1, self.policy.max_attempts + 1):
            logger.info(f"Airdrop attempt {attempt} for {address}")

            try:
                signature = await self.client.request_airdrop(address, amount)
            except HarnessError as e:
                if e.code not in _RETRYABLE:
                    raise
                logger.warning(f"Airdrop request failed: {e}")
            else:
                balance = await self._await_funded(signature, address, amount)
                if balance is not None:
                    logger.info(f"Airdrop confirmed. Balance: {to_sol(balance)} SOL")
                    return balance
                logger.warning(f"Airdrop {signature} abandoned")

            if attempt < self.policy.max_attempts:
                await asyncio.sleep(self.policy.backoff)

        raise HarnessError(
            ErrorCode.FUNDING_EXHAUSTED,
            f"failed to fund {address} with {amount} lamports after {self.policy.max_attempts} attempts",
        )

    async def _await_funded(self, signature: str, address: Pubkey, amount: int) -> int | None:
        for _ in range(self.policy.poll_attempts):
            try:
                confirmed = await self.client.confirm(signature)
            except HarnessError as e:
                if e.code != ErrorCode.TRANSACTION_REJECTED:
                    raise
                logger.warning(f"Airdrop {signature} failed on the ledger: {e.message}")
                return None
            if confirmed:
                # Confirmation and balance visibility are not synchronous.
                balance = await self.client.get_balance(address)
                if balance >= amount:
                    return balance
            await asyncio.sleep(self.policy.poll_interval)
        return None

    async def fund_parties(
        self, targets: Iterable[tuple[Party, int]], minimum: int
    ) -> dict[Pubkey, int]:
        """Fund each party in order, then verify every balance meets `minimum`."""
        targets = list(targets)
        for party, amount in targets:
            logger.info(f"Funding {party.role.value} account...")
            await self.fund(party.address, amount)

        balances: dict[Pubkey, int] = {}
        for party, _ in targets:
            balance = await self.client.get_balance(party.address)
            logger.info(f"{party.role.value.capitalize()}: {to_sol(balance)} SOL")
            if balance < minimum:
                raise HarnessError(
                    ErrorCode.FUNDING_EXHAUSTED,
                    f"{party.role.value} {party.address} holds {balance} lamports, need at least {minimum}",
                )
            balances[party.address] = balance
        return balances
