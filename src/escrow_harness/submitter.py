"""Signed transaction submission with confirmation polling."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .config import RetryPolicy
from .encoding import EscrowCommand, encode_call
from .errors import ErrorCode, HarnessError
from .rpc import RpcClient
from .types import InstructionCall, Party

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """Wraps calls into one signed transaction and waits for confirmation.

    Exactly one blockhash is fetched per submission. Rejections and timeouts
    are fatal; nothing is rebuilt or resent here.
    """

    def __init__(self, client: RpcClient, program_id: Pubkey, policy: RetryPolicy):
        self.client = client
        self.program_id = program_id
        self.policy = policy

    def build(
        self,
        calls: Sequence[InstructionCall],
        payer: Keypair,
        signers: Sequence[Keypair],
        blockhash: Hash,
    ) -> Transaction:
        if not calls:
            raise HarnessError(ErrorCode.ENCODING, "transaction needs at least one call")

        signer_keys = {kp.pubkey() for kp in signers}
        if payer.pubkey() not in signer_keys:
            signers = [payer, *signers]
            signer_keys.add(payer.pubkey())
        for call in calls:
            missing = [str(k) for k in call.signers if k not in signer_keys]
            if missing:
                raise HarnessError(
                    ErrorCode.ENCODING,
                    f"{call.method} requires signatures from {', '.join(missing)}",
                )

        instructions = [call.to_instruction(self.program_id) for call in calls]
        message = Message.new_with_blockhash(instructions, payer.pubkey(), blockhash)
        return Transaction(list(signers), message, blockhash)

    async def submit(
        self,
        calls: Sequence[InstructionCall],
        payer: Keypair,
        signers: Sequence[Keypair] = (),
    ) -> str:
        blockhash = await self.client.get_latest_blockhash()
        tx = self.build(calls, payer, signers, blockhash)
        signature = await self.client.send_transaction(tx)
        logger.debug(f"Submitted {', '.join(c.method for c in calls)}: {signature}")
        await self._await_confirmation(signature)
        return signature

    async def _await_confirmation(self, signature: str) -> None:
        for _ in range(self.policy.poll_attempts):
            if await self.client.confirm(signature):
                return
            await asyncio.sleep(self.policy.poll_interval)
        raise HarnessError(
            ErrorCode.CONFIRMATION_TIMEOUT,
            f"transaction {signature} not confirmed after {self.policy.poll_attempts} polls",
        )

    async def submit_commands(
        self,
        commands: Sequence[EscrowCommand],
        escrow: Pubkey,
        buyer: Party,
        seller: Party,
        payer: Party,
    ) -> str:
        """Encode commands for one escrow account and submit them, paid by `payer`."""
        calls = [encode_call(cmd, escrow, buyer.address, seller.address) for cmd in commands]
        return await self.submit(calls, payer.keypair, [payer.keypair])
