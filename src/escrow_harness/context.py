"""Connection context shared by every harness component."""

from __future__ import annotations

from dataclasses import dataclass, field

from solders.pubkey import Pubkey

from .address import derive_escrow_address
from .encoding import decode_escrow_account
from .errors import ErrorCode, HarnessError
from .rpc import RpcClient
from .types import EscrowAccountView, Party


@dataclass
class ConnectionContext:
    client: RpcClient
    program_id: Pubkey
    buyer: Party = field(default_factory=Party.new_buyer)
    seller: Party = field(default_factory=Party.new_seller)

    def escrow_address(
        self, subscription_id: str, buyer: Party | None = None, seller: Party | None = None
    ) -> Pubkey:
        buyer = buyer or self.buyer
        seller = seller or self.seller
        address, _ = derive_escrow_address(
            self.program_id, buyer.address, seller.address, subscription_id
        )
        return address

    async def fetch_escrow(self, address: Pubkey) -> EscrowAccountView:
        data = await self.client.get_account_data(address)
        if data is None:
            raise HarnessError(ErrorCode.ACCOUNT_NOT_FOUND, f"escrow account {address} does not exist")
        return decode_escrow_account(data)

    async def escrow_exists(self, address: Pubkey) -> bool:
        return await self.client.get_account_data(address) is not None
