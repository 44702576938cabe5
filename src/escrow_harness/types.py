"""Core types shared across the escrow harness."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .config import LAMPORTS_PER_SOL


class Role(Enum):
    BUYER = "buyer"
    SELLER = "seller"


@dataclass
class Party:
    role: Role
    keypair: Keypair = field(default_factory=Keypair)

    @property
    def address(self) -> Pubkey:
        return self.keypair.pubkey()

    @classmethod
    def new_buyer(cls) -> "Party":
        return cls(Role.BUYER)

    @classmethod
    def new_seller(cls) -> "Party":
        return cls(Role.SELLER)


@dataclass
class EscrowAccountView:
    """Decoded mirror of the remote escrow account."""
    seller: Pubkey = field(default_factory=Pubkey.default)
    buyer: Pubkey = field(default_factory=Pubkey.default)
    subscription_id: str = ""
    payment_count: int = 0
    total_amount: int = 0
    is_active: bool = False
    validation_threshold: int = 0


@dataclass(frozen=True)
class BalanceSnapshot:
    label: str
    seller: int
    escrow: int
    buyer: int


@dataclass(frozen=True)
class AccountRef:
    address: Pubkey
    is_signer: bool
    is_writable: bool

    def to_meta(self) -> AccountMeta:
        return AccountMeta(self.address, self.is_signer, self.is_writable)


@dataclass
class InstructionCall:
    """One encoded remote procedure invocation."""
    method: str
    data: bytes
    accounts: List[AccountRef]

    def to_instruction(self, program_id: Pubkey) -> Instruction:
        return Instruction(program_id, self.data, [a.to_meta() for a in self.accounts])

    @property
    def signers(self) -> List[Pubkey]:
        return [a.address for a in self.accounts if a.is_signer]


def to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL
