"""Wire-format encoding for escrow program calls and account data.

Calls are an 8-byte method selector followed by the Borsh encoding of the
call arguments. Account data is an 8-byte account discriminator followed by
the Borsh encoding of the account fields.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List

from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from .errors import ErrorCode, HarnessError
from .types import AccountRef, EscrowAccountView, InstructionCall

SELECTOR_LEN = 8
PUBKEY_LEN = 32
ESCROW_ACCOUNT_NAME = "EscrowAccount"

U8_MAX = 0xFF
U32_MAX = 0xFFFF_FFFF
U64_MAX = 0xFFFF_FFFF_FFFF_FFFF


def sighash(method: str) -> bytes:
    """Method selector: first 8 bytes of sha256("global:<method>")."""
    return hashlib.sha256(f"global:{method}".encode()).digest()[:SELECTOR_LEN]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:SELECTOR_LEN]


@dataclass
class Writer:
    buf: bytearray

    def _write_uint(self, v: int, size: int, limit: int, name: str) -> None:
        if not isinstance(v, int) or isinstance(v, bool):
            raise HarnessError(ErrorCode.ENCODING, f"{name} must be an int")
        if v < 0 or v > limit:
            raise HarnessError(ErrorCode.ENCODING, f"{name} out of range: {v}")
        self.buf.extend(v.to_bytes(size, "little", signed=False))

    def write_u8(self, v: int, name: str = "u8") -> None:
        self._write_uint(v, 1, U8_MAX, name)

    def write_u32(self, v: int, name: str = "u32") -> None:
        self._write_uint(v, 4, U32_MAX, name)

    def write_u64(self, v: int, name: str = "u64") -> None:
        self._write_uint(v, 8, U64_MAX, name)

    def write_bool(self, v: bool) -> None:
        self.buf.append(1 if v else 0)

    def write_bytes(self, b: bytes) -> None:
        self.buf.extend(b)

    def write_string(self, v: str, name: str = "string") -> None:
        if not isinstance(v, str):
            raise HarnessError(ErrorCode.ENCODING, f"{name} must be a str")
        data = v.encode("utf-8")
        self.write_u32(len(data), f"{name} length")
        self.buf.extend(data)

    def write_pubkey(self, v: Pubkey) -> None:
        self.buf.extend(bytes(v))


class Reader:
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0

    def read_fixed(self, n: int, name: str) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise HarnessError(
                ErrorCode.DECODING,
                f"truncated {name}: need {n} bytes at offset {self.pos}, have {len(self.data) - self.pos}",
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def read_u8(self, name: str = "u8") -> int:
        return self.read_fixed(1, name)[0]

    def read_u32(self, name: str = "u32") -> int:
        return int.from_bytes(self.read_fixed(4, name), "little")

    def read_u64(self, name: str = "u64") -> int:
        return int.from_bytes(self.read_fixed(8, name), "little")

    def read_bool(self, name: str = "bool") -> bool:
        v = self.read_u8(name)
        if v not in (0, 1):
            raise HarnessError(ErrorCode.DECODING, f"invalid bool for {name}: {v}")
        return v == 1

    def read_string(self, name: str = "string") -> str:
        size = self.read_u32(f"{name} length")
        raw = self.read_fixed(size, name)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise HarnessError(ErrorCode.DECODING, f"{name} is not utf-8") from e

    def read_pubkey(self, name: str = "pubkey") -> Pubkey:
        return Pubkey.from_bytes(self.read_fixed(PUBKEY_LEN, name))


# --- Commands ---


class Command(Enum):
    START_SUBSCRIPTION = "start_subscription"
    MAKE_PAYMENT = "make_payment"
    CANCEL_SUBSCRIPTION = "cancel_subscription"
    WITHDRAW_FUNDS = "withdraw_funds"

    @property
    def selector(self) -> bytes:
        return sighash(self.value)


class EscrowCommand:
    """Base for the escrow program's calls; one subclass per method."""

    command: ClassVar[Command]

    def encode_args(self, w: Writer) -> None:
        pass

    def accounts(self, escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
        raise NotImplementedError

    def encode(self) -> bytes:
        w = Writer(bytearray(self.command.selector))
        self.encode_args(w)
        return bytes(w.buf)


@dataclass(frozen=True)
class StartSubscription(EscrowCommand):
    command: ClassVar[Command] = Command.START_SUBSCRIPTION

    subscription_id: str
    validation_threshold: int

    def encode_args(self, w: Writer) -> None:
        w.write_string(self.subscription_id, "subscription_id")
        w.write_u64(self.validation_threshold, "validation_threshold")

    def accounts(self, escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
        return [
            AccountRef(escrow, is_signer=False, is_writable=True),
            AccountRef(buyer, is_signer=True, is_writable=True),
            AccountRef(seller, is_signer=False, is_writable=False),
            AccountRef(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]


def _buyer_signed(escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
    return [
        AccountRef(escrow, is_signer=False, is_writable=True),
        AccountRef(buyer, is_signer=True, is_writable=True),
        AccountRef(seller, is_signer=False, is_writable=True),
        AccountRef(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


@dataclass(frozen=True)
class MakePayment(EscrowCommand):
    command: ClassVar[Command] = Command.MAKE_PAYMENT

    amount: int

    def encode_args(self, w: Writer) -> None:
        w.write_u64(self.amount, "amount")

    def accounts(self, escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
        return _buyer_signed(escrow, buyer, seller)


@dataclass(frozen=True)
class CancelSubscription(EscrowCommand):
    command: ClassVar[Command] = Command.CANCEL_SUBSCRIPTION

    def accounts(self, escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
        return _buyer_signed(escrow, buyer, seller)


@dataclass(frozen=True)
class WithdrawFunds(EscrowCommand):
    command: ClassVar[Command] = Command.WITHDRAW_FUNDS

    validation_data: int

    def encode_args(self, w: Writer) -> None:
        w.write_u64(self.validation_data, "validation_data")

    def accounts(self, escrow: Pubkey, buyer: Pubkey, seller: Pubkey) -> List[AccountRef]:
        # Withdrawal is the only call the seller signs.
        return [
            AccountRef(escrow, is_signer=False, is_writable=True),
            AccountRef(buyer, is_signer=False, is_writable=True),
            AccountRef(seller, is_signer=True, is_writable=True),
            AccountRef(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]


def encode_call(
    cmd: EscrowCommand, escrow: Pubkey, buyer: Pubkey, seller: Pubkey
) -> InstructionCall:
    return InstructionCall(
        method=cmd.command.value,
        data=cmd.encode(),
        accounts=cmd.accounts(escrow, buyer, seller),
    )


# --- Escrow account ---


def encode_escrow_account(view: EscrowAccountView, with_discriminator: bool = True) -> bytes:
    w = Writer(bytearray())
    if with_discriminator:
        w.write_bytes(account_discriminator(ESCROW_ACCOUNT_NAME))
    w.write_pubkey(view.seller)
    w.write_pubkey(view.buyer)
    w.write_string(view.subscription_id, "subscription_id")
    w.write_u8(view.payment_count, "payment_count")
    w.write_u64(view.total_amount, "total_amount")
    w.write_bool(view.is_active)
    w.write_u64(view.validation_threshold, "validation_threshold")
    return bytes(w.buf)


def decode_escrow_account(data: bytes) -> EscrowAccountView:
    r = Reader(data)
    disc = r.read_fixed(SELECTOR_LEN, "discriminator")
    if disc != account_discriminator(ESCROW_ACCOUNT_NAME):
        raise HarnessError(ErrorCode.DECODING, f"account discriminator mismatch: {disc.hex()}")

    # Trailing bytes are allocated but unused account space.
    return EscrowAccountView(
        seller=r.read_pubkey("seller"),
        buyer=r.read_pubkey("buyer"),
        subscription_id=r.read_string("subscription_id"),
        payment_count=r.read_u8("payment_count"),
        total_amount=r.read_u64("total_amount"),
        is_active=r.read_bool("is_active"),
        validation_threshold=r.read_u64("validation_threshold"),
    )


def default_account_size() -> int:
    """Serialized size of a default escrow account, used to size rent queries."""
    return len(encode_escrow_account(EscrowAccountView(), with_discriminator=False))
