"""Faucet funding retries and confirmation polling."""

from __future__ import annotations

import asyncio

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from escrow_harness.config import LAMPORTS_PER_SOL, RetryPolicy
from escrow_harness.errors import ErrorCode, HarnessError
from escrow_harness.funding import FundingController
from escrow_harness.types import Party


class LaggyFaucet:
    """Confirms immediately but only shows the credit after a few balance reads."""

    def __init__(self, lag: int):
        self.lag = lag
        self.reads = 0
        self.credited = 0

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        self.credited = lamports
        return "sig"

    async def confirm(self, signature: str) -> bool:
        return True

    async def get_balance(self, address: Pubkey) -> int:
        self.reads += 1
        return self.credited if self.reads > self.lag else 0


def test_fund_first_attempt(ledger, fast_policy) -> None:
    address = Keypair().pubkey()
    balance = asyncio.run(FundingController(ledger, fast_policy).fund(address, LAMPORTS_PER_SOL))
    assert balance == LAMPORTS_PER_SOL
    assert ledger.calls.count("requestAirdrop") == 1


def test_fund_retries_after_request_failure(ledger, fast_policy) -> None:
    ledger.airdrop_failures = 2
    address = Keypair().pubkey()
    asyncio.run(FundingController(ledger, fast_policy).fund(address, LAMPORTS_PER_SOL))
    assert ledger.calls.count("requestAirdrop") == 3
    assert ledger.balances[address] == LAMPORTS_PER_SOL


def test_fund_exhausted_when_requests_keep_failing(ledger, fast_policy) -> None:
    ledger.airdrop_failures = 10
    with pytest.raises(HarnessError) as exc:
        asyncio.run(FundingController(ledger, fast_policy).fund(Keypair().pubkey(), 1))
    assert exc.value.code == ErrorCode.FUNDING_EXHAUSTED
    assert ledger.calls.count("requestAirdrop") == fast_policy.max_attempts


def test_fund_abandons_attempt_after_poll_budget(ledger, fast_policy) -> None:
    # Never confirms within the poll budget, so every attempt is abandoned.
    ledger.confirm_after = fast_policy.poll_attempts + 1
    with pytest.raises(HarnessError) as exc:
        asyncio.run(FundingController(ledger, fast_policy).fund(Keypair().pubkey(), 1))
    assert exc.value.code == ErrorCode.FUNDING_EXHAUSTED
    assert ledger.calls.count("requestAirdrop") == 3
    assert ledger.calls.count("getSignatureStatuses") == 3 * fast_policy.poll_attempts


def test_fund_rechecks_balance_after_confirmation(fast_policy) -> None:
    faucet = LaggyFaucet(lag=2)
    balance = asyncio.run(FundingController(faucet, fast_policy).fund(Keypair().pubkey(), 100))
    assert balance == 100
    assert faucet.reads == 3


def test_fund_balance_never_visible(fast_policy) -> None:
    faucet = LaggyFaucet(lag=1000)
    with pytest.raises(HarnessError) as exc:
        asyncio.run(FundingController(faucet, fast_policy).fund(Keypair().pubkey(), 100))
    assert exc.value.code == ErrorCode.FUNDING_EXHAUSTED


def test_non_transport_errors_are_not_retried(fast_policy) -> None:
    class Broken(LaggyFaucet):
        async def request_airdrop(self, address, lamports):
            raise HarnessError(ErrorCode.DECODING, "boom")

    with pytest.raises(HarnessError) as exc:
        asyncio.run(FundingController(Broken(0), fast_policy).fund(Keypair().pubkey(), 1))
    assert exc.value.code == ErrorCode.DECODING


def test_fund_parties_checks_minimum(ledger, fast_policy) -> None:
    buyer, seller = Party.new_buyer(), Party.new_seller()
    controller = FundingController(ledger, fast_policy)

    balances = asyncio.run(controller.fund_parties(
        [(buyer, 10 * LAMPORTS_PER_SOL), (seller, LAMPORTS_PER_SOL)], minimum=LAMPORTS_PER_SOL,
    ))
    assert balances == {buyer.address: 10 * LAMPORTS_PER_SOL, seller.address: LAMPORTS_PER_SOL}

    poor = Party.new_seller()
    with pytest.raises(HarnessError) as exc:
        asyncio.run(controller.fund_parties([(poor, 10)], minimum=LAMPORTS_PER_SOL))
    assert exc.value.code == ErrorCode.FUNDING_EXHAUSTED


def test_backoff_between_attempts(ledger, monkeypatch) -> None:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr("escrow_harness.funding.asyncio.sleep", fake_sleep)
    ledger.airdrop_failures = 2
    policy = RetryPolicy(max_attempts=3, poll_attempts=32, poll_interval=0.5, backoff=1.0)
    asyncio.run(FundingController(ledger, policy).fund(Keypair().pubkey(), 1))
    # two failed requests, then one unconfirmed poll before success
    assert sleeps == [1.0, 1.0, 0.5]


class RejectingFaucet(LaggyFaucet):
    """The first `rejections` airdrops land on the ledger with an error status."""

    def __init__(self, rejections: int):
        super().__init__(lag=0)
        self.rejections = rejections
        self.requests = 0

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        self.requests += 1
        self.credited = lamports
        return f"sig{self.requests}"

    async def confirm(self, signature: str) -> bool:
        if int(signature[3:]) <= self.rejections:
            raise HarnessError(ErrorCode.TRANSACTION_REJECTED, f"transaction {signature} failed")
        return True


def test_rejected_airdrop_is_retried(fast_policy) -> None:
    faucet = RejectingFaucet(rejections=1)
    balance = asyncio.run(FundingController(faucet, fast_policy).fund(Keypair().pubkey(), 100))
    assert balance == 100
    assert faucet.requests == 2


def test_rejected_airdrops_exhaust_attempts(fast_policy) -> None:
    faucet = RejectingFaucet(rejections=fast_policy.max_attempts)
    with pytest.raises(HarnessError) as exc:
        asyncio.run(FundingController(faucet, fast_policy).fund(Keypair().pubkey(), 100))
    assert exc.value.code == ErrorCode.FUNDING_EXHAUSTED
    assert faucet.requests == fast_policy.max_attempts
