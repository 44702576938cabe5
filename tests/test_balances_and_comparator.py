"""Balance snapshots and tolerance-banded checks."""

from __future__ import annotations

import asyncio
import logging

from solders.keypair import Keypair

from escrow_harness.balances import BalanceSampler
from escrow_harness.comparator import ComparisonResult, StateComparator, abs_delta
from escrow_harness.config import LAMPORTS_PER_SOL
from escrow_harness.types import BalanceSnapshot, EscrowAccountView, Party


def _snap(label: str, seller: int, escrow: int, buyer: int) -> BalanceSnapshot:
    return BalanceSnapshot(label=label, seller=seller, escrow=escrow, buyer=buyer)


def test_sample_reads_seller_escrow_buyer_in_order(ledger, caplog) -> None:
    seller, buyer = Party.new_seller(), Party.new_buyer()
    escrow = Keypair().pubkey()
    ledger.balances.update({seller.address: 1, escrow: 2, buyer.address: 3})

    order: list = []
    original = ledger.get_balance

    async def tracking(address):
        order.append(address)
        return await original(address)

    ledger.get_balance = tracking
    sampler = BalanceSampler(ledger, seller=seller, buyer=buyer)

    with caplog.at_level(logging.INFO, logger="escrow_harness.balances"):
        snap = asyncio.run(sampler.sample(escrow, "CHECK", verbose=True))

    assert snap == _snap("CHECK", 1, 2, 3)
    assert order == [seller.address, escrow, buyer.address]
    assert "=== Balances at CHECK ===" in caplog.text


def test_quiet_sample_logs_nothing(ledger, caplog) -> None:
    sampler = BalanceSampler(ledger, seller=Party.new_seller(), buyer=Party.new_buyer())
    with caplog.at_level(logging.INFO, logger="escrow_harness.balances"):
        asyncio.run(sampler.sample(Keypair().pubkey(), "QUIET"))
    assert "QUIET" not in caplog.text


def test_for_parties_rebinds_identities(ledger) -> None:
    sampler = BalanceSampler(ledger, seller=Party.new_seller(), buyer=Party.new_buyer())
    seller, buyer = Party.new_seller(), Party.new_buyer()
    other = sampler.for_parties(seller, buyer)
    assert other.seller is seller and other.buyer is buyer and other.client is ledger


def test_abs_delta() -> None:
    assert abs_delta(10, 3) == 7
    assert abs_delta(3, 10) == 7
    assert abs_delta(5, 5) == 0


def test_delta_within_band() -> None:
    check = StateComparator("payments")
    pre = _snap("PRE", 0, 100, 0)

    assert check.delta_within("escrow", pre, _snap("POST", 0, 100 + LAMPORTS_PER_SOL, 0), LAMPORTS_PER_SOL, 10_000) is None
    assert check.delta_within("escrow", pre, _snap("POST", 0, 100 + LAMPORTS_PER_SOL - 9_999, 0), LAMPORTS_PER_SOL, 10_000) is None

    div = check.delta_within("escrow", pre, _snap("POST", 0, 100 + LAMPORTS_PER_SOL - 10_001, 0), LAMPORTS_PER_SOL, 10_000)
    assert div is not None
    assert div.field == "escrow_delta"
    assert div.expected == LAMPORTS_PER_SOL
    assert div.actual == LAMPORTS_PER_SOL - 10_001
    assert div.scenario == "payments"


def test_delta_within_uses_absolute_change() -> None:
    check = StateComparator("s")
    assert check.delta_within("seller", _snap("A", 500, 0, 0), _snap("B", 200, 0, 0), 300, 0) is None


def test_unchanged_is_exact() -> None:
    check = StateComparator("s")
    assert check.unchanged("seller", _snap("A", 7, 0, 0), _snap("B", 7, 1, 1)) is None
    div = check.unchanged("seller", _snap("A", 7, 0, 0), _snap("B", 8, 0, 0))
    assert div is not None and div.expected == 7 and div.actual == 8


def test_at_most_and_at_least() -> None:
    check = StateComparator("s")
    pre, post = _snap("A", 100, 0, 0), _snap("B", 95, 0, 0)
    assert check.delta_at_most("seller", pre, post, 5) is None
    assert check.delta_at_most("seller", pre, post, 4) is not None
    assert check.delta_at_least("seller", pre, post, 5) is None
    assert check.delta_at_least("seller", pre, post, 6) is not None


def test_account_fields_and_record() -> None:
    check = StateComparator("start")
    view = EscrowAccountView(subscription_id="x", payment_count=2, is_active=True)
    result = ComparisonResult(scenario="start")

    assert not result.record(*check.account_fields(view, subscription_id="x", is_active=True))
    assert result.checks == 2 and result.success

    assert result.record(*check.account_fields(view, payment_count=3))
    assert result.has_divergences
    assert result.divergences[0].field == "payment_count"
    assert (result.divergences[0].expected, result.divergences[0].actual) == (3, 2)
