"""Ordered escrow lifecycle scenarios.

All scenarios but the last share one escrow account derived from the
configured buyer, seller and subscription id; each assumes the exact
post-state of the one before it. The last scenario runs a second, independent
lifecycle with fresh identities.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Tuple

from solders.pubkey import Pubkey

from .balances import BalanceSampler
from .comparator import ComparisonResult, StateComparator
from .config import HarnessConfig
from .context import ConnectionContext
from .encoding import (
    CancelSubscription,
    MakePayment,
    StartSubscription,
    WithdrawFunds,
    default_account_size,
)
from .errors import ErrorCode, err
from .funding import FundingController
from .reporter import ScenarioResult
from .submitter import TransactionSubmitter
from .types import Party, to_sol

logger = logging.getLogger(__name__)

Step = Callable[[ComparisonResult], Awaitable[None]]


class ScenarioRunner:
    def __init__(
        self,
        ctx: ConnectionContext,
        config: HarnessConfig,
        funding: FundingController,
        sampler: BalanceSampler,
        submitter: TransactionSubmitter,
    ):
        self.ctx = ctx
        self.config = config
        self.funding = funding
        self.sampler = sampler
        self.submitter = submitter

    @property
    def sequence(self) -> List[Tuple[str, Step]]:
        return [
            ("setup", self.setup),
            ("start_subscription", self.start_subscription),
            ("escrowed_payments", self.escrowed_payments),
            ("direct_payments", self.direct_payments),
            ("cancel_subscription", self.cancel_subscription),
            ("refund_withdrawal", self.refund_withdrawal),
            ("release_withdrawal", self.release_withdrawal),
        ]

    @property
    def scenario_names(self) -> List[str]:
        return [name for name, _ in self.sequence]

    async def run_all(self) -> List[ScenarioResult]:
        """Run scenarios in order, stopping at the first failure."""
        results = []
        for name, step in self.sequence:
            result = await self.run_scenario(name, step)
            results.append(result)

            status = "PASS" if result.passed else "FAIL"
            logger.info(f"  [{status}] {name}")
            if not result.passed:
                break
        return results

    async def run_scenario(self, name: str, step: Step) -> ScenarioResult:
        start_time = time.time()
        comparison = ComparisonResult(scenario=name)
        try:
            await step(comparison)
        except Exception as e:
            logger.exception(f"Error running scenario {name}")
            return ScenarioResult(
                scenario_name=name,
                passed=False,
                execution_time_ms=(time.time() - start_time) * 1000,
                comparison=comparison,
                error=str(e),
            )

        error = None
        for div in comparison.divergences:
            logger.error(f"{name}: {div.field} expected {div.expected}, actual {div.actual}")
        if comparison.has_divergences:
            error = str(err(
                ErrorCode.INVARIANT_VIOLATION,
                f"{len(comparison.divergences)} of {comparison.checks} checks diverged",
            ))
        return ScenarioResult(
            scenario_name=name,
            passed=comparison.success,
            execution_time_ms=(time.time() - start_time) * 1000,
            comparison=comparison,
            error=error,
        )

    # --- helpers ---

    @property
    def escrow(self) -> Pubkey:
        return self.ctx.escrow_address(self.config.subscription_id)

    async def _pay(self, escrow: Pubkey, buyer: Party, seller: Party) -> str:
        return await self.submitter.submit_commands(
            [MakePayment(self.config.payment_amount)], escrow, buyer, seller, payer=buyer
        )

    async def _rent_exemption(self) -> int:
        rent = await self.ctx.client.get_minimum_balance_for_rent_exemption(default_account_size())
        logger.info(f"Rent amount: {to_sol(rent)} SOL")
        return rent

    # --- scenarios ---

    async def setup(self, result: ComparisonResult) -> None:
        cfg = self.config
        logger.info("Setting up test accounts...")
        await self.funding.fund_parties(
            [
                (self.ctx.buyer, cfg.buyer_initial_balance),
                (self.ctx.seller, cfg.seller_initial_balance),
            ],
            minimum=cfg.min_funded_balance,
        )
        escrow = self.escrow
        logger.info(f"Subscription PDA: {escrow}")
        await self.sampler.sample(escrow, "INITIAL SETUP", verbose=True)

    async def start_subscription(self, result: ComparisonResult) -> None:
        cfg = self.config
        check = StateComparator(result.scenario)
        escrow = self.escrow

        signature = await self.submitter.submit_commands(
            [StartSubscription(cfg.subscription_id, cfg.validation_threshold)],
            escrow, self.ctx.buyer, self.ctx.seller, payer=self.ctx.buyer,
        )
        logger.info(f"Subscription started. Signature: {signature}")

        view = await self.ctx.fetch_escrow(escrow)
        result.record(*check.account_fields(
            view,
            seller=self.ctx.seller.address,
            buyer=self.ctx.buyer.address,
            subscription_id=cfg.subscription_id,
            payment_count=0,
            total_amount=0,
            is_active=True,
            validation_threshold=cfg.validation_threshold,
        ))

    async def escrowed_payments(self, result: ComparisonResult) -> None:
        cfg = self.config
        check = StateComparator(result.scenario)
        escrow = self.escrow
        count = cfg.escrow_payment_count

        for i in range(1, count + 1):
            logger.info(f"Making payment {i} of {count}...")
            pre = await self.sampler.sample(escrow, f"BEFORE PAYMENT {i}")
            signature = await self._pay(escrow, self.ctx.buyer, self.ctx.seller)
            post = await self.sampler.sample(escrow, f"AFTER PAYMENT {i}", verbose=True)

            if result.record(
                check.delta_within("escrow", pre, post, cfg.payment_amount, cfg.payment_tolerance),
                check.unchanged("seller", pre, post),
            ):
                return
            logger.info(
                f"Payment {i} successful. Signature: {signature} "
                f"(escrow +{to_sol(post.escrow - pre.escrow)} SOL)"
            )
            await asyncio.sleep(cfg.step_delay)

        view = await self.ctx.fetch_escrow(escrow)
        if result.record(*check.account_fields(
            view, payment_count=count, total_amount=cfg.escrowed_total, is_active=True,
        )):
            return
        logger.info(f"All {count} payments verified. Total in escrow: {to_sol(view.total_amount)} SOL")

    async def direct_payments(self, result: ComparisonResult) -> None:
        cfg = self.config
        check = StateComparator(result.scenario)
        escrow = self.escrow
        first = cfg.escrow_payment_count + 1

        for i in range(first, first + cfg.direct_payment_count):
            logger.info(f"Making direct payment {i}...")
            pre = await self.sampler.sample(escrow, f"BEFORE DIRECT PAYMENT {i}")
            signature = await self._pay(escrow, self.ctx.buyer, self.ctx.seller)
            post = await self.sampler.sample(escrow, f"AFTER DIRECT PAYMENT {i}", verbose=True)

            if result.record(
                check.delta_within("seller", pre, post, cfg.payment_amount, cfg.payment_tolerance),
                check.unchanged("escrow", pre, post),
            ):
                return
            logger.info(
                f"Direct payment {i} successful. Signature: {signature} "
                f"(seller +{to_sol(post.seller - pre.seller)} SOL)"
            )
            await asyncio.sleep(cfg.step_delay)

        expected_count = cfg.escrow_payment_count
        if cfg.direct_payments_counted:
            expected_count += cfg.direct_payment_count

        view = await self.ctx.fetch_escrow(escrow)
        result.record(*check.account_fields(
            view, payment_count=expected_count, total_amount=cfg.escrowed_total, is_active=True,
        ))

    async def cancel_subscription(self, result: ComparisonResult) -> None:
        check = StateComparator(result.scenario)
        escrow = self.escrow

        pre = await self.sampler.sample(escrow, "BEFORE CANCELLATION", verbose=True)
        signature = await self.submitter.submit_commands(
            [CancelSubscription()], escrow, self.ctx.buyer, self.ctx.seller, payer=self.ctx.buyer,
        )
        logger.info(f"Cancel transaction confirmed. Signature: {signature}")
        post = await self.sampler.sample(escrow, "AFTER CANCELLATION", verbose=True)

        view = await self.ctx.fetch_escrow(escrow)
        result.record(
            check.equals("is_active", False, view.is_active),
            check.equals("total_amount", self.config.escrowed_total, view.total_amount),
            check.unchanged("escrow", pre, post),
            check.unchanged("seller", pre, post),
        )

    async def refund_withdrawal(self, result: ComparisonResult) -> None:
        """Validation data above the threshold: everything goes back to the buyer."""
        cfg = self.config
        check = StateComparator(result.scenario)
        escrow = self.escrow

        pre = await self.sampler.sample(escrow, "BEFORE FAILED WITHDRAWAL", verbose=True)
        rent = await self._rent_exemption()

        signature = await self.submitter.submit_commands(
            [WithdrawFunds(cfg.refund_validation_data)],
            escrow, self.ctx.buyer, self.ctx.seller, payer=self.ctx.seller,
        )
        logger.info(f"Withdrawal transaction confirmed. Signature: {signature}")
        post = await self.sampler.sample(escrow, "AFTER FAILED WITHDRAWAL", verbose=True)

        result.record(
            check.delta_within("buyer", pre, post, cfg.escrowed_total + rent, cfg.withdrawal_tolerance),
            check.delta_at_most("seller", pre, post, cfg.withdrawal_tolerance),
            check.equals("escrow_balance", 0, post.escrow),
            check.equals("account_exists", False, await self.ctx.escrow_exists(escrow)),
        )

    async def release_withdrawal(self, result: ComparisonResult) -> None:
        """Fresh lifecycle; validation data at or below the threshold pays the seller."""
        cfg = self.config
        check = StateComparator(result.scenario)
        buyer, seller = Party.new_buyer(), Party.new_seller()

        await self.funding.fund_parties(
            [(buyer, cfg.buyer_initial_balance), (seller, cfg.seller_initial_balance)],
            minimum=cfg.min_funded_balance,
        )
        sampler = self.sampler.for_parties(seller, buyer)
        escrow = self.ctx.escrow_address(cfg.second_subscription_id, buyer, seller)

        logger.info("Starting new subscription...")
        await self.submitter.submit_commands(
            [StartSubscription(cfg.second_subscription_id, cfg.validation_threshold)],
            escrow, buyer, seller, payer=buyer,
        )
        for i in range(1, cfg.escrow_payment_count + 1):
            signature = await self._pay(escrow, buyer, seller)
            logger.info(f"Payment {i} completed. Signature: {signature}")
            await asyncio.sleep(cfg.lifecycle_step_delay)

        await self.submitter.submit_commands(
            [CancelSubscription()], escrow, buyer, seller, payer=buyer,
        )
        view = await self.ctx.fetch_escrow(escrow)
        if result.record(*check.account_fields(
            view,
            payment_count=cfg.escrow_payment_count,
            total_amount=cfg.escrowed_total,
            is_active=False,
        )):
            return

        pre = await sampler.sample(escrow, "BEFORE WITHDRAWAL", verbose=True)
        rent = await self._rent_exemption()

        logger.info("Executing withdrawal with valid validation data...")
        signature = await self.submitter.submit_commands(
            [WithdrawFunds(cfg.release_validation_data)], escrow, buyer, seller, payer=seller,
        )
        logger.info(f"Withdrawal transaction confirmed. Signature: {signature}")
        post = await sampler.sample(escrow, "AFTER WITHDRAWAL", verbose=True)

        result.record(
            check.delta_within("seller", pre, post, cfg.escrowed_total, cfg.withdrawal_tolerance),
            check.delta_at_least("buyer", pre, post, max(rent - cfg.withdrawal_tolerance, 0)),
            check.equals("escrow_balance", 0, post.escrow),
            check.equals("account_exists", False, await self.ctx.escrow_exists(escrow)),
        )
