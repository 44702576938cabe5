"""
Balance and account-state comparison for the escrow harness.

Every check returns a Divergence on mismatch and None otherwise, so callers
decide where a scenario stops.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .types import BalanceSnapshot, EscrowAccountView, to_sol


@dataclass
class Divergence:
    """An observed value that does not match its expectation."""
    field: str
    expected: Any
    actual: Any
    scenario: str
    details: Optional[str] = None


@dataclass
class ComparisonResult:
    """Checks collected for one scenario."""
    scenario: str
    divergences: List[Divergence] = field(default_factory=list)
    checks: int = 0

    @property
    def has_divergences(self) -> bool:
        return len(self.divergences) > 0

    @property
    def success(self) -> bool:
        return not self.has_divergences

    def record(self, *outcomes: Optional[Divergence]) -> bool:
        """Add check outcomes; return True if the scenario has failed."""
        for outcome in outcomes:
            self.checks += 1
            if outcome is not None:
                self.divergences.append(outcome)
        return self.has_divergences


def abs_delta(pre: int, post: int) -> int:
    return post - pre if post > pre else pre - post


class StateComparator:
    """Checks for one named scenario."""

    def __init__(self, scenario: str):
        self.scenario = scenario

    def delta_within(
        self,
        name: str,
        pre: BalanceSnapshot,
        post: BalanceSnapshot,
        expected: int,
        tolerance: int,
    ) -> Optional[Divergence]:
        """|post - pre| for balance `name` must be within `tolerance` of `expected`."""
        actual = abs_delta(getattr(pre, name), getattr(post, name))
        low = max(expected - tolerance, 0)
        if low <= actual <= expected + tolerance:
            return None
        return Divergence(
            field=f"{name}_delta",
            expected=expected,
            actual=actual,
            scenario=self.scenario,
            details=(
                f"{pre.label} -> {post.label}: expected change {to_sol(expected)} SOL "
                f"(+/- {to_sol(tolerance)}), got {to_sol(actual)} SOL"
            ),
        )

    def unchanged(
        self, name: str, pre: BalanceSnapshot, post: BalanceSnapshot
    ) -> Optional[Divergence]:
        before, after = getattr(pre, name), getattr(post, name)
        if before == after:
            return None
        return Divergence(
            field=f"{name}_balance",
            expected=before,
            actual=after,
            scenario=self.scenario,
            details=f"{name} balance changed unexpectedly between {pre.label} and {post.label}",
        )

    def delta_at_most(
        self, name: str, pre: BalanceSnapshot, post: BalanceSnapshot, limit: int
    ) -> Optional[Divergence]:
        actual = abs_delta(getattr(pre, name), getattr(post, name))
        if actual <= limit:
            return None
        return Divergence(
            field=f"{name}_delta",
            expected=f"<= {limit}",
            actual=actual,
            scenario=self.scenario,
            details=f"{name} balance changed by {to_sol(actual)} SOL, limit is {to_sol(limit)} SOL",
        )

    def delta_at_least(
        self, name: str, pre: BalanceSnapshot, post: BalanceSnapshot, floor: int
    ) -> Optional[Divergence]:
        actual = abs_delta(getattr(pre, name), getattr(post, name))
        if actual >= floor:
            return None
        return Divergence(
            field=f"{name}_delta",
            expected=f">= {floor}",
            actual=actual,
            scenario=self.scenario,
            details=f"{name} balance changed by {to_sol(actual)} SOL, expected at least {to_sol(floor)} SOL",
        )

    def equals(self, name: str, expected: Any, actual: Any) -> Optional[Divergence]:
        if expected == actual:
            return None
        return Divergence(field=name, expected=expected, actual=actual, scenario=self.scenario)

    def account_fields(
        self, view: EscrowAccountView, **expected: Any
    ) -> List[Optional[Divergence]]:
        return [self.equals(name, value, getattr(view, name)) for name, value in expected.items()]
