"""Configuration for the escrow conformance harness.

Unit constants mirror the ledger's native denominations; everything that a
run may want to vary lives on `HarnessConfig`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional, Union, get_args, get_origin, get_type_hints

import yaml

from .errors import ErrorCode, HarnessError

# Units
LAMPORTS_PER_SOL = 1_000_000_000

# Remote program
DEFAULT_RPC_URL = "http://localhost:8899"
DEFAULT_PROGRAM_ID = "ABkdGF6rfAVxU9zC9n961YBTLKmNAEM3waZ2936fa1f"
ESCROW_SEED = b"escrow"
MAX_SEED_LEN = 32
DEFAULT_VALIDATION_THRESHOLD = 1000

# Commitment levels, weakest first
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")
DEFAULT_COMMITMENT = "confirmed"

# Funding
BUYER_INITIAL_BALANCE = 10 * LAMPORTS_PER_SOL
SELLER_INITIAL_BALANCE = 1 * LAMPORTS_PER_SOL
MIN_FUNDED_BALANCE = LAMPORTS_PER_SOL

# Tolerance bands
PAYMENT_TOLERANCE = 10_000
WITHDRAWAL_TOLERANCE = LAMPORTS_PER_SOL // 100

_TRUTHY = ("true", "1", "yes")


def _check_type(name: str, value: Any, hint: Any) -> None:
    """Raise CONFIG unless `value` fits the annotated field type."""
    if get_origin(hint) is Union:
        if value is None and type(None) in get_args(hint):
            return
        hint = next(a for a in get_args(hint) if a is not type(None))
    if hint is bool:
        ok = isinstance(value, bool)
    elif hint is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif hint is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, hint)
    if not ok:
        expected = getattr(hint, "__name__", str(hint))
        raise HarnessError(
            ErrorCode.CONFIG,
            f"{name} must be {expected}, got {type(value).__name__} {value!r}",
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry and confirmation-polling budget."""
    max_attempts: int = 1
    poll_attempts: int = 32
    poll_interval: float = 0.5
    backoff: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise HarnessError(ErrorCode.CONFIG, "max_attempts must be >= 1")
        if self.poll_attempts < 1:
            raise HarnessError(ErrorCode.CONFIG, "poll_attempts must be >= 1")
        if self.poll_interval < 0 or self.backoff < 0:
            raise HarnessError(ErrorCode.CONFIG, "delays must be >= 0")


def _funding_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, poll_attempts=32, poll_interval=0.5, backoff=1.0)


def _submit_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=1, poll_attempts=60, poll_interval=0.5)


@dataclass
class HarnessConfig:
    """Main configuration for the escrow harness."""
    # Transport
    rpc_url: str = DEFAULT_RPC_URL
    commitment: str = DEFAULT_COMMITMENT
    request_timeout: float = 30.0

    # Remote program
    program_id: str = DEFAULT_PROGRAM_ID
    validation_threshold: int = DEFAULT_VALIDATION_THRESHOLD
    subscription_id: str = "premium_content"
    second_subscription_id: str = "premium_content_2"

    # Funding
    buyer_initial_balance: int = BUYER_INITIAL_BALANCE
    seller_initial_balance: int = SELLER_INITIAL_BALANCE
    min_funded_balance: int = MIN_FUNDED_BALANCE

    # Scenario shape
    payment_amount: int = LAMPORTS_PER_SOL
    escrow_payment_count: int = 5
    direct_payment_count: int = 2
    direct_payments_counted: bool = False
    refund_validation_data: int = 2000
    release_validation_data: int = 500

    # Tolerances
    payment_tolerance: int = PAYMENT_TOLERANCE
    withdrawal_tolerance: int = WITHDRAWAL_TOLERANCE

    # Delays (seconds)
    step_delay: float = 2.0
    lifecycle_step_delay: float = 1.0

    # Retry budgets
    funding_policy: RetryPolicy = field(default_factory=_funding_policy)
    submit_policy: RetryPolicy = field(default_factory=_submit_policy)

    # Output
    result_dir: Optional[str] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.commitment not in COMMITMENT_LEVELS:
            raise HarnessError(ErrorCode.CONFIG, f"unknown commitment: {self.commitment}")
        if self.refund_validation_data <= self.validation_threshold:
            raise HarnessError(
                ErrorCode.CONFIG,
                "refund_validation_data must exceed validation_threshold",
            )
        if self.release_validation_data > self.validation_threshold:
            raise HarnessError(
                ErrorCode.CONFIG,
                "release_validation_data must not exceed validation_threshold",
            )
        if self.escrow_payment_count < 1 or self.escrow_payment_count > 0xFF:
            raise HarnessError(ErrorCode.CONFIG, "escrow_payment_count must fit u8 and be >= 1")
        if self.direct_payment_count < 0:
            raise HarnessError(ErrorCode.CONFIG, "direct_payment_count must be >= 0")
        if self.payment_amount <= 0:
            raise HarnessError(ErrorCode.CONFIG, "payment_amount must be > 0")

    @property
    def escrowed_total(self) -> int:
        return self.payment_amount * self.escrow_payment_count

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Load configuration from environment variables."""
        config = cls()

        config.rpc_url = os.environ.get("ESCROW_RPC_URL", config.rpc_url)
        config.program_id = os.environ.get("ESCROW_PROGRAM_ID", config.program_id)
        config.commitment = os.environ.get("ESCROW_COMMITMENT", config.commitment)
        config.result_dir = os.environ.get("ESCROW_RESULT_DIR", config.result_dir)
        config.verbose = os.environ.get("VERBOSE", "").lower() in _TRUTHY

        config.validate()
        return config

    def merge_yaml(self, path: str | Path) -> "HarnessConfig":
        """Return a copy updated with the keys of a YAML mapping file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise HarnessError(ErrorCode.CONFIG, f"{path}: expected a mapping")
        return self.merge(data)

    def merge(self, data: dict[str, Any]) -> "HarnessConfig":
        known = {f.name for f in fields(self)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise HarnessError(ErrorCode.CONFIG, f"unknown config keys: {', '.join(unknown)}")

        hints = get_type_hints(type(self))
        for name, value in data.items():
            if name not in ("funding_policy", "submit_policy"):
                _check_type(name, value, hints[name])

        updates = dict(data)
        for name in ("funding_policy", "submit_policy"):
            if name in updates:
                policy = updates[name]
                if not isinstance(policy, dict):
                    raise HarnessError(ErrorCode.CONFIG, f"{name} must be a mapping")
                policy_hints = get_type_hints(RetryPolicy)
                for key, value in policy.items():
                    if key in policy_hints:
                        _check_type(f"{name}.{key}", value, policy_hints[key])
                try:
                    updates[name] = replace(getattr(self, name), **policy)
                except TypeError as e:
                    raise HarnessError(ErrorCode.CONFIG, f"{name}: {e}") from e
        return replace(self, **updates)
