"""Shared fixtures built around the in-memory ledger."""

from __future__ import annotations

import pytest
from solders.pubkey import Pubkey

from escrow_harness.config import DEFAULT_PROGRAM_ID, HarnessConfig, RetryPolicy
from fake_ledger import FakeLedger


@pytest.fixture
def program_id() -> Pubkey:
    return Pubkey.from_string(DEFAULT_PROGRAM_ID)


@pytest.fixture
def ledger(program_id: Pubkey) -> FakeLedger:
    return FakeLedger(program_id)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, poll_attempts=4, poll_interval=0, backoff=0)


@pytest.fixture
def fast_config(fast_policy: RetryPolicy) -> HarnessConfig:
    return HarnessConfig(
        step_delay=0,
        lifecycle_step_delay=0,
        funding_policy=fast_policy,
        submit_policy=RetryPolicy(max_attempts=1, poll_attempts=4, poll_interval=0),
    )
