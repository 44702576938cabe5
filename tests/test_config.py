"""Harness configuration sources and validation."""

from __future__ import annotations

import pytest

from escrow_harness.config import (
    DEFAULT_PROGRAM_ID,
    LAMPORTS_PER_SOL,
    HarnessConfig,
    RetryPolicy,
)
from escrow_harness.errors import ErrorCategory, ErrorCode, HarnessError


def test_defaults_match_reference_run() -> None:
    config = HarnessConfig()
    assert config.rpc_url == "http://localhost:8899"
    assert config.program_id == DEFAULT_PROGRAM_ID
    assert config.commitment == "confirmed"
    assert config.buyer_initial_balance == 10 * LAMPORTS_PER_SOL
    assert config.seller_initial_balance == LAMPORTS_PER_SOL
    assert config.escrowed_total == 5 * LAMPORTS_PER_SOL
    assert config.payment_tolerance == 10_000
    assert config.withdrawal_tolerance == LAMPORTS_PER_SOL // 100
    assert config.funding_policy == RetryPolicy(max_attempts=3, poll_attempts=32, poll_interval=0.5, backoff=1.0)


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ESCROW_RPC_URL", "http://validator:8899")
    monkeypatch.setenv("ESCROW_COMMITMENT", "finalized")
    monkeypatch.setenv("ESCROW_RESULT_DIR", "/tmp/results")
    monkeypatch.setenv("VERBOSE", "yes")
    config = HarnessConfig.from_env()
    assert config.rpc_url == "http://validator:8899"
    assert config.commitment == "finalized"
    assert config.result_dir == "/tmp/results"
    assert config.verbose is True


def test_from_env_rejects_unknown_commitment(monkeypatch) -> None:
    monkeypatch.setenv("ESCROW_COMMITMENT", "eventually")
    with pytest.raises(HarnessError) as exc:
        HarnessConfig.from_env()
    assert exc.value.code == ErrorCode.CONFIG


def test_merge_yaml(tmp_path) -> None:
    path = tmp_path / "harness.yaml"
    path.write_text(
        "payment_amount: 500000000\n"
        "step_delay: 0\n"
        "funding_policy:\n"
        "  max_attempts: 5\n"
    )
    config = HarnessConfig().merge_yaml(path)
    assert config.payment_amount == 500_000_000
    assert config.step_delay == 0
    assert config.funding_policy.max_attempts == 5
    assert config.funding_policy.poll_attempts == 32


def test_merge_rejects_unknown_keys() -> None:
    with pytest.raises(HarnessError) as exc:
        HarnessConfig().merge({"rpc_uri": "typo"})
    assert exc.value.code == ErrorCode.CONFIG
    assert "rpc_uri" in exc.value.message


def test_merge_rejects_bad_policy_keys() -> None:
    with pytest.raises(HarnessError) as exc:
        HarnessConfig().merge({"submit_policy": {"retries": 3}})
    assert exc.value.code == ErrorCode.CONFIG


@pytest.mark.parametrize(
    "overrides",
    [
        {"refund_validation_data": 1000},
        {"release_validation_data": 1001},
        {"escrow_payment_count": 0},
        {"payment_amount": 0},
    ],
)
def test_validation(overrides) -> None:
    with pytest.raises(HarnessError) as exc:
        HarnessConfig(**overrides)
    assert exc.value.code == ErrorCode.CONFIG


def test_retry_policy_validation() -> None:
    with pytest.raises(HarnessError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(HarnessError):
        RetryPolicy(poll_interval=-1)


def test_error_formatting_and_category() -> None:
    e = HarnessError(ErrorCode.FUNDING_EXHAUSTED, "no funds")
    assert str(e) == "FUNDING_EXHAUSTED(0x0200): no funds"
    assert e.code.category == ErrorCategory.FUNDING
    assert ErrorCode.INVARIANT_VIOLATION.category == ErrorCategory.VERIFICATION


@pytest.mark.parametrize(
    "data",
    [
        {"refund_validation_data": "2000"},
        {"direct_payments_counted": "yes"},
        {"payment_amount": 1.5},
        {"escrow_payment_count": True},
        {"rpc_url": 8899},
        {"funding_policy": {"max_attempts": "3"}},
    ],
)
def test_merge_rejects_wrong_value_types(data) -> None:
    with pytest.raises(HarnessError) as exc:
        HarnessConfig().merge(data)
    assert exc.value.code == ErrorCode.CONFIG


def test_merge_accepts_ints_for_float_fields_and_null_result_dir() -> None:
    config = HarnessConfig(result_dir="/tmp/out").merge(
        {"step_delay": 1, "result_dir": None, "submit_policy": {"poll_interval": 2}}
    )
    assert config.step_delay == 1
    assert config.result_dir is None
    assert config.submit_policy.poll_interval == 2
