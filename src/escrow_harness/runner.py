#!/usr/bin/env python3
"""
Escrow Conformance Harness

Entry point that funds the test parties, runs every lifecycle scenario against
the deployed escrow program in order, and exits non-zero on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Optional

import click
from solders.pubkey import Pubkey

from .balances import BalanceSampler
from .config import COMMITMENT_LEVELS, HarnessConfig
from .context import ConnectionContext
from .errors import ErrorCode, HarnessError
from .funding import FundingController
from .reporter import HarnessReport, ReportGenerator
from .rpc import RpcClient
from .scenarios import ScenarioRunner
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


def parse_program_id(value: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise HarnessError(ErrorCode.CONFIG, f"invalid program id {value!r}: {e}") from e


class EscrowHarness:
    """Wires the configured components around one RPC client."""

    def __init__(self, config: HarnessConfig, client: Optional[RpcClient] = None):
        self.config = config
        self.client = client or RpcClient(
            config.rpc_url, commitment=config.commitment, timeout=config.request_timeout
        )
        self.ctx = ConnectionContext(
            client=self.client, program_id=parse_program_id(config.program_id)
        )
        self.runner = ScenarioRunner(
            ctx=self.ctx,
            config=config,
            funding=FundingController(self.client, config.funding_policy),
            sampler=BalanceSampler(self.client, seller=self.ctx.seller, buyer=self.ctx.buyer),
            submitter=TransactionSubmitter(self.client, self.ctx.program_id, config.submit_policy),
        )
        self.reporter = ReportGenerator(config.result_dir)

    async def run(self) -> HarnessReport:
        start_time = time.time()
        await self.client.connect()
        logger.info(f"Connected to {self.config.rpc_url} ({self.config.commitment})")
        try:
            results = await self.runner.run_all()
        finally:
            await self.client.close()

        return self.reporter.generate_report(
            scenario_results=results,
            planned=self.runner.scenario_names,
            endpoint=self.config.rpc_url,
            program_id=self.config.program_id,
            execution_time_ms=(time.time() - start_time) * 1000,
        )


def load_config(
    config_path: Optional[str],
    rpc_url: Optional[str],
    program_id: Optional[str],
    commitment: Optional[str],
    result_dir: Optional[str],
    verbose: bool,
) -> HarnessConfig:
    """Environment, then YAML file, then command-line overrides."""
    config = HarnessConfig.from_env()
    if config_path:
        config = config.merge_yaml(config_path)

    overrides = {
        "rpc_url": rpc_url,
        "program_id": program_id,
        "commitment": commitment,
        "result_dir": result_dir,
    }
    config = config.merge({k: v for k, v in overrides.items() if v is not None})
    if verbose:
        config.verbose = True
    return config


@click.command()
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file overriding harness settings",
)
@click.option("--rpc-url", default=None, help="Ledger JSON-RPC endpoint URL")
@click.option("--program-id", default=None, help="Escrow program address")
@click.option(
    "--commitment",
    default=None,
    type=click.Choice(COMMITMENT_LEVELS),
    help="Commitment level for reads and confirmations",
)
@click.option("--result-dir", default=None, help="Directory to write the JSON report")
@click.option("--verbose", is_flag=True, help="Enable verbose output")
def main(
    config_path: Optional[str],
    rpc_url: Optional[str],
    program_id: Optional[str],
    commitment: Optional[str],
    result_dir: Optional[str],
    verbose: bool,
) -> None:
    """Run the escrow program conformance scenarios."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    try:
        config = load_config(config_path, rpc_url, program_id, commitment, result_dir, verbose)
        harness = EscrowHarness(config)
    except HarnessError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    report = asyncio.run(harness.run())

    harness.reporter.write_json_report(report)
    harness.reporter.print_summary(report)

    failure = report.first_failure
    if failure is not None:
        click.echo(harness.reporter.format_failure(failure), err=True)
    sys.exit(0 if report.passed else 1)


if __name__ == "__main__":
    main()
