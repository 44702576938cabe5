"""
Report generation for escrow harness runs.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .comparator import ComparisonResult, Divergence


@dataclass
class ScenarioResult:
    """Result of a single scenario."""
    scenario_name: str
    passed: bool
    execution_time_ms: float
    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None


@dataclass
class HarnessReport:
    """Complete harness run report."""
    timestamp: str
    endpoint: str
    program_id: str
    total_scenarios: int
    total_passed: int
    total_failed: int
    total_skipped: int
    execution_time_ms: float
    scenario_results: List[ScenarioResult]
    divergences: List[Divergence]

    @property
    def passed(self) -> bool:
        return self.total_failed == 0 and self.total_skipped == 0

    @property
    def first_failure(self) -> Optional[ScenarioResult]:
        for result in self.scenario_results:
            if not result.passed:
                return result
        return None


class ReportGenerator:
    """Generates harness run reports."""

    def __init__(self, result_dir: Optional[str] = None):
        """
        Initialize report generator.

        Args:
            result_dir: Directory to write reports to; None disables file output
        """
        self.result_dir = result_dir
        if result_dir:
            os.makedirs(result_dir, exist_ok=True)

    def generate_report(
        self,
        scenario_results: List[ScenarioResult],
        planned: List[str],
        endpoint: str,
        program_id: str,
        execution_time_ms: float,
    ) -> HarnessReport:
        """
        Generate a complete run report.

        Args:
            scenario_results: Results of the scenarios that ran
            planned: Names of every scenario in the sequence
            endpoint: RPC endpoint the run targeted
            program_id: Escrow program under test
            execution_time_ms: Total execution time

        Returns:
            HarnessReport object
        """
        passed = sum(1 for r in scenario_results if r.passed)
        failed = sum(1 for r in scenario_results if not r.passed)

        divergences = []
        for result in scenario_results:
            if result.comparison and result.comparison.divergences:
                divergences.extend(result.comparison.divergences)

        return HarnessReport(
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            endpoint=endpoint,
            program_id=program_id,
            total_scenarios=len(planned),
            total_passed=passed,
            total_failed=failed,
            total_skipped=len(planned) - len(scenario_results),
            execution_time_ms=execution_time_ms,
            scenario_results=scenario_results,
            divergences=divergences,
        )

    def write_json_report(
        self,
        report: HarnessReport,
        filename: str = "escrow-harness-report.json",
    ) -> Optional[str]:
        """
        Write report as JSON file.

        Returns:
            Path to written file, or None when no result directory is set
        """
        if not self.result_dir:
            return None

        path = os.path.join(self.result_dir, filename)
        with open(path, "w") as f:
            json.dump(self._report_to_dict(report), f, indent=2)

        return path

    def format_failure(self, result: ScenarioResult) -> str:
        """One diagnostic naming the scenario and what failed in it."""
        lines = [f"Scenario '{result.scenario_name}' failed"]
        if result.error:
            lines.append(f"  Error: {result.error}")
        if result.comparison:
            for div in result.comparison.divergences:
                lines.append(f"  - {div.field}: expected {div.expected}, actual {div.actual}")
                if div.details:
                    lines.append(f"      {div.details}")
        return "\n".join(lines)

    def print_summary(self, report: HarnessReport) -> None:
        """Print summary to console."""
        print("\n" + "=" * 60)
        print("Escrow Harness Results")
        print("=" * 60)
        print(f"Endpoint: {report.endpoint}")
        print(f"Program:  {report.program_id}")
        print()
        for result in report.scenario_results:
            status = "PASS" if result.passed else "FAIL"
            print(f"  [{status}] {result.scenario_name} ({result.execution_time_ms:.0f}ms)")
        print()
        print(f"Total:    {report.total_scenarios}")
        print(f"Passed:   {report.total_passed}")
        print(f"Failed:   {report.total_failed}")
        print(f"Skipped:  {report.total_skipped}")

        failure = report.first_failure
        if failure is not None:
            print()
            print(self.format_failure(failure))

        status = "PASSED" if report.passed else "FAILED"
        print()
        print(f"Overall: {status}")
        print("=" * 60)

    def _report_to_dict(self, report: HarnessReport) -> Dict[str, Any]:
        """Convert report to dictionary for JSON serialization."""
        return {
            "timestamp": report.timestamp,
            "endpoint": report.endpoint,
            "program_id": report.program_id,
            "total_scenarios": report.total_scenarios,
            "total_passed": report.total_passed,
            "total_failed": report.total_failed,
            "total_skipped": report.total_skipped,
            "execution_time_ms": report.execution_time_ms,
            "scenario_results": [
                {
                    "scenario_name": r.scenario_name,
                    "passed": r.passed,
                    "execution_time_ms": r.execution_time_ms,
                    "checks": r.comparison.checks if r.comparison else 0,
                    "error": r.error,
                }
                for r in report.scenario_results
            ],
            "divergences": [
                {
                    "field": d.field,
                    "expected": str(d.expected),
                    "actual": str(d.actual),
                    "scenario": d.scenario,
                    "details": d.details,
                }
                for d in report.divergences
            ],
        }
