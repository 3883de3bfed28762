"""Run the advisor over one or more local trip files and print a short report per file.

Example:
    python run_analysis.py data/divvy_202403.csv data/divvy_202401.csv
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from velopass.agent import run_agent
from velopass.config import settings
from velopass.domain import RunResult
from velopass.errors import VelopassError
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="run_analysis")

DEFAULT_PRICING_URL = "https://divvybikes.com/pricing"


def summarize(name: str, result: RunResult) -> str:
    """One-paragraph summary of a completed run."""
    costs = result.cost_summary
    return " ".join(
        [
            f"{name}: {result.decision.label}.",
            f"Pay-per-use estimate {costs.pay_per_use.total:.2f}, membership {costs.membership.total:.2f}, "
            f"rides {result.stats.total_rides}.",
            f"Assumptions: {'; '.join(result.assumptions) or 'None.'}",
        ]
    )


def run_scenario(dataset: Path, pricing_url: str) -> bool:
    """Run one file and print its report; return False if the run failed."""
    name = dataset.stem
    print(f"\n=== Scenario: {name} ===")
    print(f"Trips: {dataset}")
    try:
        result = run_agent(name.replace(" ", "-").lower(), str(dataset), pricing_url, settings=settings)
    except VelopassError as e:
        print(f"Scenario failed: {e.message}", file=sys.stderr)
        return False

    costs = result.cost_summary
    print(f"Decision: {result.decision.label}")
    print(f"Pay Per Use: {costs.pay_per_use.total:.2f} | Membership: {costs.membership.total:.2f}")
    print(f"Pay Per Use breakdown: {costs.pay_per_use.model_dump()}")
    print(f"Membership breakdown: {costs.membership.model_dump()}")
    print(f"Total Steps: {result.metrics.total_steps} | Stop Reason: {result.metrics.stop_reason.value}")
    print(f"Summary: {summarize(name, result)}")
    return True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Compare membership and pay-per-ride costs for trip files")
    parser.add_argument("trips", nargs="+", type=Path, help="Trip files (CSV, TSV, Parquet or JSON)")
    parser.add_argument("--pricing-url", default=DEFAULT_PRICING_URL)
    args = parser.parse_args(argv)

    setup_logging(level=settings.log_level, job_name="velopass-cli")
    outcomes = [run_scenario(path, args.pricing_url) for path in args.trips]
    failed = outcomes.count(False)
    if failed:
        logger.error("%d of %d scenarios failed", failed, len(outcomes))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
