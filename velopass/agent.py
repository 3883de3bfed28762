"""
Run orchestration: one sequential pass from trip file and pricing URL to a
membership recommendation. Every collaborator call goes through the run's
telemetry so the timeline and step log describe exactly what happened.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List
from urllib.parse import urlparse

from velopass.aggregation import AggregationEngine
from velopass.calculator import evaluate_expression
from velopass.config import Settings, settings as default_settings
from velopass.cost_model import (
    MEMBER_FREE_MINUTES,
    break_even_rides,
    decide,
    membership_cost,
    pay_per_use_cost,
    weekly_costs,
)
from velopass.data_sources.base import PageFetcher, TripQuerySource
from velopass.data_sources.factory import build_trip_source
from velopass.data_sources.pricing_page import HttpPageFetcher
from velopass.domain import (
    MEMBER_EBIKE_PER_MINUTE,
    MEMBER_INCLUDED_MINUTES,
    MEMBERSHIP_PRICE,
    NON_MEMBER_EBIKE_PER_MINUTE,
    SINGLE_RIDE_PRICE,
    AggregateStats,
    BreakEven,
    CostSummary,
    MembershipBreakdown,
    PayPerUseBreakdown,
    PolicyExtraction,
    PolicyMeta,
    RetrievalResult,
    RunMetrics,
    RunResult,
    RunStats,
    StopReason,
    WeeklyBucket,
)
from velopass.errors import SchemaError, VelopassError
from velopass.formulas import build_duration_formula, build_ride_class_predicate
from velopass.policy_parser import POLICY_METRICS, parse_policy
from velopass.retriever import PassageRetriever
from velopass.schema_mapper import map_columns
from velopass.telemetry import RunTelemetry
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="velopass/agent")

OBSERVATION_SNIPPET_CHARS = 160

SourceFactory = Callable[[str], TripQuerySource]


def pricing_host(pricing_url: str) -> str:
    """Host name of the pricing page without a leading `www.`; the raw URL if it has none."""
    try:
        host = urlparse(pricing_url).hostname
    except ValueError:
        host = None
    if not host:
        return pricing_url
    return host[4:] if host.startswith("www.") else host


def format_currency(value: float) -> str:
    return f"${value:.2f}"


def format_percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def citation_ref(citation_id: str | None) -> str:
    return f"[{citation_id}]" if citation_id else ""


def quote_snippet(text: str, limit: int = OBSERVATION_SNIPPET_CHARS) -> str:
    snippet = text.strip()
    if len(snippet) > limit:
        return snippet[:limit] + "…"
    return snippet


def build_justification(
    stats: AggregateStats,
    policy: PolicyExtraction,
    costs: CostSummary,
) -> List[str]:
    """Three sentences explaining the fee, the pay-per-use total and the membership total."""
    included = policy.amount(MEMBER_INCLUDED_MINUTES) or MEMBER_FREE_MINUTES
    return [
        (
            f"Membership costs {format_currency(policy.amount(MEMBERSHIP_PRICE))} per month and includes "
            f"roughly {included:g}-minute classic rides"
            f"{citation_ref(policy.citation_for(MEMBERSHIP_PRICE))}"
            f"{citation_ref(policy.citation_for(MEMBER_INCLUDED_MINUTES))}."
        ),
        (
            f"You took {stats.total_rides} rides totaling "
            f"{stats.classic_minutes + stats.ebike_minutes:.2f} minutes; paying per ride at "
            f"{format_currency(policy.amount(SINGLE_RIDE_PRICE))} with surcharges would cost "
            f"{format_currency(costs.pay_per_use.total)}"
            f"{citation_ref(policy.citation_for(SINGLE_RIDE_PRICE))}"
            f"{citation_ref(policy.citation_for(NON_MEMBER_EBIKE_PER_MINUTE))}."
        ),
        (
            f"With membership the month would cost {format_currency(costs.membership.total)}, "
            f"including e-bike minute charges of {format_currency(costs.membership.ebike_surcharge)}"
            f"{citation_ref(policy.citation_for(MEMBER_EBIKE_PER_MINUTE))}."
        ),
    ]


def build_final_answer(
    decision_label: str,
    costs: CostSummary,
    break_even: int | None,
    assumptions: List[str],
) -> str:
    return "\n".join(
        [
            f"Decision: {decision_label}",
            f"Pay Per Use Total: {format_currency(costs.pay_per_use.total)}",
            f"Membership Total: {format_currency(costs.membership.total)}",
            f"Break-even rides (approx): {break_even if break_even is not None else 'n/a'}",
            f"Assumptions: {'; '.join(assumptions) or 'None'}",
        ]
    )


def _inspect_columns(csv_sql: Callable[..., List[Dict[str, Any]]], source: TripQuerySource) -> List[str]:
    rows = csv_sql(sql=source.schema_sql())
    columns = [str(row["name"]) for row in rows if row.get("name")]
    if not columns:
        raise SchemaError("Unable to inspect trip dataset schema (no columns reported).")
    return columns


def run_agent(
    run_id: str,
    dataset_locator: str,
    pricing_url: str,
    *,
    settings: Settings | None = None,
    page_fetcher: PageFetcher | None = None,
    source_factory: SourceFactory = build_trip_source,
) -> RunResult:
    """Analyze a trip log against a pricing page and recommend a plan.

    Any fatal error is re-raised after a `Final Answer` failure entry is
    logged; VelopassError instances carry the partial timeline and step log.
    The dataset connection is closed on every exit path.
    """
    cfg = settings or default_settings
    fetcher = page_fetcher or HttpPageFetcher(timeout=cfg.fetch_timeout_seconds, user_agent=cfg.user_agent)
    telemetry = RunTelemetry(run_id)
    started = time.perf_counter()
    source = source_factory(dataset_locator)

    logger.info("Starting run %s against %s", run_id, mask_url(pricing_url))
    try:
        source.open()
        csv_sql = telemetry.tool("csv_sql", source.query)

        telemetry.thought("Inspect the trip dataset to find duration, timestamp and ride-type columns.")
        telemetry.action("csv_sql: inspect trip columns")
        mapping = map_columns(_inspect_columns(csv_sql, source))
        telemetry.observation(
            "Mapped columns: "
            f"duration={mapping.duration_col or 'n/a'}, start={mapping.start_col or 'n/a'}, "
            f"end={mapping.end_col or 'n/a'}, ride type={mapping.ride_type_col or 'n/a'}."
        )
        engine = AggregationEngine(
            csv_sql,
            source.table_name,
            build_duration_formula(mapping),
            build_ride_class_predicate(mapping),
        )

        telemetry.thought("Assess ride volumes and durations to understand the rider's usage profile.")
        telemetry.action("csv_sql: aggregate ride metrics")
        stats = engine.overall()
        telemetry.observation(
            f"Trips summary: {stats.total_rides} total rides, average duration "
            f"{stats.avg_minutes:.2f} minutes, e-bike share {format_percent(stats.ebike_share)}."
        )

        buckets: List[WeeklyBucket] = []
        if mapping.start_col:
            telemetry.thought("Break the rides down by week to understand cadence.")
            telemetry.action("csv_sql: weekly ride breakdown")
            buckets = engine.weekly(mapping.start_col)
            telemetry.observation(f"Computed weekly breakdown with {len(buckets)} rows.")
        else:
            telemetry.observation("Weekly breakdown skipped because start timestamp column was not found.")

        telemetry.thought("Consult the official pricing page for membership fees and per-minute charges.")
        retriever = PassageRetriever(
            pricing_url,
            fetcher.fetch,
            top_k=cfg.retrieval_top_k,
            min_chars=cfg.passage_min_chars,
            max_chars=cfg.passage_max_chars,
        )
        host = pricing_host(pricing_url)
        retrievals: Dict[str, RetrievalResult] = {}
        for spec in POLICY_METRICS:
            telemetry.action(f"policy_retriever: {spec.description}")
            result = telemetry.call(
                "policy_retriever",
                retriever.retrieve,
                query=spec.build_query(host),
                k=cfg.retrieval_top_k,
            )
            retrievals[spec.key] = result
            if result.passages:
                telemetry.observation(f'{spec.description}: "{quote_snippet(result.passages[0].text)}"')
            else:
                telemetry.observation(f"{spec.description}: no relevant snippet found.")

        policy = parse_policy(pricing_url, retrievals)
        telemetry.observation(
            f"Parsed policy values: membership {format_currency(policy.amount(MEMBERSHIP_PRICE))}, "
            f"single ride {format_currency(policy.amount(SINGLE_RIDE_PRICE))}."
        )

        tariffs = policy.amounts()
        calculator = telemetry.tool("calculator", evaluate_expression)

        def evaluate(expression: str) -> float:
            return calculator(expression=expression)

        telemetry.action("calculator: sum pay-per-use costs")
        pay: PayPerUseBreakdown = pay_per_use_cost(stats, tariffs, evaluate=evaluate)
        telemetry.action("calculator: sum membership costs")
        member: MembershipBreakdown = membership_cost(stats, tariffs, evaluate=evaluate)
        costs = CostSummary(pay_per_use=pay, membership=member)

        decision = decide(member.total, pay.total)
        break_even = break_even_rides(policy.amount(MEMBERSHIP_PRICE), policy.amount(SINGLE_RIDE_PRICE))
        weekly_table = weekly_costs(buckets, tariffs, default_weeks=cfg.default_membership_weeks)
        assumptions = [*mapping.assumptions, *policy.assumptions]

        final_answer = build_final_answer(decision.label, costs, break_even, assumptions)
        telemetry.final_answer(final_answer)
    except Exception as exc:
        message = exc.message if isinstance(exc, VelopassError) else str(exc)
        telemetry.final_answer(f"Run failed: {message}")
        if isinstance(exc, VelopassError):
            exc.attach_trail(telemetry.timeline, telemetry.step_log)
        logger.error(
            "Run %s stopped: %s",
            run_id,
            message,
            extra={"stop_reason": StopReason.ERROR.value, "steps": len(telemetry.step_log)},
        )
        raise
    finally:
        source.close()

    step_log = telemetry.step_log
    total_time_ms = round((time.perf_counter() - started) * 1000, 3)
    logger.info(
        "Run %s completed: %s (pay-per-use %.2f, membership %.2f)",
        run_id,
        decision.value,
        pay.total,
        member.total,
    )
    return RunResult(
        run_id=run_id,
        decision=decision,
        justification=build_justification(stats, policy, costs),
        citations=policy.citations,
        cost_summary=costs,
        break_even=BreakEven(rides=break_even),
        weekly_table=weekly_table,
        timeline=telemetry.timeline,
        step_log=step_log,
        metrics=RunMetrics(
            total_steps=len(step_log),
            total_time_ms=total_time_ms,
            stop_reason=StopReason.COMPLETED,
        ),
        policy_meta=PolicyMeta(pricing_url=pricing_url, captured_at=policy.captured_at),
        policy_values=policy.values,
        assumptions=assumptions,
        stats=RunStats(
            total_rides=stats.total_rides,
            average_minutes=stats.avg_minutes,
            ebike_share=stats.ebike_share,
        ),
        final_answer=final_answer,
    )
