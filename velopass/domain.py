"""Domain vocabulary and strict schemas for membership-versus-pay-per-ride runs.

This module defines the stable contract between the pipeline stages (column
mapping, aggregation, retrieval, extraction, costing) and the callers that
consume a run result: enums and Pydantic models for every payload that flows
through the system. No interpretation logic lives here.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class _FrozenModel(BaseModel):
    """Write-once record; fields cannot be reassigned after construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class Decision(str, Enum):
    """Binary recommendation produced by the cost model."""
    MEMBERSHIP = "membership"
    PAY_PER_USE = "pay-per-use"

    @property
    def label(self) -> str:
        """Human-readable wording used in the final answer."""
        if self is Decision.MEMBERSHIP:
            return "Buy Monthly Membership"
        return "Pay Per Ride/Minute"


class TimelineKind(str, Enum):
    """Narrative entry kinds, in the order a step normally emits them."""
    THOUGHT = "Thought"
    ACTION = "Action"
    OBSERVATION = "Observation"
    FINAL_ANSWER = "Final Answer"


class StopReason(str, Enum):
    """How a run ended."""
    COMPLETED = "Completed"
    ERROR = "Error"


class ColumnMapping(_StrictBaseModel):
    """Actual dataset column chosen for each semantic role (None when absent)."""
    duration_col: str | None = None
    start_col: str | None = None
    end_col: str | None = None
    ride_type_col: str | None = None
    assumptions: List[str] = Field(default_factory=list)

    @property
    def is_viable(self) -> bool:
        """A duration column or a complete start/end pair is the minimum schema."""
        return bool(self.duration_col) or bool(self.start_col and self.end_col)


class AggregateStats(_StrictBaseModel):
    """Overall usage figures for the trip log."""
    total_rides: int = 0
    total_minutes: float = 0.0
    avg_minutes: float = 0.0
    ebike_rides: int = 0
    ebike_minutes: float = 0.0
    classic_minutes: float = 0.0
    classic_over_30: float = 0.0
    classic_over_45: float = 0.0

    @property
    def ebike_share(self) -> float:
        """Fraction of rides taken on an e-bike."""
        if self.total_rides <= 0:
            return 0.0
        return self.ebike_rides / self.total_rides


class WeeklyBucket(AggregateStats):
    """Usage figures for a single calendar week."""
    week_start: str


class Passage(_StrictBaseModel):
    """Length-bounded text fragment from a pricing page."""
    text: str
    source: str
    score: float = 0.0


class RetrievalResult(_StrictBaseModel):
    """Ranked passages returned for a single tariff query."""
    query: str
    source: str
    passages: List[Passage] = Field(default_factory=list)
    fetched_at: str | None = None


class Citation(_FrozenModel):
    """Provenance for an extracted number."""
    id: str
    text: str
    source: str
    captured_at: str


class PolicyValue(_StrictBaseModel):
    """One canonical tariff number and the citation backing it."""
    metric_key: str
    value: float
    citation_id: str | None = None


class PolicyExtraction(_StrictBaseModel):
    """All ten tariff values plus the evidence trail behind them."""
    pricing_url: str
    captured_at: str
    values: Dict[str, PolicyValue] = Field(default_factory=dict)
    citations: List[Citation] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)

    def amount(self, key: str) -> float:
        """Return the numeric value for a metric, 0 when it was never bound."""
        item = self.values.get(key)
        return item.value if item else 0.0

    def citation_for(self, key: str) -> str | None:
        """Return the citation id backing a metric, if any."""
        item = self.values.get(key)
        return item.citation_id if item else None

    def amounts(self) -> Dict[str, float]:
        """Plain metric -> number mapping consumed by the cost model."""
        return {key: item.value for key, item in self.values.items()}


class _CostBreakdown(_StrictBaseModel):
    total: float
    classic_overage: float
    ebike_surcharge: float
    unlock_fees: float


class PayPerUseBreakdown(_CostBreakdown):
    """Itemized pay-per-use cost."""
    base: float


class MembershipBreakdown(_CostBreakdown):
    """Itemized membership cost."""
    membership_fee: float


class CostSummary(_StrictBaseModel):
    """Both plans side by side."""
    pay_per_use: PayPerUseBreakdown
    membership: MembershipBreakdown


class BreakEven(_StrictBaseModel):
    """Ride count at which a single-ride pass costs as much as the membership fee."""
    rides: int | None = None
    assumption: str = "Break-even rides approximate membership fee divided by single-ride price."


class WeeklyCostRow(_StrictBaseModel):
    """One row of the weekly comparison table."""
    week_start: str
    rides: int
    avg_minutes: float
    ebike_share: float
    pay_per_use_cost: float
    membership_cost: float


class TimelineEntry(_FrozenModel):
    """Narrative record of the run."""
    kind: TimelineKind
    content: str
    timestamp: str


class StepLogEntry(_FrozenModel):
    """Structured record of one collaborator invocation."""
    index: int
    tool_name: str
    args_fingerprint: str
    latency_ms: float
    success: bool
    error: str | None = None


class RunMetrics(_StrictBaseModel):
    """Run-level counters."""
    total_steps: int
    total_time_ms: float
    stop_reason: StopReason


class PolicyMeta(_StrictBaseModel):
    """Where and when pricing evidence was captured."""
    pricing_url: str
    captured_at: str


class RunStats(_StrictBaseModel):
    """Headline usage statistics."""
    total_rides: int
    average_minutes: float
    ebike_share: float


class RunResult(_StrictBaseModel):
    """Everything a caller needs to present and audit a recommendation."""
    run_id: str
    decision: Decision
    justification: List[str] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    cost_summary: CostSummary
    break_even: BreakEven
    weekly_table: List[WeeklyCostRow] = Field(default_factory=list)
    timeline: List[TimelineEntry] = Field(default_factory=list)
    step_log: List[StepLogEntry] = Field(default_factory=list)
    metrics: RunMetrics
    policy_meta: PolicyMeta
    policy_values: Dict[str, PolicyValue] = Field(default_factory=dict)
    assumptions: List[str] = Field(default_factory=list)
    stats: RunStats
    final_answer: str


# Canonical tariff metric keys, in lookup order.
MEMBERSHIP_PRICE = "membership_price"
MEMBER_INCLUDED_MINUTES = "member_included_minutes"
MEMBER_EBIKE_PER_MINUTE = "member_ebike_per_minute"
MEMBER_CLASSIC_OVERAGE_PER_MINUTE = "member_classic_overage_per_minute"
MEMBER_UNLOCK_FEE = "member_unlock_fee"
SINGLE_RIDE_PRICE = "single_ride_price"
NON_MEMBER_INCLUDED_MINUTES = "non_member_included_minutes"
NON_MEMBER_EBIKE_PER_MINUTE = "non_member_ebike_per_minute"
NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE = "non_member_classic_overage_per_minute"
NON_MEMBER_UNLOCK_FEE = "non_member_unlock_fee"

TARIFF_METRICS = (
    MEMBERSHIP_PRICE,
    MEMBER_INCLUDED_MINUTES,
    MEMBER_EBIKE_PER_MINUTE,
    MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    MEMBER_UNLOCK_FEE,
    SINGLE_RIDE_PRICE,
    NON_MEMBER_INCLUDED_MINUTES,
    NON_MEMBER_EBIKE_PER_MINUTE,
    NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    NON_MEMBER_UNLOCK_FEE,
)
