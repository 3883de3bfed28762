"""Combine usage aggregates and tariff values into two plan costs and a decision.

Pay-per-use:  rides x (single ride - unlock, floored at 0) + classic minutes past 30 x
              overage rate + e-bike minutes x e-bike rate + rides x unlock fee.
Membership:   fee + classic minutes past 45 x overage rate + e-bike minutes x
              e-bike rate + rides x unlock fee.

Totals go through the restricted evaluator so the arithmetic is auditable as
an expression string.
"""

from __future__ import annotations

import math
from typing import Callable, List, Mapping, Sequence

from velopass.calculator import evaluate_expression, sum_expression
from velopass.domain import (
    MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    MEMBER_EBIKE_PER_MINUTE,
    MEMBER_UNLOCK_FEE,
    MEMBERSHIP_PRICE,
    NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    NON_MEMBER_EBIKE_PER_MINUTE,
    NON_MEMBER_UNLOCK_FEE,
    SINGLE_RIDE_PRICE,
    AggregateStats,
    Decision,
    MembershipBreakdown,
    PayPerUseBreakdown,
    WeeklyBucket,
    WeeklyCostRow,
)

NON_MEMBER_FREE_MINUTES = 30
MEMBER_FREE_MINUTES = 45
DEFAULT_MEMBERSHIP_WEEKS = 4

Evaluator = Callable[[str], float]


def _tariff(tariffs: Mapping[str, float], key: str) -> float:
    return float(tariffs.get(key) or 0.0)


def pay_per_use_expression(stats: AggregateStats, tariffs: Mapping[str, float]) -> tuple[str, dict]:
    """Itemized pay-per-use components and the expression that sums them."""
    unlock = _tariff(tariffs, NON_MEMBER_UNLOCK_FEE)
    base_fare = max(_tariff(tariffs, SINGLE_RIDE_PRICE) - unlock, 0.0)
    parts = {
        "base": stats.total_rides * base_fare,
        "classic_overage": stats.classic_over_30 * _tariff(tariffs, NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE),
        "ebike_surcharge": stats.ebike_minutes * _tariff(tariffs, NON_MEMBER_EBIKE_PER_MINUTE),
        "unlock_fees": stats.total_rides * unlock,
    }
    expression = sum_expression(
        parts["base"], parts["classic_overage"], parts["ebike_surcharge"], parts["unlock_fees"]
    )
    return expression, parts


def membership_expression(
    stats: AggregateStats,
    tariffs: Mapping[str, float],
    *,
    membership_fee: float | None = None,
) -> tuple[str, dict]:
    """Itemized membership components and the expression that sums them.

    `membership_fee` overrides the published price (used for weekly allocation).
    """
    fee = _tariff(tariffs, MEMBERSHIP_PRICE) if membership_fee is None else membership_fee
    parts = {
        "membership_fee": fee,
        "classic_overage": stats.classic_over_45 * _tariff(tariffs, MEMBER_CLASSIC_OVERAGE_PER_MINUTE),
        "ebike_surcharge": stats.ebike_minutes * _tariff(tariffs, MEMBER_EBIKE_PER_MINUTE),
        "unlock_fees": stats.total_rides * _tariff(tariffs, MEMBER_UNLOCK_FEE),
    }
    expression = sum_expression(
        parts["membership_fee"], parts["classic_overage"], parts["ebike_surcharge"], parts["unlock_fees"]
    )
    return expression, parts


def pay_per_use_cost(
    stats: AggregateStats,
    tariffs: Mapping[str, float],
    evaluate: Evaluator = evaluate_expression,
) -> PayPerUseBreakdown:
    """Total and itemization for paying per ride."""
    expression, parts = pay_per_use_expression(stats, tariffs)
    return PayPerUseBreakdown(total=evaluate(expression), **parts)


def membership_cost(
    stats: AggregateStats,
    tariffs: Mapping[str, float],
    evaluate: Evaluator = evaluate_expression,
) -> MembershipBreakdown:
    """Total and itemization for holding a membership."""
    expression, parts = membership_expression(stats, tariffs)
    return MembershipBreakdown(total=evaluate(expression), **parts)


def decide(membership_total: float, pay_per_use_total: float) -> Decision:
    """Membership wins ties."""
    if membership_total <= pay_per_use_total:
        return Decision.MEMBERSHIP
    return Decision.PAY_PER_USE


def break_even_rides(membership_price: float, single_ride_price: float) -> int | None:
    """Rides needed for single-ride fares to reach the membership fee; None without a fare."""
    if single_ride_price <= 0:
        return None
    return math.ceil(membership_price / single_ride_price)


def weekly_costs(
    buckets: Sequence[WeeklyBucket],
    tariffs: Mapping[str, float],
    *,
    default_weeks: int = DEFAULT_MEMBERSHIP_WEEKS,
    evaluate: Evaluator = evaluate_expression,
) -> List[WeeklyCostRow]:
    """Per-week costs with the membership fee spread evenly over the observed weeks.

    The allocation is an approximation; weekly membership costs need not sum
    to the monthly total.
    """
    weeks = len(buckets) or default_weeks
    weekly_fee = _tariff(tariffs, MEMBERSHIP_PRICE) / weeks
    rows: List[WeeklyCostRow] = []
    for bucket in buckets:
        pay_expr, _ = pay_per_use_expression(bucket, tariffs)
        member_expr, _ = membership_expression(bucket, tariffs, membership_fee=weekly_fee)
        rows.append(
            WeeklyCostRow(
                week_start=bucket.week_start,
                rides=bucket.total_rides,
                avg_minutes=round(bucket.avg_minutes, 2),
                ebike_share=round(bucket.ebike_share, 4),
                pay_per_use_cost=round(evaluate(pay_expr), 2),
                membership_cost=round(evaluate(member_expr), 2),
            )
        )
    return rows
