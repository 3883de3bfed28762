"""Extract the ten canonical tariff values from ranked pricing-page passages.

Extraction is purely lexical. Currency-valued metrics scan every `$` amount in
a passage, classify each by the words around it, and pick by a preferred unit.
Per-minute rates and included-minute allowances use a narrower regex on the
single best passage. Every bound value carries a citation to the exact snippet
it came from; every metric that cannot be resolved gets a default and an
assumption explaining why.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from velopass.domain import (
    MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    MEMBER_EBIKE_PER_MINUTE,
    MEMBER_INCLUDED_MINUTES,
    MEMBER_UNLOCK_FEE,
    MEMBERSHIP_PRICE,
    NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
    NON_MEMBER_EBIKE_PER_MINUTE,
    NON_MEMBER_INCLUDED_MINUTES,
    NON_MEMBER_UNLOCK_FEE,
    SINGLE_RIDE_PRICE,
    Citation,
    Passage,
    PolicyExtraction,
    PolicyValue,
    RetrievalResult,
)
from velopass.errors import ExtractionWarning
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="velopass/policy_parser")

CURRENCY_PATTERN = re.compile(r"\$([0-9]+(?:\.[0-9]+)?)")
PER_MINUTE_PATTERN = re.compile(
    r"\$([0-9]+(?:\.[0-9]+)?)\s*(?:/|\bper\b)\s*(?:minute|min)", re.IGNORECASE
)
MINUTES_PATTERN = re.compile(r"(\d+)\s*-?\s*(?:minute|min)", re.IGNORECASE)
SENTENCE_BREAK = re.compile(r"(?<=[.?!])\s+")

CONTEXT_WINDOW = 60

# Unit cues, checked in order against the text around a currency match.
UNIT_RULES: Tuple[Tuple[str, re.Pattern], ...] = (
    ("minute", re.compile(r"(?:per|/)\s*(?:minute|min)")),
    ("month", re.compile(r"monthly")),
    ("month", re.compile(r"month")),
    ("year", re.compile(r"annual")),
    ("year", re.compile(r"year")),
    ("unlock", re.compile(r"unlock")),
    ("ride", re.compile(r"ride")),
    ("scooter", re.compile(r"scooter")),
)

ANNUAL_CONVERSION_NOTE = "Converted published annual membership price to a monthly equivalent."
DEFAULT_INCLUDED_MINUTES = 30


class Strategy(str, Enum):
    """How a metric's value is pulled out of a passage."""
    CURRENCY = "currency"
    PER_MINUTE = "per_minute"
    MINUTES = "minutes"


@dataclass(frozen=True)
class MetricSpec:
    """Retrieval query and extraction rules for one tariff metric."""
    key: str
    description: str
    query: str
    keywords: Tuple[str, ...]
    strategy: Strategy = Strategy.CURRENCY
    preferred_units: Tuple[str, ...] = ()
    fallback_units: Tuple[str, ...] = ()
    default: float = 0.0
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    exclude_phrases: Tuple[str, ...] = ()
    convert_year_to_month: bool = False
    assumption_note: Optional[str] = None

    def build_query(self, host: str) -> str:
        """Retrieval query text, prefixed with the pricing host."""
        return f"{host} {self.query}".strip()


POLICY_METRICS: Tuple[MetricSpec, ...] = (
    MetricSpec(
        key=MEMBERSHIP_PRICE,
        description="Monthly membership price",
        query="monthly membership price",
        keywords=("member", "membership"),
        preferred_units=("month",),
        fallback_units=("year",),
        convert_year_to_month=True,
        min_value=10,
        exclude_phrases=("divvy for everyone", "d4e"),
    ),
    MetricSpec(
        key=MEMBER_INCLUDED_MINUTES,
        description="Member classic ride included minutes",
        query="member included ride minutes classic bike",
        keywords=("member", "classic", "minute"),
        strategy=Strategy.MINUTES,
        default=DEFAULT_INCLUDED_MINUTES,
    ),
    MetricSpec(
        key=MEMBER_EBIKE_PER_MINUTE,
        description="Member e-bike per minute fee",
        query="member e-bike per minute fee",
        keywords=("member", "e-bike"),
        strategy=Strategy.PER_MINUTE,
    ),
    MetricSpec(
        key=MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
        description="Member classic overtime fee",
        query="member classic bike overtime per minute",
        keywords=("member", "classic", "additional"),
        strategy=Strategy.PER_MINUTE,
    ),
    MetricSpec(
        key=MEMBER_UNLOCK_FEE,
        description="Member unlock fee",
        query="member unlock fee",
        keywords=("member", "unlock"),
        preferred_units=("unlock", "ride"),
        max_value=10,
    ),
    MetricSpec(
        key=SINGLE_RIDE_PRICE,
        description="Single ride price",
        query="single ride price",
        keywords=("single", "ride"),
        preferred_units=("ride",),
        fallback_units=("unlock",),
        min_value=2,
        max_value=10,
        exclude_phrases=("capped",),
        assumption_note="Could not find an explicit single-ride base fare; treated as 0.",
    ),
    MetricSpec(
        key=NON_MEMBER_INCLUDED_MINUTES,
        description="Single ride included minutes",
        query="single ride included minutes",
        keywords=("single", "ride", "minute"),
        strategy=Strategy.MINUTES,
        default=DEFAULT_INCLUDED_MINUTES,
    ),
    MetricSpec(
        key=NON_MEMBER_EBIKE_PER_MINUTE,
        description="Non-member e-bike fee",
        query="non member e-bike per minute fee",
        keywords=("non", "member", "e-bike"),
        strategy=Strategy.PER_MINUTE,
    ),
    MetricSpec(
        key=NON_MEMBER_CLASSIC_OVERAGE_PER_MINUTE,
        description="Non-member classic overtime fee",
        query="non member classic overtime per minute",
        keywords=("non", "member", "classic", "additional"),
        strategy=Strategy.PER_MINUTE,
    ),
    MetricSpec(
        key=NON_MEMBER_UNLOCK_FEE,
        description="Non-member unlock fee",
        query="non member unlock fee",
        keywords=("unlock", "fee"),
        preferred_units=("unlock", "ride"),
        max_value=10,
    ),
)

METRICS_BY_KEY: Dict[str, MetricSpec] = {spec.key: spec for spec in POLICY_METRICS}


@dataclass
class CurrencyCandidate:
    """A `$` amount found in a passage, with its inferred unit and surrounding snippet."""
    value: float
    unit: Optional[str]
    snippet: str
    position: int = 0


@dataclass
class CitationRegistry:
    """Sequential citation ids, deduplicated by exact snippet text."""
    captured_at: str
    citations: List[Citation] = field(default_factory=list)
    _ids_by_text: Dict[str, str] = field(default_factory=dict)

    def register(self, text: str, source: str) -> str:
        """Return the id for `text`, creating a citation on first sight."""
        key = text.strip()
        existing = self._ids_by_text.get(key)
        if existing:
            return existing
        citation_id = f"C{len(self.citations) + 1}"
        self.citations.append(
            Citation(id=citation_id, text=key, source=source, captured_at=self.captured_at)
        )
        self._ids_by_text[key] = citation_id
        return citation_id


def classify_unit(context: str) -> Optional[str]:
    """Infer what a currency amount is priced per from nearby words."""
    lowered = context.lower()
    for unit, pattern in UNIT_RULES:
        if pattern.search(lowered):
            return unit
    return None


def extract_currency_candidates(text: str) -> List[CurrencyCandidate]:
    """Every `$` amount in `text`, each with a unit guessed from a ±60 character window."""
    candidates: List[CurrencyCandidate] = []
    for match in CURRENCY_PATTERN.finditer(text):
        window_start = max(0, match.start() - CONTEXT_WINDOW)
        window_end = min(len(text), match.end() + CONTEXT_WINDOW)
        snippet = text[window_start:window_end].strip()
        candidates.append(
            CurrencyCandidate(
                value=float(match.group(1)),
                unit=classify_unit(snippet),
                snippet=snippet,
                position=match.start(),
            )
        )
    return candidates


def filter_plausible(
    candidates: Sequence[CurrencyCandidate],
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> List[CurrencyCandidate]:
    """Drop candidates outside the range; fall back to all candidates if none survive."""
    filtered = list(candidates)
    if min_value is not None:
        filtered = [c for c in filtered if c.value >= min_value]
    if max_value is not None:
        filtered = [c for c in filtered if c.value <= max_value]
    return filtered or list(candidates)


def select_candidate(
    candidates: Sequence[CurrencyCandidate],
    preferred_units: Sequence[str] = (),
    fallback_units: Sequence[str] = (),
) -> Optional[CurrencyCandidate]:
    """First candidate matching a preferred unit, then a fallback unit, then the first one."""
    for unit in (*preferred_units, *fallback_units):
        for candidate in candidates:
            if candidate.unit == unit:
                return candidate
    return candidates[0] if candidates else None


def sentence_containing(text: str, position: int) -> str:
    """The sentence of `text` that contains character offset `position`."""
    offset = 0
    for sentence in SENTENCE_BREAK.split(text):
        end = offset + len(sentence)
        if position < end:
            return sentence.strip()
        # account for the whitespace consumed by the split
        gap = re.match(r"\s*", text[end:]).end()
        offset = end + gap
    return text.strip()


def find_best_passage(passages: Sequence[Passage], keywords: Sequence[str]) -> Optional[Passage]:
    """Highest-ranked passage that mentions at least one keyword.

    Ranking starts from the retrieval score, adds 4 per keyword present and
    subtracts 2 per keyword missing, with small bonuses for per-minute phrasing
    and currency amounts. Ties keep retrieval order.
    """
    lowered_keywords = [k.lower() for k in keywords]
    best: Optional[Passage] = None
    best_score = float("-inf")
    for passage in passages:
        lower = passage.text.lower()
        hits = sum(1 for k in lowered_keywords if k in lower)
        if keywords and not hits:
            continue
        score = passage.score + 4 * hits - 2 * (len(lowered_keywords) - hits)
        if "per minute" in lower or re.search(r"/\s*minute", lower):
            score += 1.5
        if re.search(r"\$[0-9]", lower):
            score += 1
        if score > best_score:
            best = passage
            best_score = score
    return best


def extract_per_minute(text: str) -> Optional[Tuple[float, str]]:
    """First `$X per minute` / `$X/min` rate in `text`, with the sentence it appears in."""
    match = PER_MINUTE_PATTERN.search(text)
    if not match:
        return None
    return float(match.group(1)), sentence_containing(text, match.start())


def extract_minutes(text: str) -> Optional[Tuple[int, str]]:
    """First `N minute(s)` allowance in `text`, with the sentence it appears in."""
    match = MINUTES_PATTERN.search(text)
    if not match:
        return None
    return int(match.group(1)), sentence_containing(text, match.start())


def _format_default(value: float) -> str:
    return f"{value:g}"


def _resolve_currency(
    spec: MetricSpec,
    passages: Sequence[Passage],
    registry: CitationRegistry,
    assumptions: List[str],
) -> PolicyValue:
    exclusions = [re.compile(p, re.IGNORECASE) for p in spec.exclude_phrases]
    ordered = sorted(passages, key=lambda p: p.score, reverse=True)

    for passage in ordered:
        lower = passage.text.lower()
        if any(pattern.search(lower) for pattern in exclusions):
            continue
        if not any(kw.lower() in lower for kw in spec.keywords):
            continue

        candidates = extract_currency_candidates(passage.text)
        if not candidates:
            continue

        filtered = filter_plausible(candidates, spec.min_value, spec.max_value)
        selected = select_candidate(filtered, spec.preferred_units, spec.fallback_units)
        if selected is None:
            continue

        value = selected.value
        if spec.convert_year_to_month and selected.unit == "year":
            value = value / 12
            assumptions.append(ANNUAL_CONVERSION_NOTE)

        citation_id = registry.register(selected.snippet, passage.source)
        return PolicyValue(metric_key=spec.key, value=value, citation_id=citation_id)

    raise ExtractionWarning(
        spec.assumption_note
        or f"Unable to locate {spec.key} in pricing text; treated as {_format_default(spec.default)}."
    )


def _resolve_per_minute(
    spec: MetricSpec,
    passages: Sequence[Passage],
    registry: CitationRegistry,
) -> PolicyValue:
    passage = find_best_passage(passages, spec.keywords)
    if passage is None:
        raise ExtractionWarning(
            f"Unable to locate per-minute rate for {spec.key}; treated as {_format_default(spec.default)}."
        )
    extraction = extract_per_minute(passage.text)
    if extraction is None:
        raise ExtractionWarning(
            f"No per-minute rate found for {spec.key}; treated as {_format_default(spec.default)}."
        )
    value, snippet = extraction
    return PolicyValue(metric_key=spec.key, value=value, citation_id=registry.register(snippet, passage.source))


def _resolve_minutes(
    spec: MetricSpec,
    passages: Sequence[Passage],
    registry: CitationRegistry,
) -> PolicyValue:
    passage = find_best_passage(passages, spec.keywords)
    if passage is None:
        raise ExtractionWarning(
            f"Unable to locate included minutes for {spec.key}; defaulted to {_format_default(spec.default)} minutes."
        )
    extraction = extract_minutes(passage.text)
    if extraction is None:
        raise ExtractionWarning(
            f"No explicit minutes mentioned for {spec.key}; defaulted to {_format_default(spec.default)} minutes."
        )
    value, snippet = extraction
    return PolicyValue(metric_key=spec.key, value=value, citation_id=registry.register(snippet, passage.source))


def resolve_metric(
    spec: MetricSpec,
    passages: Sequence[Passage],
    registry: CitationRegistry,
    assumptions: List[str],
) -> PolicyValue:
    """Bind one metric, falling back to its default plus an assumption when extraction fails."""
    try:
        if spec.strategy is Strategy.PER_MINUTE:
            return _resolve_per_minute(spec, passages, registry)
        if spec.strategy is Strategy.MINUTES:
            return _resolve_minutes(spec, passages, registry)
        return _resolve_currency(spec, passages, registry, assumptions)
    except ExtractionWarning as warning:
        logger.warning("Tariff extraction fell back to default: %s", warning.message)
        assumptions.append(warning.message)
        return PolicyValue(metric_key=spec.key, value=spec.default, citation_id=None)


def parse_policy(
    pricing_url: str,
    retrievals: Mapping[str, RetrievalResult],
    *,
    metrics: Sequence[MetricSpec] = POLICY_METRICS,
) -> PolicyExtraction:
    """Resolve every metric from its retrieval result.

    `retrievals` maps metric keys to the ranked passages returned for that
    metric's query; a missing key is treated as an empty passage list.
    """
    fetched = [r.fetched_at for r in retrievals.values() if r.fetched_at]
    captured_at = fetched[0] if fetched else datetime.now(timezone.utc).isoformat()
    registry = CitationRegistry(captured_at=captured_at)
    assumptions: List[str] = []
    values: Dict[str, PolicyValue] = {}

    for spec in metrics:
        result = retrievals.get(spec.key)
        passages = result.passages if result else []
        values[spec.key] = resolve_metric(spec, passages, registry, assumptions)

    return PolicyExtraction(
        pricing_url=pricing_url,
        captured_at=captured_at,
        values=values,
        citations=list(registry.citations),
        assumptions=assumptions,
    )
