"""Passage extraction and lexical relevance scoring over a pricing page.

The page is fetched lazily on the first query and cached on the retriever
instance, so a run fetches it at most once no matter how many tariff lookups
it performs. Each run owns its own retriever; nothing is shared across runs.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, List, Sequence

from bs4 import BeautifulSoup

from velopass.domain import Passage, RetrievalResult
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="velopass/retriever")

PASSAGE_SELECTOR = "p, li, h1, h2, h3, h4, h5, h6, span, strong, div, table td, table th, dd, dt"
NON_CONTENT_TAGS = ("script", "style", "noscript", "template")

MIN_PASSAGE_CHARS = 25
MAX_PASSAGE_CHARS = 600
DEFAULT_TOP_K = 3

TOKEN_PATTERN = re.compile(r"[a-z0-9]+")
CURRENCY_HINT = re.compile(r"\$[0-9]")
MINUTE_HINT = re.compile(r"minute", re.IGNORECASE)
MEMBER_HINT = re.compile(r"member", re.IGNORECASE)

TOKEN_WEIGHT = 2.0
CURRENCY_BONUS = 1.5
MINUTE_BONUS = 1.0
MEMBER_BONUS = 0.5


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric tokens."""
    return TOKEN_PATTERN.findall(text.lower())


def score_passage(text: str, query_tokens: Sequence[str]) -> float:
    """Score a passage against query tokens.

    Each query token contributes twice its occurrence count in the passage;
    currency amounts, "minute" and "member" add fixed bonuses.
    """
    tokens = tokenize(text)
    if not tokens:
        return 0.0
    score = 0.0
    for token in query_tokens:
        occurrences = tokens.count(token)
        if occurrences:
            score += TOKEN_WEIGHT * occurrences
    if CURRENCY_HINT.search(text):
        score += CURRENCY_BONUS
    if MINUTE_HINT.search(text):
        score += MINUTE_BONUS
    if MEMBER_HINT.search(text):
        score += MEMBER_BONUS
    return score


def extract_passages(
    html: str,
    source: str,
    *,
    min_chars: int = MIN_PASSAGE_CHARS,
    max_chars: int = MAX_PASSAGE_CHARS,
) -> List[Passage]:
    """Walk structural content nodes and keep unique, length-bounded text segments in document order."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()

    segments: List[Passage] = []
    seen: set[str] = set()
    for el in soup.select(PASSAGE_SELECTOR):
        text = " ".join(el.get_text(" ").split())
        if not text:
            continue
        if len(text) < min_chars or len(text) > max_chars:
            continue
        if text in seen:
            continue
        seen.add(text)
        segments.append(Passage(text=text, source=source))
    return segments


def rank_passages(passages: Sequence[Passage], query: str, k: int) -> List[Passage]:
    """Score, drop non-positive scores, and keep the top `k` (ties keep extraction order)."""
    query_tokens = tokenize(query)
    scored = [
        p.model_copy(update={"score": score_passage(p.text, query_tokens)})
        for p in passages
    ]
    positive = [p for p in scored if p.score > 0]
    # sorted() is stable, so equal scores stay in page order
    return sorted(positive, key=lambda p: p.score, reverse=True)[:k]


class PassageRetriever:
    """Per-run pricing-page retriever with a fetch-once passage cache."""

    def __init__(
        self,
        pricing_url: str,
        fetch_html: Callable[[str], str],
        *,
        top_k: int = DEFAULT_TOP_K,
        min_chars: int = MIN_PASSAGE_CHARS,
        max_chars: int = MAX_PASSAGE_CHARS,
    ) -> None:
        self.pricing_url = pricing_url
        self._fetch_html = fetch_html
        self.top_k = top_k
        self.min_chars = min_chars
        self.max_chars = max_chars
        self._passages: List[Passage] | None = None
        self.fetched_at: str | None = None
        self.fetch_count = 0

    @property
    def is_loaded(self) -> bool:
        return self._passages is not None

    def ensure_loaded(self) -> List[Passage]:
        """Fetch and split the page on first use; FetchError propagates and nothing is cached."""
        if self._passages is None:
            self.fetch_count += 1
            html = self._fetch_html(self.pricing_url)
            self._passages = extract_passages(
                html, self.pricing_url, min_chars=self.min_chars, max_chars=self.max_chars
            )
            self.fetched_at = datetime.now(timezone.utc).isoformat()
            logger.info(
                "Extracted %d passages from %s", len(self._passages), mask_url(self.pricing_url)
            )
        return self._passages

    def retrieve(self, query: str, k: int | None = None) -> RetrievalResult:
        """Return the top-k passages for `query`."""
        if not query or not query.strip():
            raise ValueError("Query text is required.")
        passages = self.ensure_loaded()
        ranked = rank_passages(passages, query, k or self.top_k)
        return RetrievalResult(
            query=query,
            source=self.pricing_url,
            passages=ranked,
            fetched_at=self.fetched_at,
        )
