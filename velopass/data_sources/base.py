"""Interfaces for the two external collaborators a run depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol


class TripQuerySource(Protocol):
    """Anything that can answer read-only SQL over a loaded trip dataset."""

    table_name: str

    def open(self) -> "TripQuerySource":
        """Load the dataset; raise QueryError if it cannot be read."""
        ...

    def query(self, sql: str) -> List[Dict[str, Any]]:
        """Run a read-only statement and return normalized rows."""
        ...

    def schema_sql(self) -> str:
        """Return a read-only statement whose rows carry a `name` per column."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...


class PageFetcher(Protocol):
    """Anything that can return the raw HTML of a pricing page."""

    def fetch(self, url: str) -> str:
        """Return the page body or raise FetchError."""
        ...


@dataclass
class CallablePageFetcher(PageFetcher):
    """Wrap a plain function so it can stand in for a fetcher backend."""

    fetch_html: Callable[[str], str]

    def fetch(self, url: str) -> str:
        """Delegate to the configured callable."""
        return self.fetch_html(url)
