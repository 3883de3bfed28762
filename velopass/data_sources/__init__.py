"""External collaborators: the tabular query engine and the pricing-page fetcher."""

from .base import CallablePageFetcher, PageFetcher, TripQuerySource
from .duckdb_source import READ_ONLY_PREFIXES, DuckDBTripSource, is_read_only, normalize_row
from .factory import build_trip_source
from .pricing_page import HttpPageFetcher, fetch_pricing_html

__all__ = [
    "build_trip_source",
    "CallablePageFetcher",
    "DuckDBTripSource",
    "HttpPageFetcher",
    "PageFetcher",
    "READ_ONLY_PREFIXES",
    "TripQuerySource",
    "fetch_pricing_html",
    "is_read_only",
    "normalize_row",
]
