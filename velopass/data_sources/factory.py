"""Factory helpers for choosing how a trip dataset is loaded."""

from __future__ import annotations

from pathlib import Path

from velopass.data_sources.duckdb_source import (
    CSV_READER,
    JSON_READER,
    PARQUET_READER,
    DuckDBTripSource,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")

READERS_BY_SUFFIX = {
    ".csv": CSV_READER,
    ".tsv": CSV_READER,
    ".txt": CSV_READER,
    ".parquet": PARQUET_READER,
    ".json": JSON_READER,
    ".ndjson": JSON_READER,
    ".jsonl": JSON_READER,
}


def build_trip_source(dataset_locator: Path | str) -> DuckDBTripSource:
    """Instantiate a DuckDB trip source with the reader matching the file extension.

    Unknown or missing extensions (e.g. extension-less upload temp files) are
    read as CSV.
    """
    suffix = Path(dataset_locator).suffix.lower()
    reader = READERS_BY_SUFFIX.get(suffix, CSV_READER)
    logger.debug("Using %s for dataset suffix '%s'", reader.split("(")[0], suffix or "<none>")
    return DuckDBTripSource(dataset_locator, reader=reader)
