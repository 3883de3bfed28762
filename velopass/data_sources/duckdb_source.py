"""Read-only SQL over an uploaded trip dataset, backed by an in-memory DuckDB.

The dataset is loaded exactly once into a uniquely named table. After that the
source only accepts a single statement whose leading keyword is on a
read-only allow-list; anything else, stacked statements included, is rejected
before it reaches the engine.
"""

from __future__ import annotations

import datetime as dt
import re
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List

import duckdb

from velopass.errors import QueryError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="velopass/duckdb_source")

READ_ONLY_PREFIXES = ("select", "with", "pragma", "describe", "explain", "show")

CSV_READER = "read_csv_auto('{path}', header=true)"
PARQUET_READER = "read_parquet('{path}')"
JSON_READER = "read_json_auto('{path}')"


def _remove_string_literals(sql: str) -> str:
    """Blank out quoted strings and identifiers so their contents are not parsed."""
    sql = re.sub(r"'([^']|'')*'", "''", sql)
    return re.sub(r'"([^"]|"")*"', '""', sql)


def has_stacked_statements(sql: str) -> bool:
    """Return True if a `;` is followed by anything other than whitespace or a comment."""
    stripped = _remove_string_literals(sql)
    semicolons = [m.start() for m in re.finditer(r";", stripped)]
    if len(semicolons) > 1:
        return True
    if semicolons:
        remaining = stripped[semicolons[0] + 1:].strip()
        if remaining and not remaining.startswith("--"):
            return True
    return False


def is_read_only(sql: str) -> bool:
    """Return True for a single statement that starts with an allow-listed keyword."""
    if not sql or not isinstance(sql, str):
        return False
    trimmed = sql.strip().lower()
    if not any(trimmed.startswith(prefix) for prefix in READ_ONLY_PREFIXES):
        return False
    return not has_stacked_statements(sql)


def normalize_value(value: Any) -> Any:
    """Convert engine-native values into plain JSON-friendly Python values."""
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return value


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize every value in a result row."""
    return {key: normalize_value(value) for key, value in row.items()}


class DuckDBTripSource:
    """Trip dataset loaded into an in-memory DuckDB connection.

    Usage:
        with DuckDBTripSource("trips.csv") as source:
            rows = source.query("SELECT COUNT(*) AS n FROM " + source.table_name)
    """

    def __init__(self, dataset_path: Path | str, *, reader: str = CSV_READER) -> None:
        """Remember where the dataset lives; nothing is loaded until open()."""
        self.dataset_path = Path(dataset_path)
        self.reader = reader
        self.table_name = f"trips_{uuid.uuid4().hex[:12]}"
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> "DuckDBTripSource":
        """Create the in-memory database and load the dataset once."""
        if self._conn is not None:
            return self
        escaped = str(self.dataset_path).replace("'", "''")
        load_sql = (
            f"CREATE OR REPLACE TABLE {self.table_name} AS "
            f"SELECT * FROM {self.reader.format(path=escaped)}"
        )
        conn = duckdb.connect(":memory:")
        try:
            conn.execute(load_sql)
        except duckdb.Error as e:
            conn.close()
            raise QueryError(f"Failed to load trip dataset: {e}") from e
        self._conn = conn
        logger.info("Loaded trip dataset into %s", self.table_name)
        return self

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBTripSource":
        """Context manager entry."""
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    def query(self, sql: str) -> List[Dict[str, Any]]:
        """Execute a read-only statement and return normalized rows."""
        if not is_read_only(sql):
            raise QueryError("Only read-only SQL statements are permitted.")
        if self._conn is None:
            raise QueryError("Trip dataset is not loaded.")
        try:
            result = self._conn.execute(sql)
            raw_rows = result.fetchall()
            columns = [desc[0] for desc in result.description] if result.description else []
        except duckdb.Error as e:
            raise QueryError(f"Database error: {e}") from e
        return [normalize_row(dict(zip(columns, row))) for row in raw_rows]

    def schema_sql(self) -> str:
        """Read-only statement listing the loaded table's columns in file order."""
        return f"PRAGMA table_info('{self.table_name}')"
