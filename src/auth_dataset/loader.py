"""Load dataset tables into pandas DataFrames.

The two operations every exercise starts with:

    df = read_table(conn, "sessions")      # SELECT * into a DataFrame
    df = cast_columns(df, "sessions")      # flags -> bool, timestamps -> UTC

Casting never raises on bad values: unparseable timestamps and unknown flag
literals become missing values, the same as ``errors="coerce"``.
"""

import sqlite3
from pathlib import Path

import pandas as pd
import structlog

from .schema import FLAG, FLAG_FALSE, FLAG_TRUE, ID, INTEGER, TABLE_NAMES, TIMESTAMP, get_table

logger = structlog.get_logger(__name__)

FLAG_VALUES = {FLAG_TRUE: True, FLAG_FALSE: False}

# pandas reads these words as the current clock time
RELATIVE_WORDS = {"now", "today"}

# pandas wraps sqlite3 errors raised inside read_sql_query in its own type
DATABASE_ERRORS = (sqlite3.Error, pd.errors.DatabaseError)


def connect(path: Path) -> sqlite3.Connection:
    """Open a dataset file read-only."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Database not found: {path}")
    return sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)


def read_table(conn: sqlite3.Connection, table: str) -> pd.DataFrame:
    """Read a whole table with ``SELECT *``."""
    spec = get_table(table)
    return pd.read_sql_query(f"SELECT * FROM {spec.name}", conn)


def parse_timestamps(values: pd.Series) -> pd.Series:
    """Parse timestamp text to UTC, coercing anything unparseable to NaT.

    "now" and "today" are not instants and become NaT too.
    """
    relative = values.map(lambda v: isinstance(v, str) and v.strip().lower() in RELATIVE_WORDS)
    return pd.to_datetime(
        values.where(~relative.astype(bool)), utc=True, errors="coerce", format="ISO8601"
    )


def cast_columns(df: pd.DataFrame, table: str) -> pd.DataFrame:
    """Return a copy of ``df`` with the table's documented column types."""
    spec = get_table(table)
    out = df.copy()

    for name in spec.columns_of_kind(FLAG):
        if name in out.columns:
            # Only the exact text literals count; 1 stored as INTEGER does not
            mapped = out[name].map(lambda v: FLAG_VALUES.get(v) if isinstance(v, str) else None)
            out[name] = mapped.astype("boolean")

    for name in spec.columns_of_kind(TIMESTAMP):
        if name in out.columns:
            out[name] = parse_timestamps(out[name])

    for name in spec.columns_of_kind(ID) + spec.columns_of_kind(INTEGER):
        if name in out.columns:
            # SQLite keeps REAL values in INTEGER columns; 1.5 is not an id
            num = pd.to_numeric(out[name], errors="coerce")
            out[name] = num.where((num % 1 == 0).fillna(False)).astype("Int64")

    return out


def load_table(path: Path, table: str, cast: bool = True) -> pd.DataFrame:
    """Read one table from a dataset file."""
    conn = connect(path)
    try:
        df = read_table(conn, table)
    finally:
        conn.close()
    return cast_columns(df, table) if cast else df


def load_dataset(path: Path, cast: bool = True) -> dict[str, pd.DataFrame]:
    """Read all five tables, keyed by table name."""
    conn = connect(path)
    try:
        frames = {name: read_table(conn, name) for name in TABLE_NAMES}
    finally:
        conn.close()

    logger.debug("dataset_loaded", path=str(path), rows={k: len(v) for k, v in frames.items()})
    if cast:
        frames = {name: cast_columns(df, name) for name, df in frames.items()}
    return frames
