"""Data-quality checks for a dataset file.

Each check returns a list of Issue records rather than raising, so a single
run reports every problem at once:

- columns: every table exists with exactly its documented columns
- primary_keys: primary keys are present and unique
- foreign_keys: user_id references point at existing users
- flags: flag columns hold only the text literals "1" and "0"
- timestamps: timestamp columns are null or parse as an instant

Checks that need a column silently skip it when the column is missing; the
columns check already reports that.
"""

import sqlite3
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
import structlog

from .loader import connect, parse_timestamps
from .schema import FLAG, FLAG_FALSE, FLAG_TRUE, TABLES, TIMESTAMP

logger = structlog.get_logger(__name__)

MAX_EXAMPLES = 5


@dataclass
class Issue:
    """One failed check on a table or column."""

    table: str
    column: str | None
    check: str
    message: str
    count: int = 0
    examples: list = field(default_factory=list)

    def __str__(self) -> str:
        where = f"{self.table}.{self.column}" if self.column else self.table
        text = f"[{self.check}] {where}: {self.message}"
        if self.examples:
            text += f" (e.g. {', '.join(repr(e) for e in self.examples)})"
        return text


@dataclass
class ValidationReport:
    """All issues found in one database."""

    path: Path
    issues: list[Issue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def by_check(self) -> dict[str, list[Issue]]:
        grouped: dict[str, list[Issue]] = defaultdict(list)
        for issue in self.issues:
            grouped[issue.check].append(issue)
        return dict(grouped)


def existing_columns(conn: sqlite3.Connection) -> dict[str, list[str]]:
    """Map each table actually present in the file to its column names."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return {
        name: [info[1] for info in conn.execute(f'PRAGMA table_info("{name}")')]
        for (name,) in rows
    }


def _has(present: dict[str, list[str]], table: str, column: str) -> bool:
    return column in present.get(table, [])


def check_columns(conn: sqlite3.Connection) -> list[Issue]:
    """Every documented table exists with exactly its documented columns."""
    present = existing_columns(conn)
    issues = []
    for name, spec in TABLES.items():
        if name not in present:
            issues.append(Issue(name, None, "columns", "table is missing"))
            continue
        actual = present[name]
        missing = [c for c in spec.column_names if c not in actual]
        extra = [c for c in actual if c not in spec.column_names]
        for col in missing:
            issues.append(Issue(name, col, "columns", "documented column is missing"))
        for col in extra:
            issues.append(Issue(name, col, "columns", "column is not documented"))
    return issues


def check_primary_keys(conn: sqlite3.Connection) -> list[Issue]:
    """Primary keys are non-null and unique."""
    present = existing_columns(conn)
    issues = []
    for name, spec in TABLES.items():
        pk = spec.primary_key
        if not _has(present, name, pk):
            continue
        nulls = conn.execute(f"SELECT COUNT(*) FROM {name} WHERE {pk} IS NULL").fetchone()[0]
        if nulls:
            issues.append(Issue(name, pk, "primary_keys", f"{nulls} null primary key(s)", nulls))
        dupes = conn.execute(
            f"SELECT {pk} FROM {name} WHERE {pk} IS NOT NULL GROUP BY {pk} HAVING COUNT(*) > 1"
        ).fetchall()
        if dupes:
            issues.append(Issue(
                name, pk, "primary_keys",
                f"{len(dupes)} duplicated primary key value(s)",
                len(dupes),
                [row[0] for row in dupes[:MAX_EXAMPLES]],
            ))
    return issues


def check_foreign_keys(conn: sqlite3.Connection) -> list[Issue]:
    """Non-null foreign keys reference an existing users.user_id."""
    present = existing_columns(conn)
    issues = []
    for name, spec in TABLES.items():
        for col in spec.foreign_keys:
            ref_table, ref_col = col.references.split(".")
            if not (_has(present, name, col.name) and _has(present, ref_table, ref_col)):
                continue
            orphans = conn.execute(
                f"""
                SELECT t.{col.name} FROM {name} t
                LEFT JOIN {ref_table} r ON t.{col.name} = r.{ref_col}
                WHERE t.{col.name} IS NOT NULL AND r.{ref_col} IS NULL
                """
            ).fetchall()
            if orphans:
                values = sorted({row[0] for row in orphans}, key=str)
                issues.append(Issue(
                    name, col.name, "foreign_keys",
                    f"{len(orphans)} row(s) reference a missing {col.references}",
                    len(orphans),
                    values[:MAX_EXAMPLES],
                ))
    return issues


def check_flags(conn: sqlite3.Connection) -> list[Issue]:
    """Flag columns contain only the text "1" or "0" (null is a violation)."""
    present = existing_columns(conn)
    issues = []
    for name, spec in TABLES.items():
        for col in spec.columns_of_kind(FLAG):
            if not _has(present, name, col):
                continue
            bad = conn.execute(
                f"SELECT {col} FROM {name} WHERE typeof({col}) != 'text' OR {col} NOT IN (?, ?)",
                (FLAG_TRUE, FLAG_FALSE),
            ).fetchall()
            if bad:
                values = []
                for (value,) in bad:
                    if value not in values:
                        values.append(value)
                issues.append(Issue(
                    name, col, "flags",
                    f"{len(bad)} value(s) are not the literal '1' or '0'",
                    len(bad),
                    values[:MAX_EXAMPLES],
                ))
    return issues


def check_timestamps(conn: sqlite3.Connection) -> list[Issue]:
    """Timestamp columns are null or parse as an instant (naive means UTC)."""
    present = existing_columns(conn)
    issues = []
    for name, spec in TABLES.items():
        for col in spec.columns_of_kind(TIMESTAMP):
            if not _has(present, name, col):
                continue
            values = pd.Series(
                [row[0] for row in conn.execute(f"SELECT {col} FROM {name} WHERE {col} IS NOT NULL")],
                dtype=object,
            )
            if values.empty:
                continue
            is_text = values.map(lambda v: isinstance(v, str))
            parsed = parse_timestamps(values.where(is_text))
            bad = values[~is_text | parsed.isna()]
            if not bad.empty:
                issues.append(Issue(
                    name, col, "timestamps",
                    f"{len(bad)} value(s) do not parse as a UTC instant",
                    len(bad),
                    list(dict.fromkeys(bad.tolist()))[:MAX_EXAMPLES],
                ))
    return issues


CHECKS = (check_columns, check_primary_keys, check_foreign_keys, check_flags, check_timestamps)


def validate_database(path: Path) -> ValidationReport:
    """Run every check against a dataset file."""
    report = ValidationReport(path=Path(path))
    conn = connect(path)
    try:
        for check in CHECKS:
            found = check(conn)
            logger.debug("check_finished", check=check.__name__, issues=len(found))
            report.issues.extend(found)
    finally:
        conn.close()
    return report
