"""Table definitions for the auth dataset.

The five tables model the authentication subsystem of a web application:

- users: identity and credential metadata (primary key user_id)
- sessions: issued session tokens with a validity window
- api_keys: long-lived secrets with a scope and a revocation flag
- password_resets: reset requests and when (if ever) they were used
- audit_log: append-only event stream, user_id is optional

Flags are stored as the TEXT literals "1" / "0" and timestamps as ISO 8601
UTC TEXT (``2024-03-01T12:00:00Z``). Loading code casts them; see loader.py.
The DDL only constrains keys; value formats are checked by validate.py, so a
damaged copy can still hold a NULL flag or an unparseable timestamp.
"""

import sqlite3
from dataclasses import dataclass, field

# Column kinds
ID = "id"
INTEGER = "integer"
TEXT = "text"
FLAG = "flag"
TIMESTAMP = "timestamp"

FLAG_TRUE = "1"
FLAG_FALSE = "0"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ROLES = ("user", "support", "admin", "service")
SCOPES = ("read", "write", "admin")

EVENT_TYPES = (
    "login_success",
    "login_failure",
    "logout",
    "password_reset_requested",
    "password_reset_completed",
    "api_key_created",
    "api_key_revoked",
    "mfa_enabled",
    "role_changed",
    "account_locked",
)


@dataclass(frozen=True)
class Column:
    """A single documented column."""

    name: str
    kind: str
    nullable: bool = False
    references: str | None = None  # "table.column"
    unique: bool = False

    @property
    def sql_type(self) -> str:
        return "INTEGER" if self.kind in (ID, INTEGER) else "TEXT"


@dataclass(frozen=True)
class TableSpec:
    """A documented table: its name, primary key and ordered columns."""

    name: str
    primary_key: str
    columns: tuple[Column, ...] = field(default_factory=tuple)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def foreign_keys(self) -> list[Column]:
        return [c for c in self.columns if c.references]

    def columns_of_kind(self, kind: str) -> list[str]:
        return [c.name for c in self.columns if c.kind == kind]

    def column(self, name: str) -> Column:
        for col in self.columns:
            if col.name == name:
                return col
        raise ValueError(f"Table {self.name} has no column {name!r}")


USERS = TableSpec(
    name="users",
    primary_key="user_id",
    columns=(
        Column("user_id", ID),
        Column("username", TEXT, unique=True),
        Column("email", TEXT),
        Column("password_hash", TEXT),
        Column("salt", TEXT),
        Column("role", TEXT),
        Column("mfa_enabled", FLAG),
        Column("is_locked", FLAG),
        Column("created_at", TIMESTAMP),
        Column("last_login", TIMESTAMP, nullable=True),
    ),
)

SESSIONS = TableSpec(
    name="sessions",
    primary_key="session_id",
    columns=(
        Column("session_id", ID),
        Column("user_id", ID, references="users.user_id"),
        Column("session_token", TEXT, unique=True),
        Column("ip_address", TEXT),
        Column("user_agent", TEXT),
        Column("created_at", TIMESTAMP),
        Column("expires_at", TIMESTAMP),
        Column("is_active", FLAG),
    ),
)

API_KEYS = TableSpec(
    name="api_keys",
    primary_key="key_id",
    columns=(
        Column("key_id", ID),
        Column("user_id", ID, references="users.user_id"),
        Column("key_prefix", TEXT),
        Column("api_key", TEXT, unique=True),
        Column("scope", TEXT),
        Column("created_at", TIMESTAMP),
        Column("last_used_at", TIMESTAMP, nullable=True),
        Column("revoked", FLAG),
    ),
)

PASSWORD_RESETS = TableSpec(
    name="password_resets",
    primary_key="reset_id",
    columns=(
        Column("reset_id", ID),
        Column("user_id", ID, references="users.user_id"),
        Column("reset_token", TEXT, unique=True),
        Column("ip_address", TEXT),
        Column("requested_at", TIMESTAMP),
        Column("used_at", TIMESTAMP, nullable=True),
    ),
)

AUDIT_LOG = TableSpec(
    name="audit_log",
    primary_key="log_id",
    columns=(
        Column("log_id", ID),
        Column("user_id", ID, nullable=True, references="users.user_id"),
        Column("event_type", TEXT),
        Column("ip_address", TEXT),
        Column("created_at", TIMESTAMP),
        Column("details", TEXT),
    ),
)

# Creation order: users must exist before anything references it
TABLES: dict[str, TableSpec] = {
    t.name: t for t in (USERS, SESSIONS, API_KEYS, PASSWORD_RESETS, AUDIT_LOG)
}
TABLE_NAMES: list[str] = list(TABLES)


def get_table(name: str) -> TableSpec:
    """Look up a table definition by name."""
    try:
        return TABLES[name]
    except KeyError:
        raise ValueError(
            f"Unknown table: {name!r} (expected one of: {', '.join(TABLE_NAMES)})"
        ) from None


def create_table_sql(table: TableSpec) -> str:
    """Build the CREATE TABLE statement for a table definition."""
    lines = []
    for col in table.columns:
        parts = [col.name, col.sql_type]
        if col.name == table.primary_key:
            parts.append("PRIMARY KEY")
        elif col.kind == ID and not col.nullable:
            parts.append("NOT NULL")
        if col.unique:
            parts.append("UNIQUE")
        if col.references:
            ref_table, ref_col = col.references.split(".")
            parts.append(f"REFERENCES {ref_table}({ref_col})")
        lines.append("    " + " ".join(parts))
    body = ",\n".join(lines)
    return f"CREATE TABLE {table.name} (\n{body}\n)"


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all five tables on an empty database."""
    for table in TABLES.values():
        conn.execute(create_table_sql(table))
    conn.execute("CREATE INDEX ix_sessions_user_id ON sessions (user_id)")
    conn.execute("CREATE INDEX ix_audit_log_created_at ON audit_log (created_at)")
    conn.commit()
