"""Tests for the data-quality checks."""

import sqlite3

import pytest

from auth_dataset.schema import create_schema
from auth_dataset.validate import Issue, check_flags, check_primary_keys, validate_database


def run_sql(path, *statements):
    conn = sqlite3.connect(path)
    try:
        for statement in statements:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


class TestCleanDataset:
    """A freshly generated dataset passes every check."""

    def test_clean_dataset_passes(self, dataset_db):
        report = validate_database(dataset_db)
        assert report.ok, [str(i) for i in report.issues]
        assert report.by_check() == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            validate_database(tmp_path / "missing.db")


class TestColumns:
    """Each table exists with exactly its documented columns."""

    def test_extra_column(self, db_copy):
        run_sql(db_copy, "ALTER TABLE users ADD COLUMN phone TEXT")
        issues = validate_database(db_copy).by_check()["columns"]
        assert [(i.table, i.column, i.message) for i in issues] == [
            ("users", "phone", "column is not documented"),
        ]

    def test_renamed_column(self, db_copy):
        run_sql(db_copy, "ALTER TABLE api_keys RENAME COLUMN scope TO scopes")
        issues = validate_database(db_copy).by_check()["columns"]
        assert {(i.column, i.message) for i in issues} == {
            ("scope", "documented column is missing"),
            ("scopes", "column is not documented"),
        }

    def test_missing_table_skips_other_checks(self, db_copy):
        run_sql(db_copy, "DROP TABLE audit_log")
        report = validate_database(db_copy)
        assert [(i.table, i.check) for i in report.issues] == [("audit_log", "columns")]

    def test_missing_flag_column_is_only_reported_once(self, db_copy):
        run_sql(db_copy, "ALTER TABLE sessions DROP COLUMN is_active")
        report = validate_database(db_copy)
        assert [(i.column, i.check) for i in report.issues] == [("is_active", "columns")]


class TestForeignKeys:
    """Foreign keys reference existing users."""

    def test_orphan_session(self, db_copy):
        run_sql(db_copy, "UPDATE sessions SET user_id = 99999 WHERE session_id = 1")
        (issue,) = validate_database(db_copy).by_check()["foreign_keys"]
        assert issue.table == "sessions"
        assert issue.count == 1
        assert issue.examples == [99999]

    def test_orphans_counted_per_row(self, db_copy):
        run_sql(db_copy, "UPDATE api_keys SET user_id = 5000 WHERE key_id IN (1, 2)")
        (issue,) = validate_database(db_copy).by_check()["foreign_keys"]
        assert issue.count == 2
        assert issue.examples == [5000]

    def test_null_audit_user_is_allowed(self, db_copy):
        run_sql(db_copy, "UPDATE audit_log SET user_id = NULL WHERE log_id = 1")
        assert validate_database(db_copy).ok


class TestFlags:
    """Flags hold only the literals '1' and '0'."""

    def test_word_flag(self, db_copy):
        run_sql(db_copy, "UPDATE users SET mfa_enabled = 'yes' WHERE user_id = 1")
        (issue,) = validate_database(db_copy).by_check()["flags"]
        assert (issue.table, issue.column, issue.count) == ("users", "mfa_enabled", 1)
        assert issue.examples == ["yes"]

    def test_null_flag(self, db_copy):
        run_sql(db_copy, "UPDATE api_keys SET revoked = NULL WHERE key_id = 1")
        (issue,) = validate_database(db_copy).by_check()["flags"]
        assert issue.column == "revoked"
        assert issue.examples == [None]

    def test_padded_flag(self, db_copy):
        run_sql(db_copy, "UPDATE sessions SET is_active = ' 1' WHERE session_id = 1")
        (issue,) = validate_database(db_copy).by_check()["flags"]
        assert issue.examples == [" 1"]

    def test_integer_storage_class(self):
        # A TEXT column would coerce 1 to '1'; a drifted INTEGER column keeps it
        conn = sqlite3.connect(":memory:")
        create_schema(conn)
        conn.execute("DROP TABLE api_keys")
        conn.execute(
            "CREATE TABLE api_keys (key_id INTEGER PRIMARY KEY, user_id INTEGER, "
            "key_prefix TEXT, api_key TEXT, scope TEXT, created_at TEXT, "
            "last_used_at TEXT, revoked INTEGER)"
        )
        conn.executemany(
            "INSERT INTO api_keys (key_id, revoked) VALUES (?, ?)",
            [(1, 1), (2, 0), (3, "0")],
        )
        issues = check_flags(conn)
        conn.close()

        (issue,) = issues
        assert (issue.table, issue.column, issue.count) == ("api_keys", "revoked", 3)
        assert issue.examples == [1, 0]


class TestTimestamps:
    """Timestamps are null or parse as instants."""

    def test_locale_format(self, db_copy):
        run_sql(db_copy, "UPDATE sessions SET created_at = '31/12/2024 10:00' WHERE session_id = 1")
        (issue,) = validate_database(db_copy).by_check()["timestamps"]
        assert (issue.table, issue.column, issue.count) == ("sessions", "created_at", 1)
        assert issue.examples == ["31/12/2024 10:00"]

    def test_empty_string_is_not_null(self, db_copy):
        run_sql(db_copy, "UPDATE audit_log SET created_at = '' WHERE log_id = 1")
        (issue,) = validate_database(db_copy).by_check()["timestamps"]
        assert issue.table == "audit_log"

    def test_relative_words_are_rejected(self, db_copy):
        run_sql(
            db_copy,
            "UPDATE sessions SET created_at = 'now' WHERE session_id = 1",
            "UPDATE users SET last_login = 'today' WHERE user_id = 1",
        )
        issues = validate_database(db_copy).by_check()["timestamps"]
        assert {(i.table, i.column, i.count) for i in issues} == {
            ("users", "last_login", 1),
            ("sessions", "created_at", 1),
        }

    def test_offsets_are_accepted(self, db_copy):
        run_sql(db_copy, "UPDATE sessions SET created_at = replace(created_at, 'Z', '+05:00')")
        assert validate_database(db_copy).ok

    def test_null_optional_timestamp_is_fine(self, db_copy):
        run_sql(db_copy, "UPDATE users SET last_login = NULL")
        assert validate_database(db_copy).ok

    def test_naive_column_is_fine(self, db_copy):
        run_sql(
            db_copy,
            "UPDATE password_resets SET requested_at = "
            "replace(replace(requested_at, 'T', ' '), 'Z', '')",
        )
        assert validate_database(db_copy).ok


class TestPrimaryKeys:
    """Primary keys are present and unique."""

    def test_duplicate_and_null_keys(self):
        conn = sqlite3.connect(":memory:")
        create_schema(conn)
        conn.execute("DROP TABLE password_resets")
        conn.execute(
            "CREATE TABLE password_resets (reset_id INTEGER, user_id INTEGER, "
            "reset_token TEXT, ip_address TEXT, requested_at TEXT, used_at TEXT)"
        )
        conn.executemany(
            "INSERT INTO password_resets (reset_id, reset_token) VALUES (?, ?)",
            [(1, "a"), (1, "b"), (None, "c")],
        )
        issues = check_primary_keys(conn)
        conn.close()

        assert [i.message for i in issues] == [
            "1 null primary key(s)",
            "1 duplicated primary key value(s)",
        ]
        assert issues[1].examples == [1]


class TestIssue:
    """Tests for Issue formatting."""

    def test_str_with_examples(self):
        issue = Issue("users", "mfa_enabled", "flags", "2 bad values", 2, ["yes", None])
        assert str(issue) == "[flags] users.mfa_enabled: 2 bad values (e.g. 'yes', None)"

    def test_str_table_level(self):
        assert str(Issue("audit_log", None, "columns", "table is missing")) == (
            "[columns] audit_log: table is missing"
        )
