"""Tests for password hashing."""

import sqlite3

import pytest

from auth_dataset.credentials import hash_password, new_salt, reset_password, verify_password

SALT = "00112233445566778899aabbccddeeff"


class TestHashPassword:
    """Tests for hash_password / verify_password."""

    def test_deterministic_for_same_salt(self):
        a = hash_password("hunter2", SALT, time_cost=1, memory_cost=8)
        b = hash_password("hunter2", SALT, time_cost=1, memory_cost=8)
        assert a == b
        assert a.startswith("$argon2id$v=19$m=8,t=1,p=1$")

    def test_salt_changes_hash(self):
        a = hash_password("hunter2", SALT, time_cost=1, memory_cost=8)
        b = hash_password("hunter2", new_salt(), time_cost=1, memory_cost=8)
        assert a != b

    def test_verify(self):
        hashed = hash_password("hunter2", SALT, time_cost=1, memory_cost=8)
        assert verify_password(hashed, "hunter2")
        assert not verify_password(hashed, "hunter3")

    def test_verify_garbage_hash(self):
        assert not verify_password("not-a-hash", "hunter2")

    def test_new_salt_is_hex(self):
        salt = new_salt()
        assert len(salt) == 32
        bytes.fromhex(salt)


class TestResetPassword:
    """Tests for reset_password."""

    def test_updates_hash_and_salt(self, db_copy):
        conn = sqlite3.connect(db_copy)
        username, old_hash, old_salt = conn.execute(
            "SELECT username, password_hash, salt FROM users WHERE user_id = 1"
        ).fetchone()
        conn.close()

        new_hash = reset_password(db_copy, username, "correct horse")

        conn = sqlite3.connect(db_copy)
        stored_hash, salt = conn.execute(
            "SELECT password_hash, salt FROM users WHERE user_id = 1"
        ).fetchone()
        conn.close()
        assert stored_hash == new_hash != old_hash
        assert salt != old_salt
        assert verify_password(stored_hash, "correct horse")

    def test_unknown_user(self, db_copy):
        with pytest.raises(ValueError, match="not found"):
            reset_password(db_copy, "nobody", "x")
