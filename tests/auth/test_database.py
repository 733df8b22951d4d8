"""Tests for UserDatabase and OtpDatabase query construction and row mapping."""

from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from auth.database import OtpDatabase, UserDatabase
from auth.types import OtpChallenge, Role, User
from clients.postgres_client import PostgresClient


@pytest.fixture
def postgres():
    return MagicMock(spec=PostgresClient)


@pytest.fixture
def cursor(postgres):
    cur = MagicMock()
    postgres.transaction.return_value.__enter__.return_value = cur
    return cur


def _user_row(now, **overrides) -> dict:
    row = {
        "id": str(uuid4()),
        "fullname": "Alice",
        "username": "alice",
        "email": "a@x.com",
        "password_hash": "$2b$04$hash",
        "role": "VIEWER",
        "failed_attempts": 0,
        "last_failed_at": None,
        "locked": False,
        "locked_until": None,
        "created_at": now,
    }
    row.update(overrides)
    return row


class TestUserDatabase:

    def test_find_maps_row(self, postgres, now):
        row = _user_row(now, role="EDITOR", failed_attempts=None)
        postgres.execute_single.return_value = row

        user = UserDatabase(postgres).find_by_username_or_email("alice")

        assert str(user.id) == row["id"]
        assert user.role == Role.EDITOR
        assert user.failed_attempts == 0
        query, params = postgres.execute_single.call_args.args
        assert "username = %s OR email = lower(%s)" in query
        assert params == ("alice", "alice")

    def test_find_missing_returns_none(self, postgres):
        postgres.execute_single.return_value = None

        assert UserDatabase(postgres).find_by_username_or_email("nobody") is None

    def test_exists_by_email(self, postgres):
        postgres.execute_single.return_value = {"found": 1}

        assert UserDatabase(postgres).exists_by_email("A@X.com") is True
        assert "email = lower(%s)" in postgres.execute_single.call_args.args[0]

    def test_save_upserts_and_returns_stored(self, postgres, now):
        row = _user_row(now)
        postgres.execute_returning.return_value = [row]
        user = User(**{**row, "id": uuid4()})

        saved = UserDatabase(postgres).save(user)

        query = postgres.execute_returning.call_args.args[0]
        assert "ON CONFLICT (id) DO UPDATE" in query
        assert str(saved.id) == row["id"]

    def test_update_security_state_locks_row_and_writes(self, postgres, cursor, now):
        row = _user_row(now)
        cursor.fetchone.return_value = row

        result = UserDatabase(postgres).update_security_state(
            uuid4(),
            lambda current: current.model_copy(update={"failed_attempts": 3, "last_failed_at": now}),
        )

        select_sql = cursor.execute.call_args_list[0].args[0]
        update_sql, update_params = cursor.execute.call_args_list[1].args
        assert "FOR UPDATE" in select_sql
        assert "UPDATE users" in update_sql
        assert update_params[:2] == (3, now)
        assert result.failed_attempts == 3

    def test_update_security_state_noop_skips_write(self, postgres, cursor, now):
        cursor.fetchone.return_value = _user_row(now)

        result = UserDatabase(postgres).update_security_state(uuid4(), lambda current: None)

        assert cursor.execute.call_count == 1
        assert result.username == "alice"

    def test_update_security_state_missing_user(self, postgres, cursor):
        cursor.fetchone.return_value = None
        mutate = MagicMock()

        assert UserDatabase(postgres).update_security_state(uuid4(), mutate) is None
        mutate.assert_not_called()


class TestOtpDatabase:

    def test_find_latest_valid_treats_expiry_as_inclusive(self, postgres, now):
        user_id = uuid4()
        postgres.execute_single.return_value = {
            "id": str(uuid4()),
            "user_id": str(user_id),
            "code": "123456",
            "created_at": now,
            "expires_at": now + timedelta(minutes=5),
            "used": False,
        }

        challenge = OtpDatabase(postgres).find_latest_valid(user_id, now)

        query, params = postgres.execute_single.call_args.args
        assert "expires_at >= %s" in query
        assert "ORDER BY created_at DESC" in query
        assert params == (str(user_id), now)
        assert challenge.user_id == user_id
        assert challenge.used is False

    def test_find_by_user_and_code_matches_unused_code(self, postgres, now):
        user_id = uuid4()
        postgres.execute_single.return_value = {
            "id": str(uuid4()),
            "user_id": str(user_id),
            "code": "482910",
            "created_at": now,
            "expires_at": now + timedelta(minutes=5),
            "used": False,
        }

        challenge = OtpDatabase(postgres).find_by_user_and_code(user_id, "482910")

        query, params = postgres.execute_single.call_args.args
        assert "code = %s" in query
        assert "used = false" in query
        assert params == (str(user_id), "482910")
        assert challenge.code == "482910"
        assert challenge.user_id == user_id

    def test_find_by_user_and_code_missing_returns_none(self, postgres):
        postgres.execute_single.return_value = None

        assert OtpDatabase(postgres).find_by_user_and_code(uuid4(), "000000") is None

    def test_mark_used_is_conditional(self, postgres, now):
        postgres.execute_returning.return_value = []

        assert OtpDatabase(postgres).mark_used(uuid4(), now) is False
        assert "used = false" in postgres.execute_returning.call_args.args[0]

    def test_mark_used_first_caller_wins(self, postgres, now):
        postgres.execute_returning.return_value = [{"id": "x"}]

        assert OtpDatabase(postgres).mark_used(uuid4(), now) is True

    def test_save_writes_all_columns(self, postgres, now):
        challenge = OtpChallenge(
            id=uuid4(),
            user_id=uuid4(),
            code="654321",
            created_at=now,
            expires_at=now + timedelta(minutes=5),
            used=False,
        )

        OtpDatabase(postgres).save(challenge)

        params = postgres.execute_returning.call_args.args[1]
        assert params == (
            str(challenge.id),
            str(challenge.user_id),
            "654321",
            now,
            now + timedelta(minutes=5),
            False,
        )

    def test_delete_counts(self, postgres, now):
        postgres.execute_returning.return_value = [{"id": "a"}, {"id": "b"}]

        assert OtpDatabase(postgres).delete_expired(now) == 2
        assert "expires_at < %s" in postgres.execute_returning.call_args.args[0]
