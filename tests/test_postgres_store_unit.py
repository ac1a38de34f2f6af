"""Postgres store unit tests with the connection pool stubbed out."""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from psycopg import errors

from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.postgres import PostgresStore, constraint_violation_from


class DummyPool:
    def connection(self):
        raise AssertionError("database access should be stubbed in unit tests")


class FakeResult:
    def __init__(self, row=None, rows=None, rowcount=0):
        self._row = row
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._row

    def fetchall(self):
        return self._rows


class FakeConnection:
    def __init__(self, responder):
        self.responder = responder
        self.statements = []

    def execute(self, query, params=None):
        self.statements.append((" ".join(query.split()), params))
        return self.responder(query, params)


class FakePool:
    def __init__(self, responder):
        self.conn = FakeConnection(responder)

    @contextmanager
    def connection(self):
        yield self.conn


def _store(pool) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = pool
    return store


def _row(**overrides):
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    row = {
        "id": uuid.uuid4(),
        "email": "alice@example.com",
        "username": "alice",
        "password_hash": "hash",
        "federated_provider": None,
        "federated_subject_id": None,
        "avatar_url": None,
        "bio": None,
        "playlist_count": 0,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def _raising(exc):
    def responder(query, params):
        raise exc

    return responder


@pytest.mark.parametrize(
    "message, field",
    [
        ('duplicate key value violates unique constraint "app_user_email_key"', "email"),
        ('duplicate key value violates unique constraint "app_user_username_key"', "username"),
        (
            'duplicate key value violates unique constraint "app_user_federated_identity_key"',
            "federated_identity",
        ),
        ('new row violates check constraint "app_user_auth_method_check"', "auth_method"),
    ],
)
def test_constraint_names_map_to_fields(message, field):
    violation = constraint_violation_from(errors.UniqueViolation(message))
    assert violation.field == field


def test_unknown_constraint_has_no_field():
    violation = constraint_violation_from(errors.UniqueViolation("something else"))
    assert violation.field is None


def test_create_user_maps_unique_violation():
    store = _store(
        FakePool(
            _raising(
                errors.UniqueViolation(
                    'duplicate key value violates unique constraint "app_user_username_key"'
                )
            )
        )
    )
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("alice@example.com", "alice", "hash")
    assert excinfo.value.field == "username"


def test_create_user_maps_check_violation():
    store = _store(
        FakePool(
            _raising(
                errors.CheckViolation(
                    'new row violates check constraint "app_user_auth_method_check"'
                )
            )
        )
    )
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("alice@example.com", "alice")
    assert excinfo.value.field == "auth_method"


def test_create_user_lowercases_email_and_returns_row():
    pool = FakePool(lambda query, params: FakeResult(row=_row()))
    store = _store(pool)
    user = store.create_user("Alice@Example.com", "alice", "hash")
    assert user.username == "alice"
    _, params = pool.conn.statements[0]
    assert params[1] == "alice@example.com"


def test_link_is_single_update_with_avatar_backfill():
    pool = FakePool(
        lambda query, params: FakeResult(
            row=_row(federated_provider="google", federated_subject_id="g-1")
        )
    )
    store = _store(pool)
    user = store.link_federated_identity("some-id", "google", "g-1", "https://img/a.png")
    assert user.federated_provider == "google"
    assert len(pool.conn.statements) == 1
    query, params = pool.conn.statements[0]
    assert query.startswith("UPDATE app_user")
    assert "COALESCE(NULLIF(avatar_url, ''), %s)" in query
    assert params == ("google", "g-1", "https://img/a.png", "some-id")


def test_link_maps_unique_violation():
    store = _store(
        FakePool(
            _raising(
                errors.UniqueViolation(
                    'duplicate key value violates unique constraint "app_user_federated_identity_key"'
                )
            )
        )
    )
    with pytest.raises(ConstraintViolation) as excinfo:
        store.link_federated_identity("some-id", "google", "g-1")
    assert excinfo.value.field == "federated_identity"


def test_get_user_skips_query_for_non_uuid_ids():
    store = _store(DummyPool())
    assert store.get_user("not-a-uuid") is None


def test_list_users_searches_username_and_bio():
    pool = FakePool(lambda query, params: FakeResult(rows=[_row(), _row(username="bob")]))
    store = _store(pool)
    users = store.list_users(limit=2, offset=4, search="jazz")
    assert [u.username for u in users] == ["alice", "bob"]
    query, params = pool.conn.statements[0]
    assert "username ILIKE %s OR bio ILIKE %s" in query
    assert params == ("%jazz%", "%jazz%", 2, 4)
