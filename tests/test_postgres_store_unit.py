import uuid
from datetime import datetime

import pytest
from psycopg import errors

from shopauth.storage.errors import ConstraintViolation
from shopauth.storage.postgres import PostgresStore, _row_to_user


class FakeCursor:
    def __init__(self, rows):
        self._rows = rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, pool):
        self.pool = pool

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.pool.executed.append((" ".join(sql.split()), params))
        if self.pool.raise_next is not None:
            exc, self.pool.raise_next = self.pool.raise_next, None
            raise exc
        return FakeCursor(self.pool.rows)


class FakePool:
    """Connection pool stand-in that records statements."""

    def __init__(self):
        self.executed = []
        self.rows = []
        self.raise_next = None
        self.closed = False

    def connection(self):
        return FakeConnection(self)

    def close(self):
        self.closed = True


def _user_row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "email": "shopper@example.com",
        "first_name": "Sam",
        "last_name": "Shopper",
        "phone_number": None,
        "role": "customer",
        "status": "pending_verification",
        "created_at": datetime(2024, 1, 1),
        "updated_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def pool():
    return FakePool()


@pytest.fixture
def store(pool):
    return PostgresStore("postgresql://unused", pool=pool)


def test_schema_is_created_on_init(store, pool):
    statements = [sql for sql, _ in pool.executed]
    assert any("CREATE TABLE IF NOT EXISTS app_user" in sql for sql in statements)
    assert any("CREATE TABLE IF NOT EXISTS user_auth_credential" in sql for sql in statements)


def test_row_to_user_stringifies_uuid():
    row = _user_row(status="active")
    user = _row_to_user(row)

    assert user.id == str(row["id"])
    assert user.is_email_verified is True
    assert user.created_at == datetime(2024, 1, 1)


def test_create_user_returns_inserted_row(store, pool):
    pool.rows = [_user_row(email="new@example.com")]

    user = store.create_user("new@example.com", "New", "User", phone_number="+15551234567")

    sql, params = pool.executed[-1]
    assert sql.startswith("INSERT INTO app_user")
    assert params[1:] == (
        "new@example.com",
        "New",
        "User",
        "+15551234567",
        "customer",
        "pending_verification",
    )
    assert user.email == "new@example.com"


def test_unique_violation_becomes_constraint_violation(store, pool):
    pool.raise_next = errors.UniqueViolation("duplicate key value")

    with pytest.raises(ConstraintViolation) as exc_info:
        store.create_user("dup@example.com", "A", "B")

    assert exc_info.value.detail == {"field": "email"}


def test_save_password_for_missing_user(store, pool):
    pool.raise_next = errors.ForeignKeyViolation("missing user")

    with pytest.raises(ConstraintViolation):
        store.save_password(str(uuid.uuid4()), "hash", "argon2id")


def test_save_password_upserts(store, pool):
    store.save_password("u1", "hash", "argon2id")

    sql, params = pool.executed[-1]
    assert "ON CONFLICT (user_id) DO UPDATE" in sql
    assert params == ("u1", "hash", "argon2id")


def test_get_user_skips_query_for_non_uuid(store, pool):
    before = len(pool.executed)

    assert store.get_user("not-a-uuid") is None
    assert len(pool.executed) == before


def test_get_user_by_email(store, pool):
    assert store.get_user_by_email("nobody@example.com") is None

    pool.rows = [_user_row()]
    assert store.get_user_by_email("shopper@example.com").first_name == "Sam"


def test_mark_email_verified_sets_active(store, pool):
    user_id = str(uuid.uuid4())
    pool.rows = [_user_row(id=user_id, status="active")]

    user = store.mark_email_verified(user_id)

    _, params = pool.executed[-1]
    assert params == ("active", user_id)
    assert user.is_email_verified


def test_delete_user_reports_whether_a_row_went(store, pool):
    user_id = str(uuid.uuid4())
    pool.rows = [{"id": user_id}]

    assert store.delete_user(user_id) is True
    sql, params = pool.executed[-1]
    assert sql == "DELETE FROM app_user WHERE id = %s RETURNING id"
    assert params == (user_id,)

    pool.rows = []
    assert store.delete_user(user_id) is False


def test_get_password_record(store, pool):
    assert store.get_password_record("u1") is None

    pool.rows = [{"password_hash": "digest", "password_algo": "argon2id"}]
    assert store.get_password_record("u1") == ("digest", "argon2id")


def test_ping_and_close(store, pool):
    pool.rows = [{"ok": 1}]
    assert store.ping() is True

    store.close()
    assert pool.closed
