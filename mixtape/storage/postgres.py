from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from mixtape.logging import get_logger
from mixtape.storage.errors import ConstraintViolation
from mixtape.storage.models import User, normalize_email, utcnow

# Constraint and index names mapped to the field reported in ConstraintViolation
_CONSTRAINT_FIELDS = {
    "app_user_email_key": "email",
    "app_user_username_key": "username",
    "app_user_federated_identity_key": "federated_identity",
    "app_user_auth_method_check": "auth_method",
}

_CONSTRAINT_MESSAGES = {
    "email": "email already exists",
    "username": "username already exists",
    "federated_identity": "federated identity already linked",
    "auth_method": "user needs a password or a federated identity",
}

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL,
        username VARCHAR(50) NOT NULL,
        password_hash TEXT,
        federated_provider TEXT,
        federated_subject_id TEXT,
        avatar_url TEXT,
        bio TEXT,
        playlist_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT app_user_auth_method_check CHECK (
            password_hash IS NOT NULL
            OR (federated_provider IS NOT NULL AND federated_subject_id IS NOT NULL)
        )
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_key ON app_user (lower(email))",
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_username_key ON app_user (username)",
    """
    CREATE UNIQUE INDEX IF NOT EXISTS app_user_federated_identity_key
    ON app_user (federated_provider, federated_subject_id)
    WHERE federated_provider IS NOT NULL
    """,
)


def constraint_violation_from(exc: errors.IntegrityError) -> ConstraintViolation:
    """Translate a Postgres integrity error into a ``ConstraintViolation``.

    The constraint name comes from the server diagnostics; errors built without
    a server result fall back to scanning the message text.
    """
    name = exc.diag.constraint_name
    if not name:
        text = str(exc)
        name = next((key for key in _CONSTRAINT_FIELDS if key in text), None)
    field = _CONSTRAINT_FIELDS.get(name or "")
    if field is None:
        return ConstraintViolation("constraint violated", {"constraint": name})
    return ConstraintViolation(_CONSTRAINT_MESSAGES[field], {"field": field})


class PostgresStore:
    """Postgres-backed user store."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table and its unique indexes if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            username=row["username"],
            password_hash=row.get("password_hash"),
            federated_provider=row.get("federated_provider"),
            federated_subject_id=row.get("federated_subject_id"),
            avatar_url=row.get("avatar_url"),
            bio=row.get("bio"),
            playlist_count=row.get("playlist_count") or 0,
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    def _fetch_one(self, query: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if not row:
            return None
        return self._row_to_user(row)

    # users
    def create_user(
        self,
        email: str,
        username: str,
        password_hash: Optional[str] = None,
        *,
        federated_provider: Optional[str] = None,
        federated_subject_id: Optional[str] = None,
        avatar_url: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (
                        id, email, username, password_hash, federated_provider,
                        federated_subject_id, avatar_url, bio
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        user_id,
                        normalize_email(email),
                        username,
                        password_hash,
                        federated_provider,
                        federated_subject_id,
                        avatar_url,
                        bio,
                    ),
                ).fetchone()
        except (errors.UniqueViolation, errors.CheckViolation) as exc:
            raise constraint_violation_from(exc) from exc
        return self._row_to_user(row)

    def find_conflicting_user(self, email: str, username: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE lower(email) = %s OR username = %s LIMIT 1",
            (normalize_email(email), username),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(user_id)
        except ValueError:
            return None
        return self._fetch_one("SELECT * FROM app_user WHERE id = %s", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE lower(email) = %s", (normalize_email(email),)
        )

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE username = %s", (username,)
        )

    def get_user_by_provider(self, provider: str, subject_id: str) -> Optional[User]:
        return self._fetch_one(
            "SELECT * FROM app_user WHERE federated_provider = %s AND federated_subject_id = %s",
            (provider, subject_id),
        )

    def link_federated_identity(
        self,
        user_id: str,
        provider: str,
        subject_id: str,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE app_user
                    SET federated_provider = %s,
                        federated_subject_id = %s,
                        avatar_url = COALESCE(NULLIF(avatar_url, ''), %s),
                        updated_at = now()
                    WHERE id = %s
                    RETURNING *
                    """,
                    (provider, subject_id, avatar_url, user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise constraint_violation_from(exc) from exc
        if not row:
            return None
        return self._row_to_user(row)

    def update_profile(
        self,
        user_id: str,
        *,
        bio: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Optional[User]:
        return self._fetch_one(
            """
            UPDATE app_user
            SET bio = COALESCE(%s, bio),
                avatar_url = COALESCE(%s, avatar_url),
                updated_at = now()
            WHERE id = %s
            RETURNING *
            """,
            (bio, avatar_url, user_id),
        )

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
            return result.rowcount > 0

    @staticmethod
    def _search_clause(search: Optional[str]) -> tuple[str, tuple]:
        needle = (search or "").strip()
        if not needle:
            return "", ()
        pattern = f"%{needle}%"
        return " WHERE username ILIKE %s OR bio ILIKE %s", (pattern, pattern)

    def list_users(
        self, limit: int = 20, offset: int = 0, search: Optional[str] = None
    ) -> List[User]:
        where, params = self._search_clause(search)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM app_user{where} ORDER BY created_at DESC LIMIT %s OFFSET %s",
                (*params, limit, offset),
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self, search: Optional[str] = None) -> int:
        where, params = self._search_clause(search)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT count(*) AS total FROM app_user{where}", params
            ).fetchone()
        return int(row["total"]) if row else 0

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1")

    def close(self) -> None:
        self.pool.close()
