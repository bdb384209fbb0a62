from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import NewUser, User, UserUpdate, new_user_id

# Column names match the table the Node service created, camelCase flags included
_USER_COLUMNS = 'id, email, name, created_at, password, username, "isVerified", "isDeleted"'

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_UPDATE_COLUMNS = {
    "name": "name",
    "username": "username",
    "password_hash": "password",
}


class PostgresStore:
    """Postgres-backed user store."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``users`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(SCHEMA_PATH.read_text())

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        created_at = row.get("created_at") or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            password_hash=row.get("password") or "",
            username=row.get("username"),
            is_verified=bool(row.get("isVerified")),
            is_deleted=bool(row.get("isDeleted")),
            created_at=created_at,
        )

    @staticmethod
    def _constraint_field(exc: errors.UniqueViolation) -> str:
        constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
        return "username" if "username" in constraint else "email"

    def find_user_by_identifier(self, identifier: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_USER_COLUMNS} FROM users
                WHERE id = %s OR email = %s OR username = %s
                ORDER BY (id = %s) DESC, (email = %s) DESC
                LIMIT 1
                """,
                (identifier, identifier, identifier, identifier, identifier),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def create_user(self, new_user: NewUser) -> str:
        user_id = new_user_id()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, name, password, username, "isVerified")
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user_id,
                        new_user.email,
                        new_user.name,
                        new_user.password_hash,
                        new_user.username,
                        new_user.is_verified,
                    ),
                )
        except errors.UniqueViolation as exc:
            field = self._constraint_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc
        return user_id

    def update_user(self, user_id: str, update: UserUpdate) -> Optional[User]:
        changes = update.changes()
        if not changes:
            return self.get_user(user_id)
        assignments = ", ".join(f"{_UPDATE_COLUMNS[name]} = %s" for name in changes)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = %s RETURNING {_USER_COLUMNS}",
                    (*changes.values(), user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = self._constraint_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc
        return self._row_to_user(row) if row else None

    def verify_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f'UPDATE users SET "isVerified" = true WHERE id = %s RETURNING {_USER_COLUMNS}',
                (user_id,),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                'UPDATE users SET "isDeleted" = true WHERE id = %s', (user_id,)
            )
            return cur.rowcount > 0

    def close(self) -> None:
        self.pool.close()
