"""User records: per-user configuration and cumulative token spend.

Backed by stdlib sqlite3. Every public method is async and runs the blocking
query in a worker thread; one lock serializes access to the shared connection.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path

from relay_bot_orx.user_config import OpenAIConfig, OpenAIProfile, User

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    business_id TEXT NOT NULL,
    openai TEXT NOT NULL DEFAULT '{}',
    spent_tokens INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_users_business_id ON users(business_id);
"""


class UserStoreError(Exception):
    pass


class UserNotFoundError(UserStoreError):
    pass


class UserStore:
    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    async def upsert_user(self, user_id: int, business_id: str) -> None:
        await self._run(self._upsert_user, user_id, business_id)

    async def delete_user(self, user_id: int) -> None:
        await self._run(self._delete_user, user_id)

    async def load_by_chat_id(self, user_id: int) -> User:
        return await self._run(self._load_one, "id", user_id)

    async def load_by_business_id(self, business_id: str) -> User:
        return await self._run(self._load_one, "business_id", business_id)

    async def load_profile(self, user_id: int) -> OpenAIProfile:
        user = await self.load_by_chat_id(user_id)
        return user.openai

    async def update_config(self, user_id: int, config: OpenAIConfig) -> None:
        await self._run(self._update_config, user_id, config)

    async def add_spent_tokens(self, user_id: int, tokens: int) -> None:
        await self._run(self._add_spent_tokens, user_id, tokens)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise UserStoreError(f"User store query failed: {exc}") from exc
        except ValueError as exc:
            raise UserStoreError(f"User store record is malformed: {exc}") from exc

    def _upsert_user(self, user_id: int, business_id: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                """INSERT INTO users (id, business_id, openai)
                VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET business_id = excluded.business_id""",
                (user_id, business_id, OpenAIConfig().to_json()),
            )
            conn.commit()

    def _delete_user(self, user_id: int) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            conn.commit()

    def _load_one(self, column: str, value: int | str) -> User:
        with self._lock:
            conn = self._get_conn()
            row = conn.execute(
                f"SELECT id, business_id, openai, spent_tokens FROM users WHERE {column} = ?",
                (value,),
            ).fetchone()
        if row is None:
            raise UserNotFoundError(f"No user with {column}={value}")
        return _row_to_user(row)

    def _update_config(self, user_id: int, config: OpenAIConfig) -> None:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                "UPDATE users SET openai = ? WHERE id = ?",
                (config.to_json(), user_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise UserNotFoundError(f"No user with id={user_id}")

    def _add_spent_tokens(self, user_id: int, tokens: int) -> None:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                "UPDATE users SET spent_tokens = spent_tokens + ? WHERE id = ?",
                (tokens, user_id),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise UserNotFoundError(f"No user with id={user_id}")


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        business_id=row["business_id"],
        openai=OpenAIProfile(
            config=OpenAIConfig.from_json(row["openai"]),
            spent_tokens=row["spent_tokens"],
        ),
    )
