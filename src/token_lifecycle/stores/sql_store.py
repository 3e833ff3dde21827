# src/token_lifecycle/stores/sql_store.py
"""
Relational credential stores.

The dashboard keeps Google tokens in three tables, each written by a
different code path:

- Account:       OAuth-provider accounts (one row per linked login), keyed by id
- GoogleTokens:  dedicated token table, keyed by (userId, google_sub)
- GoogleAccount: legacy per-account table, keyed by id

Each table is exposed as a CredentialStore. Queries run on the default
executor so a slow database never blocks the event loop.
"""

import asyncio
import functools
import logging
import sqlite3
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..credential import Credential, CredentialUpdate
from ..error_handler import CredentialNotFoundError, StoreUnavailableError
from .base import CredentialStore

lib_logger = logging.getLogger("token_lifecycle")

# Logical credential field -> column name. None means the table has no such column.
ColumnMap = Dict[str, Optional[str]]


class SqliteCredentialStore(CredentialStore):
    """
    Base class for table-backed stores.

    Subclasses must override:
        - NAME: Store name
        - TABLE: Table name
        - KEY_COLUMNS: Primary key column(s) the subject key maps onto
        - COLUMNS: Logical field -> column mapping
        - SCHEMA: CREATE TABLE statement(s)

    Subclasses may override:
        - ROW_FILTER: Extra SQL condition applied to every query
        - UPDATED_AT_COLUMN: Column stamped with the write time
    """

    TABLE: str = None
    KEY_COLUMNS: Tuple[str, ...] = ("id",)
    COLUMNS: ColumnMap = {}
    ROW_FILTER: str = ""
    UPDATED_AT_COLUMN: Optional[str] = None
    SCHEMA: str = None

    def __init__(
        self,
        db_path: str,
        clock: Callable[[], float] = time.time,
        busy_timeout: float = 5.0,
    ):
        if self.TABLE is None or self.NAME is None:
            raise NotImplementedError(f"{self.__class__.__name__} must set TABLE and NAME")
        self.db_path = str(db_path)
        self._clock = clock
        self._busy_timeout = busy_timeout

    # --- connection helpers -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    def ensure_schema(self) -> None:
        """Create the backing table if it does not exist (development and tests)."""
        conn = self._connect()
        try:
            conn.executescript(self.SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # --- key and row mapping ------------------------------------------------

    def _key_values(self, subject_key: str) -> Tuple[Any, ...]:
        return (subject_key,)

    def _subject_key_for_row(self, row: sqlite3.Row) -> str:
        return str(row[self.KEY_COLUMNS[0]])

    def _where_clause(self) -> str:
        conditions = [f'"{column}" = ?' for column in self.KEY_COLUMNS]
        if self.ROW_FILTER:
            conditions.append(self.ROW_FILTER)
        return " AND ".join(conditions)

    def _column(self, field_name: str) -> Optional[str]:
        return self.COLUMNS.get(field_name)

    def _value(self, row: sqlite3.Row, field_name: str) -> Any:
        column = self._column(field_name)
        if column is None:
            return None
        return row[column]

    def _row_to_credential(self, row: sqlite3.Row) -> Credential:
        expires_at = self._value(row, "expires_at")
        updated_at = self._value(row, "updated_at")
        return Credential(
            subject_key=self._subject_key_for_row(row),
            access_token=self._value(row, "access_token") or None,
            refresh_token=self._value(row, "refresh_token") or None,
            expires_at=int(expires_at) if expires_at is not None else None,
            scope=self._value(row, "scope"),
            user_id=self._value(row, "user_id"),
            provider_subject=self._value(row, "provider_subject"),
            email=self._value(row, "email"),
            updated_at=float(updated_at) if updated_at is not None else None,
        )

    def _select_columns(self) -> str:
        columns = list(self.KEY_COLUMNS)
        columns.extend(c for c in self.COLUMNS.values() if c and c not in columns)
        return ", ".join(f'"{c}"' for c in columns)

    # --- synchronous queries (run in executor) ------------------------------

    def _fetch_row_sync(self, key_values: Tuple[Any, ...]) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(
                f'SELECT {self._select_columns()} FROM "{self.TABLE}" '
                f"WHERE {self._where_clause()}",
                key_values,
            ).fetchone()
        finally:
            conn.close()

    def _update_sync(self, key_values: Tuple[Any, ...], update: CredentialUpdate) -> int:
        assignments: List[str] = []
        params: List[Any] = []
        for field_name in ("access_token", "expires_at", "refresh_token", "scope"):
            value = getattr(update, field_name)
            column = self._column(field_name)
            if value is None or column is None:
                continue
            assignments.append(f'"{column}" = ?')
            params.append(int(value) if field_name == "expires_at" else value)
        if not assignments:
            return 1
        if self.UPDATED_AT_COLUMN:
            assignments.append(f'"{self.UPDATED_AT_COLUMN}" = ?')
            params.append(self._clock())

        conn = self._connect()
        try:
            cursor = conn.execute(
                f'UPDATE "{self.TABLE}" SET {", ".join(assignments)} '
                f"WHERE {self._where_clause()}",
                (*params, *key_values),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def _fetch_refreshable_sync(self) -> List[sqlite3.Row]:
        refresh_column = self._column("refresh_token")
        conditions = [f'"{refresh_column}" IS NOT NULL', f'"{refresh_column}" != \'\'']
        if self.ROW_FILTER:
            conditions.append(self.ROW_FILTER)
        conn = self._connect()
        try:
            return conn.execute(
                f'SELECT {self._select_columns()} FROM "{self.TABLE}" '
                f"WHERE {' AND '.join(conditions)}"
            ).fetchall()
        finally:
            conn.close()

    # --- CredentialStore ----------------------------------------------------

    async def read(self, subject_key: str) -> Credential:
        key_values = self._key_values(subject_key)
        try:
            row = await self._run(self._fetch_row_sync, key_values)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.name, e) from e
        if row is None:
            raise CredentialNotFoundError(
                subject_key, f"No {self.TABLE} row for '{subject_key}'"
            )
        return self._row_to_credential(row)

    async def write(self, subject_key: str, update: CredentialUpdate) -> None:
        if update.is_empty():
            return
        updated = await self._run(
            self._update_sync, self._key_values(subject_key), update
        )
        if updated == 0:
            raise CredentialNotFoundError(
                subject_key, f"{self.TABLE} row '{subject_key}' vanished before write"
            )
        lib_logger.debug(f"Persisted refreshed credential to {self.name}:{subject_key}")

    async def list_refreshable(self) -> List[Credential]:
        try:
            rows = await self._run(self._fetch_refreshable_sync)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.name, e) from e
        return [self._row_to_credential(row) for row in rows]

    async def lookup_owner(self, subject_key: str) -> Optional[str]:
        """
        Return the userId owning the row, or None if the table has no owner column.

        Raises:
            CredentialNotFoundError: No such row
        """
        credential = await self.read(subject_key)
        return credential.user_id


class AccountTableStore(SqliteCredentialStore):
    """OAuth-provider `Account` rows with provider = 'google'; expires_at in seconds."""

    NAME = "account"
    TABLE = "Account"
    KEY_COLUMNS = ("id",)
    ROW_FILTER = "\"provider\" = 'google'"
    COLUMNS = {
        "access_token": "access_token",
        "refresh_token": "refresh_token",
        "expires_at": "expires_at",
        "scope": "scope",
        "user_id": "userId",
        "provider_subject": "providerAccountId",
        "email": None,
        "updated_at": None,
    }
    SCHEMA = """
    CREATE TABLE IF NOT EXISTS "Account" (
        "id" TEXT PRIMARY KEY,
        "userId" TEXT NOT NULL,
        "type" TEXT NOT NULL DEFAULT 'oauth',
        "provider" TEXT NOT NULL,
        "providerAccountId" TEXT NOT NULL,
        "access_token" TEXT,
        "refresh_token" TEXT,
        "expires_at" INTEGER,
        "token_type" TEXT,
        "scope" TEXT,
        "id_token" TEXT,
        UNIQUE ("provider", "providerAccountId")
    );
    """

    def _list_for_user_sync(self, user_id: str) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(
                f'SELECT {self._select_columns()} FROM "{self.TABLE}" '
                f'WHERE "userId" = ? AND {self.ROW_FILTER}',
                (user_id,),
            ).fetchall()
        finally:
            conn.close()

    async def list_for_user(self, user_id: str) -> List[Credential]:
        """All google Account rows linked to a user."""
        try:
            rows = await self._run(self._list_for_user_sync, user_id)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.name, e) from e
        return [self._row_to_credential(row) for row in rows]


class GoogleTokensStore(SqliteCredentialStore):
    """
    Dedicated `GoogleTokens` table, keyed by (userId, google_sub).

    The subject key is "<userId>:<google_sub>". Google subject ids are numeric,
    so the key is split on its last colon.
    """

    NAME = "google_tokens"
    TABLE = "GoogleTokens"
    KEY_COLUMNS = ("userId", "google_sub")
    UPDATED_AT_COLUMN = "updated_at"
    COLUMNS = {
        "access_token": "access_token",
        "refresh_token": "refresh_token",
        "expires_at": "expires_at",
        "scope": "scope",
        "user_id": "userId",
        "provider_subject": "google_sub",
        "email": "email",
        "updated_at": "updated_at",
    }
    SCHEMA = """
    CREATE TABLE IF NOT EXISTS "GoogleTokens" (
        "id" INTEGER PRIMARY KEY AUTOINCREMENT,
        "userId" TEXT NOT NULL,
        "google_sub" TEXT NOT NULL,
        "email" TEXT,
        "access_token" TEXT,
        "refresh_token" TEXT,
        "expires_at" INTEGER,
        "scope" TEXT,
        "created_at" REAL,
        "updated_at" REAL,
        UNIQUE ("userId", "google_sub")
    );
    """

    @staticmethod
    def make_subject_key(user_id: str, google_sub: str) -> str:
        return f"{user_id}:{google_sub}"

    def _key_values(self, subject_key: str) -> Tuple[Any, ...]:
        user_id, sep, google_sub = subject_key.rpartition(":")
        if not sep or not user_id or not google_sub:
            raise CredentialNotFoundError(
                subject_key, f"Malformed GoogleTokens key '{subject_key}'"
            )
        return (user_id, google_sub)

    def _subject_key_for_row(self, row: sqlite3.Row) -> str:
        return self.make_subject_key(row["userId"], row["google_sub"])

    def _most_recent_sync(self, user_id: str) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(
                'SELECT "userId", "google_sub" FROM "GoogleTokens" WHERE "userId" = ? '
                'ORDER BY COALESCE("updated_at", 0) DESC, "id" DESC LIMIT 1',
                (user_id,),
            ).fetchone()
        finally:
            conn.close()

    async def most_recent_key_for_user(self, user_id: str) -> Optional[str]:
        """Subject key of the user's most recently updated row, or None."""
        try:
            row = await self._run(self._most_recent_sync, user_id)
        except sqlite3.Error as e:
            raise StoreUnavailableError(self.name, e) from e
        if row is None:
            return None
        return self._subject_key_for_row(row)

    def _upsert_sync(
        self,
        user_id: str,
        google_sub: str,
        update: CredentialUpdate,
        email: Optional[str],
    ) -> None:
        now = self._clock()
        conn = self._connect()
        try:
            # COALESCE keeps stored values when the source row lacks them
            conn.execute(
                """
                INSERT INTO "GoogleTokens"
                    ("userId", "google_sub", "email", "access_token", "refresh_token",
                     "expires_at", "scope", "created_at", "updated_at")
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT ("userId", "google_sub") DO UPDATE SET
                    "email" = COALESCE(excluded."email", "GoogleTokens"."email"),
                    "access_token" = COALESCE(excluded."access_token", "GoogleTokens"."access_token"),
                    "refresh_token" = COALESCE(excluded."refresh_token", "GoogleTokens"."refresh_token"),
                    "expires_at" = COALESCE(excluded."expires_at", "GoogleTokens"."expires_at"),
                    "scope" = COALESCE(excluded."scope", "GoogleTokens"."scope"),
                    "updated_at" = excluded."updated_at"
                """,
                (
                    user_id,
                    google_sub,
                    email,
                    update.access_token,
                    update.refresh_token,
                    int(update.expires_at) if update.expires_at is not None else None,
                    update.scope,
                    now,
                    now,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    async def upsert(
        self,
        user_id: str,
        google_sub: str,
        update: CredentialUpdate,
        email: Optional[str] = None,
    ) -> str:
        """Insert or merge a row; returns its subject key."""
        await self._run(self._upsert_sync, user_id, google_sub, update, email)
        return self.make_subject_key(user_id, google_sub)


class LegacyGoogleAccountStore(SqliteCredentialStore):
    """Legacy `GoogleAccount` table, keyed by id; expiresAt in seconds."""

    NAME = "google_account"
    TABLE = "GoogleAccount"
    KEY_COLUMNS = ("id",)
    UPDATED_AT_COLUMN = "updatedAt"
    COLUMNS = {
        "access_token": "accessToken",
        "refresh_token": "refreshToken",
        "expires_at": "expiresAt",
        "scope": "scope",
        "user_id": "userId",
        "provider_subject": None,
        "email": "email",
        "updated_at": "updatedAt",
    }
    SCHEMA = """
    CREATE TABLE IF NOT EXISTS "GoogleAccount" (
        "id" TEXT PRIMARY KEY,
        "userId" TEXT,
        "email" TEXT NOT NULL,
        "accessToken" TEXT,
        "refreshToken" TEXT,
        "expiresAt" INTEGER,
        "scope" TEXT,
        "createdAt" REAL,
        "updatedAt" REAL
    );
    """
