"""
Session Store
==============

aiosqlite-backed session persistence, laid out like a wide-column table:

    <table>               one row per session; attributes held as a JSON map
                          of name → encoded value
    <table>_by_principal  (principal_name, id) pairs, the principal index

Expiry is computed, never stored: a session is expired once
``now > last_accessed_time + max_inactive_interval_seconds * 1000``.

Every I/O operation accepts ``timeout=`` (seconds, defaulting to the
configured operation_timeout) and raises StoreUnavailableError on timeout or
database failure. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

import aiosqlite

from stash.errors import CodecError, NotFoundError, StoreUnavailableError, SweepError, ValidationError
from stash.sessions.codec import AttributeCodec, get_codec
from stash.sessions.flush import FlushCoordinator
from stash.sessions.principal import PrincipalResolver
from stash.sessions.session import Session, now_millis

if TYPE_CHECKING:
    from stash.config import StoreConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TABLE_NAME = "stash_sessions"
DEFAULT_MAX_INACTIVE_INTERVAL = 1800

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMN_NAMES = (
    "id",
    "attributes",
    "creation_time",
    "last_accessed_time",
    "max_inactive_interval_seconds",
    "principal_name",
)
_COLUMNS = ", ".join(_COLUMN_NAMES)

# Shared by the sweep scan and its per-row conditional delete.
_EXPIRED = (
    "max_inactive_interval_seconds >= 0 "
    "AND last_accessed_time + max_inactive_interval_seconds * 1000 < ?"
)


def validate_table_name(value: str) -> str:
    """Strip and check a table name. Raises ValueError."""
    value = (value or "").strip()
    if not value:
        raise ValueError("Table name must not be empty")
    if not _IDENTIFIER.match(value):
        raise ValueError(f"Table name must be a plain SQL identifier, got {value!r}")
    return value


@dataclass
class SweepResult:
    """Outcome of one expiry sweep."""
    started_at: int
    scanned: int = 0
    deleted: list[str] = field(default_factory=list)
    renewed: list[str] = field(default_factory=list)   # touched between scan and delete
    failures: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class StoreStats:
    total: int
    expired: int
    principals: int


class SessionStore:
    """Persistent session storage using SQLite."""

    def __init__(
        self,
        config: StoreConfig,
        *,
        codec: AttributeCodec | None = None,
        resolver: PrincipalResolver | None = None,
        clock: Callable[[], int] = now_millis,
    ):
        try:
            self.table = validate_table_name(config.table_name)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if config.operation_timeout is not None and config.operation_timeout <= 0:
            raise ValidationError("operation_timeout must be positive")

        self.config = config
        self.index_table = f"{self.table}_by_principal"
        self.db_path = Path(config.db_path) if config.db_path != ":memory:" else config.db_path
        self.codec = codec or get_codec(config.codec)
        self.resolver = resolver or PrincipalResolver()
        self.flush = FlushCoordinator(config.flush_mode, self.save)
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        """Open the database and ensure tables exist."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(str(self.db_path))
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._create_tables()
        except sqlite3.Error as e:
            raise StoreUnavailableError("open", str(e)) from e
        logger.info("Session store opened: %s (table %s)", self.db_path, self.table)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _create_tables(self) -> None:
        await self._db.executescript(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id                            TEXT PRIMARY KEY,
                attributes                    TEXT NOT NULL DEFAULT '{{}}',
                creation_time                 INTEGER NOT NULL,
                last_accessed_time            INTEGER NOT NULL,
                max_inactive_interval_seconds INTEGER NOT NULL,
                principal_name                TEXT
            );

            CREATE TABLE IF NOT EXISTS {self.index_table} (
                principal_name  TEXT NOT NULL,
                id              TEXT NOT NULL,
                PRIMARY KEY (principal_name, id)
            );

            CREATE INDEX IF NOT EXISTS idx_{self.table}_last_accessed
                ON {self.table}(last_accessed_time);
        """)
        await self._db.commit()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Session store not opened. Call open() first.")
        return self._db

    # ── Session lifecycle ────────────────────────────────────────────────

    async def create(self) -> Session:
        """Allocate a new session. Under IMMEDIATE flush it is written before returning."""
        now = self._clock()
        session = self._new_session(
            str(uuid.uuid4()),
            creation_time=now,
            last_accessed_time=now,
            max_inactive_interval_seconds=self.config.max_inactive_interval_seconds,
            is_new=True,
        )
        await self.flush.session_created(session)
        return session

    async def save(self, session: Session, *, timeout: float | None = None) -> None:
        """Persist a session's changes. A clean, already-stored session is a no-op."""
        if not session.is_new and not session.is_dirty:
            return

        delta = session.delta
        if session.is_new or any(self.resolver.is_principal_attribute(n) for n in delta.attributes):
            principal = self.resolver.resolve(session)
        else:
            principal = session.indexed_principal

        await self._call("save", self._write_session(session, principal), timeout)
        session.mark_persisted(principal)

    async def find_by_id(
        self, session_id: str, *, timeout: float | None = None, touch: bool = True
    ) -> Session | None:
        """Load a session; expired sessions are deleted and reported as absent.

        A live session comes back with the load recorded as an access, so the
        next save renews it (under IMMEDIATE the access is written at once).
        Pass ``touch=False`` to inspect a session without renewing it.
        """
        row = await self._call(
            "find_by_id",
            self._fetchone(f"SELECT {_COLUMNS} FROM {self.table} WHERE id = ?", (session_id,)),
            timeout,
        )
        if row is None:
            return None
        session = self._row_to_session(row)
        if session.is_expired(self._clock()):
            logger.debug("Session %s expired on read; deleting", session_id)
            await self.delete_by_id(session_id, timeout=timeout)
            return None
        if touch:
            await session.record_access()
        return session

    async def get_by_id(
        self, session_id: str, *, timeout: float | None = None, touch: bool = True
    ) -> Session:
        """Like find_by_id, but raises NotFoundError instead of returning None."""
        session = await self.find_by_id(session_id, timeout=timeout, touch=touch)
        if session is None:
            raise NotFoundError(session_id)
        return session

    async def delete_by_id(self, session_id: str, *, timeout: float | None = None) -> None:
        """Delete a session and its index entry. Absent ids are ignored."""
        await self._call("delete_by_id", self._delete_session(session_id), timeout)

    async def find_by_principal(
        self, principal_name: str, *, timeout: float | None = None
    ) -> dict[str, Session]:
        """All live sessions indexed under a principal, keyed by session id."""
        rows = await self._call(
            "find_by_principal",
            self._fetchall(
                f"""SELECT {", ".join("s." + c for c in _COLUMN_NAMES)}
                    FROM {self.index_table} p
                    JOIN {self.table} s ON s.id = p.id
                    WHERE p.principal_name = ? AND s.principal_name = p.principal_name
                    ORDER BY s.id ASC""",
                (principal_name,),
            ),
            timeout,
        )
        now = self._clock()
        sessions: dict[str, Session] = {}
        for row in rows:
            session = self._row_to_session(row)
            if not session.is_expired(now):
                sessions[session.id] = session
        return sessions

    # ── Expiry sweep ─────────────────────────────────────────────────────

    async def sweep_expired(self, *, timeout: float | None = None) -> SweepResult:
        """Delete every session whose computed expiry is in the past.

        Rows are deleted one at a time with the expiry re-checked against the
        scan time, so a session renewed since the scan is kept. A failing row
        does not stop the sweep; SweepError is raised at the end if any failed.
        """
        result = SweepResult(started_at=self._clock())
        rows = await self._call(
            "sweep_expired",
            self._fetchall(
                f"SELECT id FROM {self.table} WHERE {_EXPIRED} ORDER BY last_accessed_time ASC",
                (result.started_at,),
            ),
            timeout,
        )
        result.scanned = len(rows)

        for row in rows:
            session_id = row["id"]
            try:
                deleted = await self._call(
                    "sweep_expired",
                    self._delete_if_expired(session_id, result.started_at),
                    timeout,
                )
            except StoreUnavailableError as e:
                logger.debug("Sweep could not delete session %s: %s", session_id, e)
                result.failures[session_id] = e
                continue
            if deleted:
                result.deleted.append(session_id)
            else:
                result.renewed.append(session_id)

        logger.debug(
            "Sweep: %d scanned, %d deleted, %d renewed, %d failed",
            result.scanned, len(result.deleted), len(result.renewed), len(result.failures),
        )
        if result.failures:
            raise SweepError(result)
        return result

    async def stats(self, *, timeout: float | None = None) -> StoreStats:
        now = self._clock()
        row = await self._call(
            "stats",
            self._fetchone(
                f"""SELECT
                        (SELECT COUNT(*) FROM {self.table}) AS total,
                        (SELECT COUNT(*) FROM {self.table} WHERE {_EXPIRED}) AS expired,
                        (SELECT COUNT(DISTINCT principal_name) FROM {self.index_table}) AS principals""",
                (now,),
            ),
            timeout,
        )
        return StoreStats(total=row["total"], expired=row["expired"], principals=row["principals"])

    # ── Writes ───────────────────────────────────────────────────────────

    async def _write_session(self, session: Session, principal: str | None) -> None:
        delta = session.delta
        attributes_json = json.dumps(session.encoded_attributes, sort_keys=True)
        values = (
            session.id,
            attributes_json,
            session.creation_time,
            session.last_accessed_time,
            session.max_inactive_interval_seconds,
            principal,
        )

        async with self._write_lock:
            try:
                old_principal = None if session.is_new else session.indexed_principal

                if session.is_new or delta.original_id:
                    if delta.original_id and not session.is_new:
                        await self._delete_rows(delta.original_id, old_principal)
                        old_principal = None
                    await self.db.execute(
                        f"INSERT OR REPLACE INTO {self.table} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                        values,
                    )
                else:
                    await self.db.execute(
                        f"""INSERT INTO {self.table} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
                            ON CONFLICT(id) DO UPDATE SET {", ".join(self._changed_columns(session))}""",
                        values,
                    )

                if old_principal and old_principal != principal:
                    await self.db.execute(
                        f"DELETE FROM {self.index_table} WHERE principal_name = ? AND id = ?",
                        (old_principal, session.id),
                    )
                if principal:
                    await self.db.execute(
                        f"INSERT OR IGNORE INTO {self.index_table} (principal_name, id) VALUES (?, ?)",
                        (principal, session.id),
                    )
                await self.db.commit()
            except BaseException:
                await self._rollback()
                raise

        logger.debug(
            "Saved session %s (%s)", session.id,
            "insert" if session.is_new or delta.original_id else "update",
        )

    @staticmethod
    def _changed_columns(session: Session) -> list[str]:
        delta = session.delta
        columns = []
        if delta.attributes:
            columns += ["attributes = excluded.attributes", "principal_name = excluded.principal_name"]
        if delta.last_accessed_time:
            columns.append("last_accessed_time = excluded.last_accessed_time")
        if delta.max_inactive_interval:
            columns.append("max_inactive_interval_seconds = excluded.max_inactive_interval_seconds")
        return columns

    async def _delete_session(self, session_id: str) -> None:
        async with self._write_lock:
            try:
                cursor = await self.db.execute(
                    f"SELECT principal_name FROM {self.table} WHERE id = ?", (session_id,)
                )
                row = await cursor.fetchone()
                await self._delete_rows(session_id, row["principal_name"] if row else None)
                await self.db.commit()
            except BaseException:
                await self._rollback()
                raise

    async def _delete_if_expired(self, session_id: str, now: int) -> bool:
        async with self._write_lock:
            try:
                cursor = await self.db.execute(
                    f"SELECT principal_name FROM {self.table} WHERE id = ? AND {_EXPIRED}",
                    (session_id, now),
                )
                row = await cursor.fetchone()
                if row is None:
                    return False
                await self._delete_rows(session_id, row["principal_name"])
                await self.db.commit()
                return True
            except BaseException:
                await self._rollback()
                raise

    async def _delete_rows(self, session_id: str, principal: str | None) -> None:
        await self.db.execute(f"DELETE FROM {self.table} WHERE id = ?", (session_id,))
        if principal:
            await self.db.execute(
                f"DELETE FROM {self.index_table} WHERE principal_name = ? AND id = ?",
                (principal, session_id),
            )

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except sqlite3.Error as e:
            logger.warning("Rollback failed: %s", e)

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _call(self, operation: str, coro: Awaitable[T], timeout: float | None) -> T:
        limit = timeout if timeout is not None else self.config.operation_timeout
        try:
            return await asyncio.wait_for(coro, timeout=limit)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(operation, f"timed out after {limit}s") from e
        except sqlite3.Error as e:
            raise StoreUnavailableError(operation, str(e)) from e

    async def _fetchone(self, query: str, params: tuple = ()) -> Any:
        async with self.db.execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> list[Any]:
        async with self.db.execute(query, params) as cursor:
            return list(await cursor.fetchall())

    def _new_session(self, session_id: str, **kwargs) -> Session:
        return Session(
            session_id,
            codec=self.codec,
            coordinator=self.flush,
            clock=self._clock,
            **kwargs,
        )

    def _row_to_session(self, row) -> Session:
        """Convert a database row to a Session."""
        try:
            attributes = json.loads(row["attributes"]) if row["attributes"] else {}
        except json.JSONDecodeError as e:
            raise CodecError(f"Corrupt attribute map for session {row['id']}: {e}") from e
        if not isinstance(attributes, dict):
            raise CodecError(f"Corrupt attribute map for session {row['id']}: not an object")

        return self._new_session(
            row["id"],
            attributes=attributes,
            creation_time=row["creation_time"],
            last_accessed_time=row["last_accessed_time"],
            max_inactive_interval_seconds=row["max_inactive_interval_seconds"],
            indexed_principal=row["principal_name"],
            is_new=False,
        )

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc):
        await self.close()
