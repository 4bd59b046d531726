"""SQLite implementation of the DurableStore protocol."""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import aiosqlite

from attendmint.interfaces.store import ChangeCallback, Row
from attendmint.models.events import ChangeEvent
from attendmint.models.records import ActivityRecord

log = logging.getLogger(__name__)

SCHEMA = """
-- Events and their ticket inventory
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    date TEXT NOT NULL,
    location TEXT NOT NULL,
    image_url TEXT,
    base_price REAL NOT NULL DEFAULT 0 CHECK (base_price >= 0),
    total_tickets INTEGER NOT NULL CHECK (total_tickets >= 0),
    tickets_sold INTEGER NOT NULL DEFAULT 0,
    creator_id TEXT NOT NULL,
    is_published INTEGER NOT NULL DEFAULT 0,
    nft_enabled INTEGER NOT NULL DEFAULT 0,
    nft_artwork_url TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK (tickets_sold >= 0 AND tickets_sold <= total_tickets)
);
CREATE INDEX IF NOT EXISTS idx_events_creator ON events(creator_id);

-- Attendee profiles
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    display_name TEXT,
    wallet_address TEXT,
    alt_wallet_address TEXT,
    events_attended INTEGER NOT NULL DEFAULT 0,
    loyalty_points INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Tickets
CREATE TABLE IF NOT EXISTS tickets (
    id TEXT PRIMARY KEY,
    event_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    purchase_price REAL NOT NULL DEFAULT 0,
    purchase_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'used', 'cancelled', 'transferred')),
    checked_in_at TEXT,
    mint_address TEXT UNIQUE,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_tickets_event ON tickets(event_id);
CREATE INDEX IF NOT EXISTS idx_tickets_owner ON tickets(owner_id);

-- Attendance records, one per checked-in ticket
CREATE TABLE IF NOT EXISTS attendance (
    id TEXT PRIMARY KEY,
    ticket_id TEXT NOT NULL UNIQUE,
    event_id TEXT NOT NULL,
    attendee_id TEXT NOT NULL,
    checked_in_at TEXT NOT NULL,
    check_in_location TEXT,
    nft_status TEXT
        CHECK (nft_status IS NULL OR nft_status IN ('pending', 'minted', 'failed')),
    nft_mint_address TEXT UNIQUE,
    nft_metadata_uri TEXT,
    nft_minted_at TEXT,
    nft_tx_hash TEXT,
    nft_chain TEXT,
    nft_error TEXT,
    nft_attempts INTEGER NOT NULL DEFAULT 0,
    nft_claimed_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_attendance_event ON attendance(event_id);
CREATE INDEX IF NOT EXISTS idx_attendance_attendee ON attendance(attendee_id);
CREATE INDEX IF NOT EXISTS idx_attendance_nft_status ON attendance(nft_status);

-- Journal of completed chain mints, written before the attendance update
CREATE TABLE IF NOT EXISTS mint_receipts (
    id TEXT PRIMARY KEY,
    attendance_id TEXT NOT NULL,
    mint_address TEXT NOT NULL,
    tx_hash TEXT NOT NULL,
    chain TEXT NOT NULL,
    metadata_uri TEXT NOT NULL,
    applied INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_receipts_applied ON mint_receipts(applied);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    event_id TEXT,
    ticket_id TEXT,
    attendance_id TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""

TABLES: dict[str, frozenset[str]] = {
    "events": frozenset({
        "id", "title", "description", "date", "location", "image_url",
        "base_price", "total_tickets", "tickets_sold", "creator_id",
        "is_published", "nft_enabled", "nft_artwork_url",
        "created_at", "updated_at",
    }),
    "profiles": frozenset({
        "id", "display_name", "wallet_address", "alt_wallet_address",
        "events_attended", "loyalty_points", "created_at", "updated_at",
    }),
    "tickets": frozenset({
        "id", "event_id", "owner_id", "purchase_price", "purchase_date",
        "status", "checked_in_at", "mint_address", "metadata",
        "created_at", "updated_at",
    }),
    "attendance": frozenset({
        "id", "ticket_id", "event_id", "attendee_id", "checked_in_at",
        "check_in_location", "nft_status", "nft_mint_address",
        "nft_metadata_uri", "nft_minted_at", "nft_tx_hash", "nft_chain",
        "nft_error", "nft_attempts", "nft_claimed_at",
        "created_at", "updated_at",
    }),
    "mint_receipts": frozenset({
        "id", "attendance_id", "mint_address", "tx_hash", "chain",
        "metadata_uri", "applied", "created_at", "updated_at",
    }),
}

JSON_COLUMNS = {"tickets": {"metadata"}}
BOOL_COLUMNS = {
    "events": {"is_published", "nft_enabled"},
    "mint_receipts": {"applied"},
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """SQLite-backed implementation of the DurableStore protocol.

    Every mutation is a single statement followed by a commit, so
    conditional updates (``update_where``, ``increment``) are atomic
    against concurrent callers sharing the database.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)

    async def initialize(self) -> None:
        if self._db is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Rows ───────────────────────────────────────────────

    async def get(self, entity: str, record_id: str) -> Row | None:
        _columns(entity)
        async with self.db.execute(
            f"SELECT * FROM {entity} WHERE id=?", (record_id,)
        ) as cur:
            row = await cur.fetchone()
            return _decode(entity, row) if row else None

    async def query(
        self,
        entity: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        columns = _columns(entity)
        clauses, params = _where(entity, filters or {})
        sql = f"SELECT * FROM {entity}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if order_by:
            if order_by not in columns:
                raise ValueError(f"unknown column for {entity}: {order_by}")
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        async with self.db.execute(sql, params) as cur:
            return [_decode(entity, row) async for row in cur]

    async def insert(self, entity: str, fields: dict[str, Any]) -> Row:
        columns = _columns(entity)
        values = dict(fields)
        now = _now()
        values.setdefault("id", uuid.uuid4().hex)
        if "created_at" in columns:
            values.setdefault("created_at", now)
        if "updated_at" in columns:
            values.setdefault("updated_at", now)
        encoded = _encode(entity, values)

        names = list(encoded)
        placeholders = ", ".join("?" for _ in names)
        await self.db.execute(
            f"INSERT INTO {entity} ({', '.join(names)}) VALUES ({placeholders})",
            [encoded[n] for n in names],
        )
        await self.db.commit()

        row = await self.get(entity, values["id"])
        assert row is not None
        await self._publish(ChangeEvent(entity, "insert", row["id"], row))
        return row

    async def update(self, entity: str, record_id: str, fields: dict[str, Any]) -> Row | None:
        return await self.update_where(entity, record_id, fields, {})

    async def update_where(
        self,
        entity: str,
        record_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any],
    ) -> Row | None:
        columns = _columns(entity)
        values = dict(fields)
        if "updated_at" in columns:
            values["updated_at"] = _now()
        encoded = _encode(entity, values)

        sets = [f"{name}=?" for name in encoded]
        params: list[Any] = list(encoded.values())
        clauses, where_params = _where(entity, expected, null_safe=True)
        sql = f"UPDATE {entity} SET {', '.join(sets)} WHERE " + " AND ".join(["id=?", *clauses])
        params.append(record_id)
        params.extend(where_params)
        return await self._update_returning(entity, record_id, sql + " RETURNING *", params)

    async def increment(
        self,
        entity: str,
        record_id: str,
        column: str,
        delta: int = 1,
        ceiling_column: str | None = None,
    ) -> Row | None:
        columns = _columns(entity)
        if column not in columns:
            raise ValueError(f"unknown column for {entity}: {column}")

        sql = f"UPDATE {entity} SET {column}={column}+?"
        params: list[Any] = [delta]
        if "updated_at" in columns:
            sql += ", updated_at=?"
            params.append(_now())
        sql += f" WHERE id=? AND {column}+? >= 0"
        params.extend([record_id, delta])
        if ceiling_column is not None:
            if ceiling_column not in columns:
                raise ValueError(f"unknown column for {entity}: {ceiling_column}")
            sql += f" AND {column}+? <= {ceiling_column}"
            params.append(delta)
        return await self._update_returning(entity, record_id, sql + " RETURNING *", params)

    async def upsert_increment(
        self,
        entity: str,
        record_id: str,
        deltas: dict[str, int],
    ) -> Row:
        columns = _columns(entity)
        unknown = set(deltas) - columns
        if not deltas:
            raise ValueError("no columns to increment")
        if unknown:
            raise ValueError(f"unknown columns for {entity}: {', '.join(sorted(unknown))}")

        now = _now()
        values: dict[str, Any] = {"id": record_id, **deltas}
        if "created_at" in columns:
            values["created_at"] = now
        if "updated_at" in columns:
            values["updated_at"] = now
        names = list(values)
        sets = [f"{name}={name}+excluded.{name}" for name in deltas]
        if "updated_at" in columns:
            sets.append("updated_at=excluded.updated_at")
        sql = (
            f"INSERT INTO {entity} ({', '.join(names)})"
            f" VALUES ({', '.join('?' for _ in names)})"
            f" ON CONFLICT(id) DO UPDATE SET {', '.join(sets)}"
            " RETURNING *"
        )
        async with self.db.execute(sql, [values[n] for n in names]) as cur:
            rows = await cur.fetchall()
        await self.db.commit()

        row = _decode(entity, rows[0])
        action = "insert" if row.get("created_at") == now else "update"
        await self._publish(ChangeEvent(entity, action, record_id, row))
        return row

    async def _update_returning(
        self, entity: str, record_id: str, sql: str, params: list[Any],
    ) -> Row | None:
        # RETURNING reads the row this statement wrote (SQLite 3.35+)
        async with self.db.execute(sql, params) as cur:
            rows = await cur.fetchall()
        await self.db.commit()
        if not rows:
            return None

        row = _decode(entity, rows[0])
        await self._publish(ChangeEvent(entity, "update", record_id, row))
        return row

    async def delete(self, entity: str, record_id: str) -> bool:
        row = await self.get(entity, record_id)
        if row is None:
            return False
        await self.db.execute(f"DELETE FROM {entity} WHERE id=?", (record_id,))
        await self.db.commit()
        await self._publish(ChangeEvent(entity, "delete", record_id, row))
        return True

    # ── Change feed ────────────────────────────────────────

    def subscribe(self, entity: str, callback: ChangeCallback) -> Callable[[], None]:
        if entity != "*":
            _columns(entity)
        self._subscribers[entity].append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers[entity]:
                self._subscribers[entity].remove(callback)

        return _unsubscribe

    async def _publish(self, change: ChangeEvent) -> None:
        callbacks = [*self._subscribers.get(change.entity, []), *self._subscribers.get("*", [])]
        for callback in callbacks:
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                log.warning(
                    "Subscriber failed on %s %s %s: %s",
                    change.entity, change.action, change.record_id, exc, exc_info=True,
                )

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        event_id: str | None = None,
        ticket_id: str | None = None,
        attendance_id: str | None = None,
    ) -> None:
        await self.db.execute(
            "INSERT INTO activity_log"
            " (event_type, event_id, ticket_id, attendance_id, message, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (event_type, event_id, ticket_id, attendance_id, message, _now()),
        )
        await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    message=row["message"],
                    event_id=row["event_id"],
                    ticket_id=row["ticket_id"],
                    attendance_id=row["attendance_id"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


# ── Row converters ─────────────────────────────────────────


def _columns(entity: str) -> frozenset[str]:
    try:
        return TABLES[entity]
    except KeyError:
        raise ValueError(f"unknown entity: {entity}") from None


def _encode(entity: str, fields: dict[str, Any]) -> dict[str, Any]:
    columns = _columns(entity)
    unknown = set(fields) - columns
    if unknown:
        raise ValueError(f"unknown columns for {entity}: {', '.join(sorted(unknown))}")
    json_cols = JSON_COLUMNS.get(entity, set())
    encoded: dict[str, Any] = {}
    for name, value in fields.items():
        if name in json_cols and value is not None:
            value = json.dumps(value, sort_keys=True)
        encoded[name] = _scalar(value)
    return encoded


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _where(
    entity: str, filters: dict[str, Any], null_safe: bool = False,
) -> tuple[list[str], list[Any]]:
    columns = _columns(entity)
    op = "IS" if null_safe else "="
    clauses: list[str] = []
    params: list[Any] = []
    for name, value in filters.items():
        if name not in columns:
            raise ValueError(f"unknown column for {entity}: {name}")
        if isinstance(value, (list, tuple, set, frozenset)):
            options = list(value)
            if not options:
                clauses.append("0")
                continue
            parts = [f"{name} IS NULL" if v is None else f"{name} {op} ?" for v in options]
            params.extend(_scalar(v) for v in options if v is not None)
            clauses.append("(" + " OR ".join(parts) + ")")
        elif value is None:
            clauses.append(f"{name} IS NULL")
        else:
            clauses.append(f"{name} {op} ?")
            params.append(_scalar(value))
    return clauses, params


def _decode(entity: str, row: aiosqlite.Row) -> Row:
    data = dict(row)
    for name in JSON_COLUMNS.get(entity, ()):
        raw = data.get(name)
        data[name] = json.loads(raw) if raw else {}
    for name in BOOL_COLUMNS.get(entity, ()):
        if name in data:
            data[name] = bool(data[name])
    return data
