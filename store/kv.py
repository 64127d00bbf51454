"""
store/kv.py -- Collection-oriented key-value store on SQLAlchemy Core.

Every collection lives in a single "records" table: one row per record, the
record body serialized as JSON text. There is no join operator: callers that
need to relate two collections fetch each side and intersect in memory.

Query semantics:
  - Two values are equal when they have the same type and compare ==. No case
    folding, no type coercion: {"id": 7} matches neither {"id": "7"} nor
    {"id": 7.0} nor {"id": True}.
  - Results come back in insertion order (row id ascending).
  - Filtering happens after the collection is loaded. Collections are expected
    to stay small (users, roles, role links), not to hold bulk data.

Security: all SQL uses bound parameters. Collection and field names never
reach SQL text -- they are data, not identifiers.

Usage:
    store = KVStore("sqlite:///:memory:")
    user = store.quick_insert("users", {"username": "alice", "password": ""})
    store.quick_select("users", {"username": "alice"})      # dict or None
    store.quick_update("users", {"username": "alice"}, {"password": "..."})
    store.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("kvauth.store")

Record = dict[str, Any]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_records = Table(
    "records",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("collection", String(255), nullable=False, index=True),
    Column("data", Text, nullable=False),  # JSON object
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _same(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def _matches(record: Record, where: Record) -> bool:
    return all(key in record and _same(record[key], value) for key, value in where.items())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class KVStore:
    """Key-value store holding named collections of JSON records."""

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.db_url = db_url
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def _load(self, conn: Connection, collection: str) -> list[tuple[int, Record]]:
        rows = conn.execute(
            select(_records.c.id, _records.c.data)
            .where(_records.c.collection == collection)
            .order_by(_records.c.id)
        ).fetchall()
        return [(row.id, json.loads(row.data)) for row in rows]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def quick_select(self, collection: str, where: Record) -> Record | None:
        """Return the first record in collection matching every key in where, or None."""
        matches = self.quick_select_all(collection, where)
        return matches[0] if matches else None

    def quick_select_all(self, collection: str, where: Record | None = None) -> list[Record]:
        """Return every record in collection matching where (all records if where is empty)."""
        where = where or {}
        with self.engine.connect() as conn:
            records = self._load(conn, collection)
        return [record for _, record in records if _matches(record, where)]

    def quick_select_in(self, collection: str, key: str, values: Iterable[Any]) -> list[Record]:
        """Return every record in collection whose key equals one of values.

        Values are compared the same way quick_select() compares them, so
        unhashable JSON values (lists, objects) are supported.
        """
        wanted = list(values)
        if not wanted:
            return []
        with self.engine.connect() as conn:
            records = self._load(conn, collection)
        return [record for _, record in records if key in record and any(_same(record[key], v) for v in wanted)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def quick_insert(self, collection: str, data: Record, id_key: str = "id") -> Record:
        """Insert a record and return it as stored.

        If data has no id_key, the row id is written into the record under
        id_key so every record carries a unique identifier.
        """
        record = dict(data)
        with self.engine.connect() as conn:
            result = conn.execute(_records.insert().values(collection=collection, data=json.dumps(record)))
            row_id = result.inserted_primary_key[0]
            if id_key not in record:
                record[id_key] = row_id
                conn.execute(_records.update().where(_records.c.id == row_id).values(data=json.dumps(record)))
            conn.commit()
        logger.debug("Inserted record %s into %s", record.get(id_key), collection)
        return record

    def quick_update(self, collection: str, where: Record, update: Record) -> int:
        """Merge update into every record matching where. Returns the number of records changed."""
        changed = 0
        with self.engine.connect() as conn:
            for row_id, record in self._load(conn, collection):
                if not _matches(record, where):
                    continue
                record.update(update)
                conn.execute(_records.update().where(_records.c.id == row_id).values(data=json.dumps(record)))
                changed += 1
            conn.commit()
        return changed

    def quick_delete(self, collection: str, where: Record) -> int:
        """Delete every record matching where. Returns the number of records removed."""
        removed = 0
        with self.engine.connect() as conn:
            for row_id, record in self._load(conn, collection):
                if _matches(record, where):
                    conn.execute(_records.delete().where(_records.c.id == row_id))
                    removed += 1
            conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the backing database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()
