"""
Durable local queue of dispatched gauge samples, backed by async SQLite.

A poll cycle hands its samples to :meth:`Spool.enqueue_samples`; they are
stored in one transaction, so the cycle dispatches all of its days or none.
The uploader drains rows oldest first and deletes them only once the ingest
endpoint has taken them.

Each row keeps the sample's own timestamp next to its JSON payload. The
payload is what gets uploaded; the timestamp column lets the daemon report
how far back the pending backlog reaches.

Operations:
- enqueue_samples(samples): Store a cycle's samples atomically, in order.
- peek(n): Up to n oldest ``(rowid, payload)`` rows.
- ack(rowids): Delete the given rows.
- count(): Number of pending samples.
- oldest_ts(): Sample timestamp of the oldest pending row.

CHANGELOG:
- 2026-10-19: Store GaugeSample objects with their timestamp (STORY-015)
- 2026-10-13: All-or-nothing insert per cycle (STORY-008)
- 2026-10-12: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from pathlib import Path

import aiosqlite

from gruenbeck.src.models import GaugeSample

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS samples (
    rowid INTEGER PRIMARY KEY AUTOINCREMENT,
    sample_ts INTEGER NOT NULL,
    payload TEXT NOT NULL,
    queued_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_INSERT_SQL = "INSERT INTO samples (sample_ts, payload) VALUES (?, ?);"
_PEEK_SQL = "SELECT rowid, payload FROM samples ORDER BY rowid LIMIT ?;"
_COUNT_SQL = "SELECT COUNT(*) FROM samples;"
_OLDEST_SQL = "SELECT MIN(sample_ts) FROM samples;"

_NOT_OPEN = "Spool not opened. Call open() or use async with."


def _sample_rows(samples: Sequence[GaugeSample]) -> Iterator[tuple[int, str]]:
    for sample in samples:
        yield int(sample.ts.timestamp()), sample.model_dump_json()


class Spool:
    """Async FIFO of gauge samples in a SQLite file (WAL mode).

    Args:
        path: Filesystem path of the SQLite database file.

    Usage::

        async with Spool(path="/data/spool.db") as spool:
            await spool.enqueue_samples(samples)
            rows = await spool.peek(10)
            await spool.ack([rowid for rowid, _ in rows])
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> Spool:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def enqueue_samples(self, samples: Sequence[GaugeSample]) -> None:
        """Store *samples* in dispatch order as one transaction.

        If any sample cannot be stored, rows already inserted by this call
        are rolled back and the error propagates. An empty sequence is a
        no-op.
        """
        assert self._db is not None, _NOT_OPEN
        if not samples:
            return
        try:
            await self._db.executemany(_INSERT_SQL, _sample_rows(samples))
        except Exception:
            await self._db.rollback()
            raise
        await self._db.commit()

    async def ack(self, rowids: Sequence[int]) -> None:
        """Delete the given rows. Unknown rowids are ignored."""
        assert self._db is not None, _NOT_OPEN
        if not rowids:
            return
        placeholders = ",".join("?" * len(rowids))
        await self._db.execute(
            f"DELETE FROM samples WHERE rowid IN ({placeholders});",  # noqa: S608
            list(rowids),
        )
        await self._db.commit()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def peek(self, n: int) -> list[tuple[int, str]]:
        """Return up to *n* oldest ``(rowid, payload)`` rows; [] when n < 1."""
        assert self._db is not None, _NOT_OPEN
        if n < 1:
            return []
        async with self._db.execute(_PEEK_SQL, (n,)) as cursor:
            return [(rowid, payload) async for rowid, payload in cursor]

    async def count(self) -> int:
        assert self._db is not None, _NOT_OPEN
        async with self._db.execute(_COUNT_SQL) as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def oldest_ts(self) -> int | None:
        """Epoch timestamp of the oldest pending sample, or None if empty."""
        assert self._db is not None, _NOT_OPEN
        async with self._db.execute(_OLDEST_SQL) as cursor:
            row = await cursor.fetchone()
        return row[0]
