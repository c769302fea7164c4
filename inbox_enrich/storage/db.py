"""SQLite connection shared by the enrichment cache and the task store."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from inbox_enrich.storage.models import ALL_TABLES

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/enrichment.db")


class EnrichmentDatabase:
    """Wraps one SQLite connection plus a re-entrant write transaction.

    Designed for single-threaded use from an async event loop — all calls are
    synchronous/blocking but short. Separate processes may share the file;
    ``transaction()`` takes the write lock up front (BEGIN IMMEDIATE) so a
    read-then-write inside it cannot interleave with another writer.

    Usage::

        db = EnrichmentDatabase()
        with db.transaction() as conn:
            conn.execute(...)
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly in transaction().
        self._conn = sqlite3.connect(str(self._path), isolation_level=None, timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._depth = 0
        self._create_tables()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one write transaction.

        Nested calls join the outermost transaction; only the outermost
        commits, and any exception rolls the whole thing back.
        """
        outermost = self._depth == 0
        if outermost:
            self._conn.execute("BEGIN IMMEDIATE")
        self._depth += 1
        try:
            yield self._conn
        except BaseException:
            self._depth -= 1
            if outermost:
                self._conn.rollback()
            raise
        self._depth -= 1
        if outermost:
            self._conn.commit()

    def _create_tables(self) -> None:
        with self.transaction() as conn:
            for ddl in ALL_TABLES:
                conn.execute(ddl)
        logger.debug("Enrichment database ready at %s", self._path)
