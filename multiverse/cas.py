"""
Content-Addressed Cell Store

The foundational storage layer. Every live cell that ever appears in
any timeline is stored exactly once, as a CellRecord addressed by a
hash of its coordinates. This gives us:

- Automatic deduplication (a cell alive for 1000 steps is one row)
- Integrity verification (a record's hash must recompute from its x, y)
- Cheap branches (timelines share records, never copy them)

Commits and timelines hold hash references into this arena; nothing
else owns a cell.
"""

import hashlib
import logging
import sqlite3
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .cells import Cell
from .errors import IntegrityViolation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellRecord:
    """An immutable content-addressed cell."""

    hash: int
    x: int
    y: int

    @property
    def cell(self) -> Cell:
        return (self.x, self.y)


def hash_cell(x: int, y: int) -> int:
    """
    Deterministic 64-bit identity for a coordinate pair.

    Type-prefixed like the object hashes of git, then truncated to a
    signed 64-bit int so it fits an SQLite INTEGER PRIMARY KEY.
    """
    digest = hashlib.sha256(f"cell:{x}:{y}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class CellStore:
    """
    SQLite-backed content-addressed store for cell records.

    Also owns the connection and transaction helpers the timeline
    layer builds on: batch() for atomic writes, read_snapshot() for
    multi-query reads that must see a single point in time.

    Thread Safety:
        This class is NOT safe for concurrent use from multiple threads.
        Create one Multiverse (and therefore one CellStore) per thread.
        Multiple instances safely share the same database file via
        SQLite WAL mode + busy_timeout.
    """

    def __init__(self, db_path: Path, hasher=hash_cell):
        self.db_path = db_path
        self.hasher = hasher
        # check_same_thread=False: allows a store created on one thread
        # to be used on another.  Does NOT make CellStore thread-safe.
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL")
        # 30s timeout for writers queued behind another handle
        self.conn.execute("PRAGMA busy_timeout = 30000")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._in_batch = False
        self._closed = False
        self._init_tables()

    def _init_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS cell_records (
                hash INTEGER PRIMARY KEY,
                x INTEGER NOT NULL,
                y INTEGER NOT NULL,
                UNIQUE (x, y)
            );
        """)
        self.conn.commit()

    # ── Transactions ──────────────────────────────────────────────

    @property
    def in_batch(self) -> bool:
        return self._in_batch

    @contextmanager
    def batch(self):
        """Context manager for atomic writes — single commit at the end.

        BEGIN IMMEDIATE takes the write lock up front, so a
        read-then-write inside the block cannot interleave with another
        writer. Any exception rolls the whole block back.
        """
        if self._in_batch:
            yield  # nested, pass through
            return
        self._in_batch = True
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self._in_batch = False

    @contextmanager
    def read_snapshot(self):
        """Run several SELECTs against one consistent snapshot.

        In WAL mode a deferred transaction pins the database as of its
        first read; commits by other handles stay invisible until it ends.
        """
        if self._in_batch or self.conn.in_transaction:
            yield
            return
        self.conn.execute("BEGIN")
        try:
            yield
        finally:
            self.conn.rollback()

    # ── Core Operations ───────────────────────────────────────────

    def intern(self, cells: Iterable[Cell]) -> dict[Cell, int]:
        """
        Create or reuse the CellRecord for each cell; return {cell: hash}.

        All hashes are computed and checked for collisions (within the
        batch and against stored records) before anything is inserted,
        so a collision aborts with no rows written.
        """
        mapping: dict[Cell, int] = {}
        owner: dict[int, Cell] = {}
        for cell in cells:
            h = self.hasher(*cell)
            other = owner.get(h)
            if other is not None and other != cell:
                raise IntegrityViolation(
                    f"Hash collision: {cell!r} and {other!r} both hash to {h}"
                )
            owner[h] = cell
            mapping[cell] = h

        if not mapping:
            return mapping

        fresh = []
        for h, cell in owner.items():
            row = self.conn.execute(
                "SELECT x, y FROM cell_records WHERE hash = ?", (h,)
            ).fetchone()
            if row is None:
                fresh.append((h, cell[0], cell[1]))
            elif (row[0], row[1]) != cell:
                raise IntegrityViolation(
                    f"Hash collision: {cell!r} and stored cell {tuple(row)!r} "
                    f"both hash to {h}"
                )

        if fresh:
            self.conn.executemany(
                "INSERT INTO cell_records (hash, x, y) VALUES (?, ?, ?)", fresh
            )
            logger.debug("Stored %d new cell records (%d reused)",
                         len(fresh), len(mapping) - len(fresh))
        if not self._in_batch:
            self.conn.commit()
        return mapping

    def hashes_for(self, cells: Iterable[Cell]) -> dict[Cell, int]:
        """Hash references for cells that must already be stored."""
        return {cell: self.hasher(*cell) for cell in cells}

    def retrieve(self, cell_hash: int) -> CellRecord | None:
        """Retrieve a record by its hash."""
        row = self.conn.execute(
            "SELECT hash, x, y FROM cell_records WHERE hash = ?", (cell_hash,)
        ).fetchone()
        if row is None:
            return None
        return CellRecord(hash=row[0], x=row[1], y=row[2])

    def exists(self, cell_hash: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM cell_records WHERE hash = ?", (cell_hash,)
        ).fetchone()
        return row is not None

    def cells_for(self, hashes: Iterable[int]) -> frozenset[Cell]:
        """Resolve hash references back into cells."""
        found = set()
        for h in hashes:
            record = self.retrieve(h)
            if record is None:
                raise IntegrityViolation(f"Dangling cell reference: {h}")
            found.add(record.cell)
        return frozenset(found)

    def iter_records(self):
        for row in self.conn.execute("SELECT hash, x, y FROM cell_records ORDER BY hash"):
            yield CellRecord(hash=row[0], x=row[1], y=row[2])

    # ── Statistics ────────────────────────────────────────────────

    def stats(self) -> dict:
        """Storage statistics."""
        row = self.conn.execute("SELECT COUNT(*) FROM cell_records").fetchone()
        return {"cell_records": row[0]}

    def close(self):
        """Close the SQLite connection. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        try:
            self.conn.close()
        except sqlite3.Error:
            logger.debug("Error closing %s", self.db_path, exc_info=True)

    def __del__(self):
        """Safety net: close if the user forgot to call close()."""
        try:
            if not self._closed:
                self.close()
        except Exception:
            pass
