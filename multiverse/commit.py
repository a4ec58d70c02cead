"""
Commit Engine

Turns a raw board into a minimal, deduplicated delta and appends it
to a timeline as one atomic transaction.

    prev  = latest board of the timeline (empty if none)
    delta = diff(prev, raw_board)
    added cells    -> asserted, CellRecords created or reused by hash
    removed cells  -> retracted by hash reference
    unchanged      -> not written at all

Everything for one commit (timeline row on first commit, commit row,
delta rows, checkpoint) lands in a single BEGIN IMMEDIATE block, so
readers see either the whole commit or none of it, and a failure
leaves the timeline exactly as it was.
"""

import json
import logging
import sqlite3
import time
from collections.abc import Iterable

from .cas import CellStore
from .cells import EMPTY, Board, BoardDiff, Cell, as_board, diff
from .errors import NameCollision
from .history import HistoryReconstructor

logger = logging.getLogger(__name__)


def validate_timeline_name(name: str):
    """Reject names that cannot be stored or displayed sensibly."""
    if not isinstance(name, str):
        raise ValueError(f"Timeline name must be a string, got {type(name).__name__}")
    if not name or not name.strip():
        raise ValueError("Timeline name cannot be empty")
    if "\0" in name:
        raise ValueError(f"Timeline name contains null byte: {name!r}")


class CommitEngine:
    """
    Appends commits. The only writer of commit, delta and checkpoint rows.

    checkpoint_interval: write a full-board checkpoint every N steps
    (0 disables checkpoints; history is then rebuilt from step 0).
    """

    def __init__(
        self,
        store: CellStore,
        reconstructor: HistoryReconstructor,
        checkpoint_interval: int = 0,
    ):
        if checkpoint_interval < 0:
            raise ValueError(f"checkpoint_interval must be >= 0, got {checkpoint_interval}")
        self.store = store
        self.conn = store.conn
        self.reconstructor = reconstructor
        self.checkpoint_interval = checkpoint_interval
        # timeline -> (tx, board) of the last commit this engine made and saw
        # become durable. Only trusted while that tx is still the latest.
        self._heads: dict[str, tuple[int, Board]] = {}

    # ── Timelines ─────────────────────────────────────────────────

    def _exists(self, name: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM timelines WHERE name = ?", (name,)).fetchone()
        return row is not None

    def create_timeline(
        self,
        name: str,
        fork_source: str | None = None,
        fork_step: int | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Insert the timeline row. Raises NameCollision if the name is taken."""
        validate_timeline_name(name)
        with self.store.batch():
            try:
                self.conn.execute(
                    """INSERT INTO timelines (name, created_at, fork_source, fork_step, metadata)
                       VALUES (?, ?, ?, ?, ?)""",
                    (name, time.time(), fork_source, fork_step, json.dumps(metadata or {})),
                )
            except sqlite3.IntegrityError:
                raise NameCollision(name) from None
        return name

    # ── Commits ───────────────────────────────────────────────────

    def _head(self, timeline: str) -> tuple[int, int] | None:
        """(step, tx) of the latest commit, or None if there are none."""
        row = self.conn.execute(
            """SELECT step, tx FROM commits WHERE timeline = ?
               ORDER BY step DESC LIMIT 1""",
            (timeline,),
        ).fetchone()
        return None if row is None else (row[0], row[1])

    def _latest(self, timeline: str) -> tuple[int | None, Board]:
        """Latest (step, board), read inside the caller's write transaction."""
        head = self._head(timeline)
        if head is None:
            return None, EMPTY
        step, tx = head
        cached = self._heads.get(timeline)
        if cached is not None and cached[0] == tx:
            return step, cached[1]
        return step, self.reconstructor.board_at(timeline, step)

    def _remember(self, timeline: str, tx: int, board: Board, owns_batch: bool):
        if owns_batch:
            self._heads[timeline] = (tx, board)
        else:
            # the enclosing transaction can still roll back
            self._heads.pop(timeline, None)

    def _next_tx(self) -> int:
        row = self.conn.execute("SELECT COALESCE(MAX(tx), 0) + 1 FROM commits").fetchone()
        return row[0]

    def _append(
        self, timeline: str, step: int, previous: Board, board: Board
    ) -> tuple[BoardDiff, int]:
        """Write one commit and return (delta, tx). Must run inside a batch."""
        delta = diff(previous, board)

        # Collision checks happen here, before any row for this commit exists
        asserted = self.store.intern(delta.added)
        retracted = self.store.hashes_for(delta.removed)

        tx = self._next_tx()
        self.conn.execute(
            """INSERT INTO commits
               (timeline, step, tx, created_at, added_count, removed_count)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (timeline, step, tx, time.time(), len(asserted), len(retracted)),
        )
        self.conn.executemany(
            "INSERT INTO deltas (timeline, step, cell_hash, asserted) VALUES (?, ?, ?, 1)",
            [(timeline, step, h) for h in asserted.values()],
        )
        self.conn.executemany(
            "INSERT INTO deltas (timeline, step, cell_hash, asserted) VALUES (?, ?, ?, 0)",
            [(timeline, step, h) for h in retracted.values()],
        )

        if self.checkpoint_interval and step and step % self.checkpoint_interval == 0:
            refs = sorted(self.store.hashes_for(board).values())
            self.conn.execute(
                "INSERT INTO checkpoints (timeline, step, cells) VALUES (?, ?, ?)",
                (timeline, step, json.dumps(refs)),
            )
            logger.debug("Checkpoint %s@%d (%d cells)", timeline, step, len(refs))

        return delta, tx

    def commit(self, timeline: str, raw_board: Iterable[Cell]) -> int:
        """
        Append *raw_board* as the next step of *timeline*.

        Creates the timeline on its first commit. Returns the new step
        index: 0 for the first commit, previous max + 1 after that.
        """
        return self.commit_many(timeline, [raw_board])[0]

    def commit_many(self, timeline: str, boards: Iterable[Iterable[Cell]]) -> list[int]:
        """Commit a sequence of full boards, all or nothing."""
        validated = [as_board(b) for b in boards]
        if not validated:
            return []
        owns_batch = not self.store.in_batch
        steps = []

        with self.store.batch():
            if not self._exists(timeline):
                self.create_timeline(timeline)
            last, previous = self._latest(timeline)
            step = -1 if last is None else last
            for board in validated:
                step += 1
                delta, tx = self._append(timeline, step, previous, board)
                steps.append(step)
                previous = board
                logger.debug(
                    "Committed %s@%d (+%d -%d, %d unchanged)",
                    timeline, step, len(delta.added), len(delta.removed), len(delta.unchanged),
                )

        self._remember(timeline, tx, previous, owns_batch)
        return steps

    def seed(
        self,
        timeline: str,
        board: Iterable[Cell],
        fork_source: str | None = None,
        fork_step: int | None = None,
        metadata: dict | None = None,
    ) -> int:
        """Create *timeline* with *board* as its step 0, atomically."""
        board = as_board(board)
        with self.store.batch():
            self.create_timeline(timeline, fork_source, fork_step, metadata)
            delta, _ = self._append(timeline, 0, EMPTY, board)
        logger.debug("Seeded %s@0 with %d cells", timeline, len(delta.added))
        return 0
