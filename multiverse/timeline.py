"""
Timelines

A timeline is a globally unique name plus an append-only, ordered
sequence of commits. Step indices run 0, 1, 2, ... with no gaps;
commits are never edited or deleted.

Reads come in three shapes:

- latest_board(name)        the board after the highest step
- board_at(name, step)      the exact historical board, or None past the end
- full_history(name)        every board in order, restartable

Writes go through the CommitEngine; reconstruction through the
HistoryReconstructor. This module owns the schema they share.
"""

import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .cas import CellStore
from .cells import EMPTY, Board, BoardDiff, Cell, diff
from .commit import CommitEngine
from .errors import NotFound, check_step
from .history import HistoryReconstructor

logger = logging.getLogger(__name__)


@dataclass
class TimelineInfo:
    """Summary of one timeline."""
    name: str
    created_at: float
    commit_count: int
    latest_step: int | None
    fork_source: str | None = None
    fork_step: int | None = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "created_at": self.created_at,
            "commit_count": self.commit_count,
            "latest_step": self.latest_step,
            "fork_source": self.fork_source,
            "fork_step": self.fork_step,
            "metadata": self.metadata,
        }


@dataclass
class CommitInfo:
    """One entry of a timeline's commit log."""
    timeline: str
    step: int
    tx: int
    created_at: float
    added: int
    removed: int

    def to_dict(self) -> dict:
        return {
            "timeline": self.timeline,
            "step": self.step,
            "tx": self.tx,
            "created_at": self.created_at,
            "added": self.added,
            "removed": self.removed,
        }


class BoardHistory:
    """
    The boards of a timeline, in step order.

    Finite and restartable: every iteration replays the log again.
    The extent is fixed when the object is created, so commits made
    afterwards never show up in (or shift) an existing history.
    """

    def __init__(
        self,
        reconstructor: HistoryReconstructor,
        timeline: str,
        after: int,
        upto: int | None,
    ):
        self.reconstructor = reconstructor
        self.timeline = timeline
        self.after = after
        self.upto = upto

    @property
    def first_step(self) -> int:
        return self.after + 1

    def steps(self) -> range:
        if self.upto is None:
            return range(0)
        return range(self.after + 1, self.upto + 1)

    def __iter__(self) -> Iterator[Board]:
        if self.upto is None or self.upto <= self.after:
            return iter(())
        return self.reconstructor.replay_range(self.timeline, self.after, self.upto)

    def __len__(self) -> int:
        return len(self.steps())

    def __repr__(self) -> str:
        return f"BoardHistory({self.timeline!r}, steps={self.steps()!r})"


class TimelineStore:
    """
    Manages named timelines and their commit logs.

    Single writer per timeline, any number of readers: commits are
    serialized by the substrate's write lock, reads run against a
    consistent snapshot and never block.
    """

    def __init__(self, store: CellStore, checkpoint_interval: int = 0):
        self.store = store
        self.conn = store.conn
        self._init_tables()
        self.reconstructor = HistoryReconstructor(store)
        self.engine = CommitEngine(store, self.reconstructor, checkpoint_interval)

    def _init_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS timelines (
                name TEXT PRIMARY KEY,
                created_at REAL NOT NULL,
                fork_source TEXT,
                fork_step INTEGER,
                metadata TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS commits (
                timeline TEXT NOT NULL,
                step INTEGER NOT NULL,
                tx INTEGER NOT NULL UNIQUE,
                created_at REAL NOT NULL,
                added_count INTEGER NOT NULL DEFAULT 0,
                removed_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (timeline, step),
                FOREIGN KEY (timeline) REFERENCES timelines(name)
            );

            CREATE TABLE IF NOT EXISTS deltas (
                timeline TEXT NOT NULL,
                step INTEGER NOT NULL,
                cell_hash INTEGER NOT NULL,
                asserted INTEGER NOT NULL CHECK (asserted IN (0, 1)),
                PRIMARY KEY (timeline, step, cell_hash),
                FOREIGN KEY (timeline, step) REFERENCES commits(timeline, step),
                FOREIGN KEY (cell_hash) REFERENCES cell_records(hash)
            );

            CREATE TABLE IF NOT EXISTS checkpoints (
                timeline TEXT NOT NULL,
                step INTEGER NOT NULL,
                cells TEXT NOT NULL,
                PRIMARY KEY (timeline, step),
                FOREIGN KEY (timeline, step) REFERENCES commits(timeline, step)
            );

            CREATE INDEX IF NOT EXISTS idx_commits_tx
                ON commits(tx);
        """)
        self.conn.commit()

    @property
    def checkpoint_interval(self) -> int:
        return self.engine.checkpoint_interval

    # ── Lifecycle ─────────────────────────────────────────────────

    def create(self, name: str, metadata: dict | None = None) -> str:
        """Create an empty timeline. Raises NameCollision if it exists."""
        self.engine.create_timeline(name, metadata=metadata)
        logger.debug("Created timeline %s", name)
        return name

    def exists(self, name: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM timelines WHERE name = ?", (name,)).fetchone()
        return row is not None

    def _require(self, name: str):
        if not self.exists(name):
            raise NotFound(f"Timeline not found: {name!r}")

    def commit(self, name: str, board: Iterable[Cell]) -> int:
        """Append a board; see CommitEngine.commit."""
        return self.engine.commit(name, board)

    def commit_many(self, name: str, boards: Iterable[Iterable[Cell]]) -> list[int]:
        return self.engine.commit_many(name, boards)

    # ── Reads ─────────────────────────────────────────────────────

    def latest_step(self, name: str) -> int | None:
        """Highest step of *name*, or None if it has no commits yet."""
        with self.store.read_snapshot():
            self._require(name)
            return self.reconstructor.last_step(name)

    def latest_board(self, name: str) -> Board:
        """Board of the highest step; the empty board if there are no commits."""
        with self.store.read_snapshot():
            self._require(name)
            last = self.reconstructor.last_step(name)
            if last is None:
                return EMPTY
            return self.reconstructor.board_at(name, last)

    def board_at(self, name: str, step: int) -> Board | None:
        """
        The exact board at *step* (inclusive).

        Returns None when *step* is past the end of the history. That
        is an ordinary outcome, not an error, and it is distinct from
        a legitimately empty board (an empty frozenset).
        """
        check_step(step)
        with self.store.read_snapshot():
            self._require(name)
            last = self.reconstructor.last_step(name)
            if last is None or step > last:
                return None
            return self.reconstructor.board_at(name, step)

    def require_board_at(self, name: str, step: int) -> Board:
        """Like board_at, but raise NotFound past the end of the history."""
        board = self.board_at(name, step)
        if board is None:
            raise NotFound(
                f"Timeline {name!r} has no step {step} "
                f"(latest is {self.reconstructor.last_step(name)})"
            )
        return board

    def full_history(self, name: str, from_step: int | None = None) -> BoardHistory:
        """
        Every board of *name* in step order.

        With from_step, the board at from_step is the replay baseline
        and only the boards of later steps are yielded.
        """
        with self.store.read_snapshot():
            self._require(name)
            last = self.reconstructor.last_step(name)
        if from_step is None:
            return BoardHistory(self.reconstructor, name, -1, last)
        check_step(from_step)
        if last is None or from_step > last:
            raise NotFound(
                f"Timeline {name!r} has no step {from_step} (latest is {last})"
            )
        return BoardHistory(self.reconstructor, name, from_step, last)

    def current_tx(self) -> int:
        """The most recent transaction marker (0 before any commit)."""
        row = self.conn.execute("SELECT COALESCE(MAX(tx), 0) FROM commits").fetchone()
        return row[0]

    def board_as_of(self, name: str, tx: int) -> Board | None:
        """
        The board *name* showed as of transaction *tx*.

        None if the timeline had no commit at or before that marker.
        """
        with self.store.read_snapshot():
            self._require(name)
            step = self.reconstructor.step_as_of(name, tx)
            if step is None:
                return None
            return self.reconstructor.board_at(name, step)

    def diff_steps(self, name: str, step_a: int, step_b: int) -> BoardDiff:
        """Diff two steps of the same timeline."""
        with self.store.read_snapshot():
            a = self.require_board_at(name, step_a)
            b = self.require_board_at(name, step_b)
        return diff(a, b)

    # ── Introspection ─────────────────────────────────────────────

    def info(self, name: str) -> TimelineInfo:
        row = self.conn.execute(
            """SELECT t.name, t.created_at, t.fork_source, t.fork_step, t.metadata,
                      COUNT(c.step), MAX(c.step)
               FROM timelines t
               LEFT JOIN commits c ON c.timeline = t.name
               WHERE t.name = ?
               GROUP BY t.name""",
            (name,),
        ).fetchone()
        if row is None:
            raise NotFound(f"Timeline not found: {name!r}")
        return TimelineInfo(
            name=row[0],
            created_at=row[1],
            fork_source=row[2],
            fork_step=row[3],
            metadata=json.loads(row[4] or "{}"),
            commit_count=row[5],
            latest_step=row[6],
        )

    def list_timelines(self) -> list[TimelineInfo]:
        """All timelines, oldest first."""
        names = [
            r[0] for r in self.conn.execute(
                "SELECT name FROM timelines ORDER BY created_at, name"
            )
        ]
        return [self.info(n) for n in names]

    def log(self, name: str, limit: int | None = None) -> list[CommitInfo]:
        """Commit log of *name*, newest first."""
        self._require(name)
        query = """SELECT timeline, step, tx, created_at, added_count, removed_count
                   FROM commits WHERE timeline = ? ORDER BY step DESC"""
        params: list = [name]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [
            CommitInfo(
                timeline=r[0], step=r[1], tx=r[2], created_at=r[3],
                added=r[4], removed=r[5],
            )
            for r in self.conn.execute(query, params).fetchall()
        ]

    def steps(self, name: str) -> list[int]:
        """Every committed step of *name*, ascending."""
        return [
            r[0] for r in self.conn.execute(
                "SELECT step FROM commits WHERE timeline = ? ORDER BY step", (name,)
            )
        ]

    def checkpoint_steps(self, name: str) -> list[int]:
        return [
            r[0] for r in self.conn.execute(
                "SELECT step FROM checkpoints WHERE timeline = ? ORDER BY step", (name,)
            )
        ]

    def stats(self) -> dict:
        counts = {}
        for table in ("timelines", "commits", "deltas", "checkpoints"):
            counts[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return counts
