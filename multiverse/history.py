"""
History Reconstruction

Timelines never store a full board per commit. Each commit records
only the cells it asserted and retracted, so any historical board is
rebuilt by replay:

    B = {}
    for i in 0..target:
        B = (B - removed_i) | added_i

Every intermediate B is exactly the board at step i, which is what
drives both point reads and full-history enumeration. Optional
checkpoints (a full board, stored as cell hash references, every N
steps) bound the replay for a point read: start from the nearest
checkpoint at or before the target instead of from the empty board.
"""

import json
import logging
from collections.abc import Iterable, Iterator

from .cas import CellStore
from .cells import EMPTY, Board, Cell, diff

logger = logging.getLogger(__name__)

Delta = tuple[frozenset[Cell], frozenset[Cell]]


def replay(deltas: Iterable[Delta], baseline: Board = EMPTY) -> Iterator[Board]:
    """Apply (added, removed) pairs in order, yielding the board after each."""
    board = set(baseline)
    for added, removed in deltas:
        board.difference_update(removed)
        board.update(added)
        yield frozenset(board)


def deltas_from_boards(boards: Iterable[Iterable[Cell]]) -> Iterator[Delta]:
    """Turn a log of full boards into the (added, removed) pairs replay() takes."""
    previous = EMPTY
    for board in boards:
        d = diff(previous, board)
        yield d.added, d.removed
        previous = d.added | d.unchanged


class HistoryReconstructor:
    """Rebuilds historical boards from a timeline's commit log."""

    def __init__(self, store: CellStore):
        self.store = store
        self.conn = store.conn

    def last_step(self, timeline: str) -> int | None:
        """Highest committed step, or None if the timeline has no commits."""
        row = self.conn.execute(
            "SELECT MAX(step) FROM commits WHERE timeline = ?", (timeline,)
        ).fetchone()
        return row[0]

    def step_as_of(self, timeline: str, tx: int) -> int | None:
        """Highest step committed in transaction *tx* or earlier."""
        row = self.conn.execute(
            "SELECT MAX(step) FROM commits WHERE timeline = ? AND tx <= ?",
            (timeline, tx),
        ).fetchone()
        return row[0]

    # ── Log access ────────────────────────────────────────────────

    def _checkpoint(self, timeline: str, step: int) -> tuple[int, Board]:
        """Nearest checkpoint at or before *step*: (checkpoint_step, board).

        (-1, EMPTY) when there is none, meaning replay from the beginning.
        """
        row = self.conn.execute(
            """SELECT step, cells FROM checkpoints
               WHERE timeline = ? AND step <= ?
               ORDER BY step DESC LIMIT 1""",
            (timeline, step),
        ).fetchone()
        if row is None:
            return -1, EMPTY
        return row[0], self.store.cells_for(json.loads(row[1]))

    def deltas(self, timeline: str, after: int, upto: int) -> list[Delta]:
        """
        (added, removed) for every commit with after < step <= upto.

        Commits that changed nothing still get an entry (two empty
        sets), so the list index lines up with the step index.
        """
        rows = self.conn.execute(
            """SELECT d.step, d.asserted, r.x, r.y
               FROM deltas d
               JOIN cell_records r ON r.hash = d.cell_hash
               WHERE d.timeline = ? AND d.step > ? AND d.step <= ?
               ORDER BY d.step""",
            (timeline, after, upto),
        ).fetchall()

        by_step: dict[int, tuple[set, set]] = {}
        for step, asserted, x, y in rows:
            added, removed = by_step.setdefault(step, (set(), set()))
            if asserted:
                added.add((x, y))
            else:
                removed.add((x, y))

        result = []
        for step in range(after + 1, upto + 1):
            added, removed = by_step.get(step, (EMPTY, EMPTY))
            result.append((frozenset(added), frozenset(removed)))
        return result

    # ── Reconstruction ────────────────────────────────────────────

    def board_at(self, timeline: str, step: int, use_checkpoints: bool = True) -> Board:
        """
        Rebuild the board at *step*.

        The caller guarantees the step exists; bounds and error
        reporting live in the timeline store.
        """
        with self.store.read_snapshot():
            if use_checkpoints:
                base_step, baseline = self._checkpoint(timeline, step)
            else:
                base_step, baseline = -1, EMPTY
            pending = self.deltas(timeline, base_step, step)

        board = baseline
        for board in replay(pending, baseline):
            pass
        logger.debug(
            "Rebuilt %s@%d from step %d (%d commits replayed)",
            timeline, step, base_step, len(pending),
        )
        return board

    def replay_range(self, timeline: str, after: int, upto: int) -> Iterator[Board]:
        """
        Boards for steps after+1 .. upto, in order.

        after = -1 starts from the empty board, so the first board
        yielded is step 0. The log is read eagerly inside one snapshot;
        the boards themselves are built lazily.
        """
        with self.store.read_snapshot():
            baseline = EMPTY if after < 0 else self.board_at(timeline, after)
            pending = self.deltas(timeline, after, upto)
        return replay(pending, baseline)
