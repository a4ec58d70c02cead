"""
Branching

A branch is a new timeline whose step 0 is a value copy of another
timeline's board at a chosen step. After creation the two timelines
share nothing mutable: the branch has its own commit and delta rows,
and only the immutable CellRecords are shared. Later commits to the
source can never change what the branch saw.

Resolution of the source board and creation of the branch happen in
one write transaction, so the captured board is exactly the source's
state at call time.
"""

import logging
from collections.abc import Iterable

from .cells import Board, Cell, as_board, merge_boards, modify
from .errors import NameCollision, check_step
from .timeline import TimelineStore

logger = logging.getLogger(__name__)

# Pass as at_step to branch from the source's most recent commit
LATEST = None


class BranchManager:
    """Creates independent timelines seeded from existing ones."""

    def __init__(self, timelines: TimelineStore):
        self.timelines = timelines
        self.store = timelines.store

    def resolve(self, source: str, at_step: int | None = LATEST) -> tuple[int | None, Board]:
        """
        (step, board) of *source* at *at_step*, or at its latest commit.

        Raises NotFound for a missing source or a step past its history.
        The step is None only when branching the latest state of a
        timeline that has no commits (the board is then empty).
        """
        if at_step is LATEST:
            with self.store.read_snapshot():
                step = self.timelines.latest_step(source)
                return step, self.timelines.latest_board(source)
        check_step(at_step)
        return at_step, self.timelines.require_board_at(source, at_step)

    def branch(
        self,
        source: str,
        at_step: int | None,
        new_name: str,
        metadata: dict | None = None,
    ) -> str:
        """Create *new_name* with the board of *source* at *at_step* as step 0."""
        return self.branch_modified(source, at_step, (), (), new_name, metadata=metadata)

    def branch_modified(
        self,
        source: str,
        at_step: int | None,
        add: Iterable[Cell],
        remove: Iterable[Cell],
        new_name: str,
        metadata: dict | None = None,
    ) -> str:
        """
        Like branch(), but step 0 is modify(resolved_board, add, remove).

        A cell in both *add* and *remove* is alive in the branch.
        """
        add = as_board(add)
        remove = as_board(remove)
        with self.store.batch():
            if self.timelines.exists(new_name):
                raise NameCollision(new_name)
            step, board = self.resolve(source, at_step)
            self.timelines.engine.seed(
                new_name,
                modify(board, add, remove),
                fork_source=source,
                fork_step=step,
                metadata=metadata,
            )
        logger.debug(
            "Branched %s from %s@%s (+%d -%d)", new_name, source, step, len(add), len(remove)
        )
        return new_name

    def merge(
        self,
        name_a: str,
        name_b: str,
        new_name: str,
        step_a: int | None = LATEST,
        step_b: int | None = LATEST,
    ) -> str:
        """
        Create *new_name* whose step 0 is the union of two timelines' boards.

        Neither source is touched. The new timeline records *name_a* as
        its fork source; both sources are kept in its metadata.
        """
        with self.store.batch():
            if self.timelines.exists(new_name):
                raise NameCollision(new_name)
            resolved_a, board_a = self.resolve(name_a, step_a)
            resolved_b, board_b = self.resolve(name_b, step_b)
            self.timelines.engine.seed(
                new_name,
                merge_boards(board_a, board_b),
                fork_source=name_a,
                fork_step=resolved_a,
                metadata={
                    "merged_from": [
                        {"timeline": name_a, "step": resolved_a},
                        {"timeline": name_b, "step": resolved_b},
                    ]
                },
            )
        logger.debug(
            "Merged %s@%s and %s@%s into %s",
            name_a, resolved_a, name_b, resolved_b, new_name,
        )
        return new_name
