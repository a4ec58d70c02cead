"""
Board Oracles

An oracle is any callable old_board -> new raw board. The multiverse
never decides how a board evolves; it only commits what an oracle
returns. Oracles here are deterministic so that reconstruction and
branching are reproducible:

- life            Conway's Game of Life (B3/S23) on an unbounded grid
- SeededMutation  removes a few cells and scatters a few new ones,
                  driven by a seeded RNG

Third-party oracles are found through the ``multiverse.oracles``
entry point group (see plugins.py).
"""

import logging
import random
from collections import Counter
from collections.abc import Callable, Iterable

from .cells import Board, Cell, as_board
from .plugins import discover_oracles

logger = logging.getLogger(__name__)

Oracle = Callable[[Board], Iterable[Cell]]

NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


def life(board: Board) -> Board:
    """One generation of Conway's Game of Life."""
    counts = Counter(
        (x + dx, y + dy) for x, y in board for dx, dy in NEIGHBOURS
    )
    return frozenset(
        cell for cell, n in counts.items()
        if n == 3 or (n == 2 and cell in board)
    )


def _random_cell(rng: random.Random, size: int) -> Cell:
    return (rng.randrange(size), rng.randrange(size))


def starting_board(cell_num: int = 20, seed: int | None = None, size: int = 10) -> Board:
    """
    A board of up to *cell_num* random cells in a size x size square.

    Duplicates collapse, so the board can hold fewer than cell_num cells.
    """
    rng = random.Random(seed)
    return frozenset(_random_cell(rng, size) for _ in range(cell_num))


class SeededMutation:
    """
    Removes the first *remove* cells (in sorted order) and adds *add*
    random cells within a size x size square. Same seed, same sequence.
    """

    def __init__(self, seed: int | None = None, size: int = 10, remove: int = 3, add: int = 5):
        self.rng = random.Random(seed)
        self.size = size
        self.remove = remove
        self.add = add

    def __call__(self, board: Board) -> Board:
        removed = frozenset(sorted(board)[: self.remove])
        added = frozenset(_random_cell(self.rng, self.size) for _ in range(self.add))
        return (frozenset(board) - removed) | added


def _life_factory(seed: int | None = None) -> Oracle:
    return life


def _mutation_factory(seed: int | None = None) -> Oracle:
    return SeededMutation(seed=seed)


BUILTIN_ORACLES: dict[str, Callable[..., Oracle]] = {
    "life": _life_factory,
    "mutate": _mutation_factory,
}


def available_oracles() -> dict[str, Callable[..., Oracle]]:
    """Built-in oracle factories, plus any discovered plugins."""
    factories = dict(BUILTIN_ORACLES)
    for name, factory in discover_oracles().items():
        if name in factories:
            logger.warning("Plugin oracle %r shadows a built-in; ignoring it", name)
            continue
        factories[name] = factory
    return factories


def get_oracle(name: str, seed: int | None = None) -> Oracle:
    """Build the oracle called *name*."""
    factories = available_oracles()
    if name not in factories:
        raise ValueError(
            f"Unknown oracle: {name!r} (available: {', '.join(sorted(factories))})"
        )
    return factories[name](seed=seed)


def evolve(timelines, name: str, oracle: Oracle, steps: int) -> list[int]:
    """
    Feed the latest board of *name* through *oracle* *steps* times,
    committing each output. Returns the new step indices.
    """
    if steps < 0:
        raise ValueError(f"steps must be >= 0, got {steps}")
    board = timelines.latest_board(name)
    committed = []
    for _ in range(steps):
        board = as_board(oracle(board))
        committed.append(timelines.commit(name, board))
    return committed
