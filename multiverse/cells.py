"""
Cell Set Algebra

Pure set operations on boards. A board is a frozenset of (x, y)
integer pairs; nothing in here touches storage.

    diff(a, b)               -> BoardDiff(added=b-a, removed=a-b, unchanged=a&b)
    modify(board, add, rm)   -> (board - rm) | add
    normalize(board)         -> board translated so min x and min y are 0
    equal(a, b)              -> same shape, ignoring position
"""

from collections.abc import Iterable
from dataclasses import dataclass

from .errors import IntegrityViolation

Cell = tuple[int, int]
Board = frozenset[Cell]

EMPTY: Board = frozenset()

# Coordinates are stored as SQLite INTEGERs
COORD_MIN = -(2**63)
COORD_MAX = 2**63 - 1


def _is_coord(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def as_board(cells: Iterable) -> Board:
    """
    Validate and freeze an iterable of cells into a Board.

    Accepts any iterable of 2-item pairs (tuples, lists). Raises
    IntegrityViolation for a malformed cell, and for a duplicate
    coordinate when the input is an ordered collection: a board is a
    set, so a list that names the same cell twice is corrupt input.
    """
    board = set()
    for cell in cells:
        try:
            x, y = cell
        except (TypeError, ValueError):
            raise IntegrityViolation(f"Malformed cell: {cell!r}") from None
        if not (_is_coord(x) and _is_coord(y)):
            raise IntegrityViolation(f"Cell coordinates must be ints: {cell!r}")
        if not (COORD_MIN <= x <= COORD_MAX and COORD_MIN <= y <= COORD_MAX):
            raise IntegrityViolation(f"Cell coordinates out of 64-bit range: {cell!r}")
        key = (x, y)
        if key in board:
            raise IntegrityViolation(f"Duplicate coordinate in board: {key!r}")
        board.add(key)
    return frozenset(board)


@dataclass(frozen=True)
class BoardDiff:
    """The cells added, removed and kept between two boards."""

    added: Board
    removed: Board
    unchanged: Board

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def to_dict(self) -> dict:
        return {
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "unchanged": sorted(self.unchanged),
        }


def diff(initial: Iterable[Cell], changed: Iterable[Cell]) -> BoardDiff:
    """
    Cells added and removed going from *initial* to *changed*.

    diff(a, a) has nothing added or removed; diff(EMPTY, b) puts all
    of b in added. added and removed are always disjoint.
    """
    a = frozenset(initial)
    b = frozenset(changed)
    return BoardDiff(added=b - a, removed=a - b, unchanged=a & b)


def modify(board: Iterable[Cell], add: Iterable[Cell], remove: Iterable[Cell]) -> Board:
    """
    Remove then add cells. A cell in both *add* and *remove* ends up alive.

    Applying the same modification twice gives the same board, and the
    result only holds cells from *board* or *add*.
    """
    return (frozenset(board) - frozenset(remove)) | frozenset(add)


def merge_boards(board_a: Iterable[Cell], board_b: Iterable[Cell]) -> Board:
    """Union of two boards. Neither input is mutated."""
    return frozenset(board_a) | frozenset(board_b)


def bounds(board: Iterable[Cell]) -> tuple[int, int, int, int] | None:
    """(min_x, min_y, max_x, max_y), or None for an empty board."""
    board = frozenset(board)
    if not board:
        return None
    xs = [x for x, _ in board]
    ys = [y for _, y in board]
    return min(xs), min(ys), max(xs), max(ys)


def translate(board: Iterable[Cell], dx: int, dy: int) -> Board:
    return frozenset((x + dx, y + dy) for x, y in board)


def normalize(board: Iterable[Cell]) -> Board:
    """Translate *board* so its minimum x and minimum y are both 0."""
    box = bounds(board)
    if box is None:
        return EMPTY
    min_x, min_y, _, _ = box
    return translate(board, -min_x, -min_y)


def equal(board_a: Iterable[Cell], board_b: Iterable[Cell]) -> bool:
    """True if the boards hold the same shape, wherever it sits on the grid.

    This is not set equality: {(0, 0)} and {(5, 5)} are equal here.
    """
    return normalize(board_a) == normalize(board_b)


def sorted_cells(board: Iterable[Cell]) -> list[list[int]]:
    """Board as a sorted list of [x, y] lists, for JSON output."""
    return [[x, y] for x, y in sorted(board)]
