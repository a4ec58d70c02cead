"""
Multiverse — Branchable Timelines for Cellular Automata

Commits successive board states into named, append-only timelines,
rebuilds any historical board by replaying minimal deltas, stores
each distinct cell exactly once, and forks fully independent
timelines from any point in history.
"""

__version__ = "0.1.0"

__all__ = [
    # Core
    "Multiverse",
    "NotARepository",
    # Cell set algebra
    "Board",
    "BoardDiff",
    "diff",
    "modify",
    "normalize",
    "equal",
    "merge_boards",
    # Storage
    "CellStore",
    "CellRecord",
    "TimelineStore",
    "BoardHistory",
    "BranchManager",
    "LATEST",
    # Oracles
    "life",
    "SeededMutation",
    "starting_board",
    "get_oracle",
    # Errors
    "MultiverseError",
    "NameCollision",
    "NotFound",
    "IntegrityViolation",
    "InvalidStep",
]


# Lazy imports: only resolve when accessed
def __getattr__(name):
    if name in ("Multiverse", "NotARepository"):
        from .repo import Multiverse, NotARepository

        return Multiverse if name == "Multiverse" else NotARepository
    if name in ("Board", "BoardDiff", "diff", "modify", "normalize", "equal", "merge_boards"):
        from . import cells

        return getattr(cells, name)
    if name in ("CellStore", "CellRecord"):
        from .cas import CellRecord, CellStore

        return CellStore if name == "CellStore" else CellRecord
    if name in ("TimelineStore", "BoardHistory"):
        from .timeline import BoardHistory, TimelineStore

        return TimelineStore if name == "TimelineStore" else BoardHistory
    if name in ("BranchManager", "LATEST"):
        from . import branch

        return getattr(branch, name)
    if name in ("life", "SeededMutation", "starting_board", "get_oracle"):
        from . import oracles

        return getattr(oracles, name)
    if name in ("MultiverseError", "NameCollision", "NotFound", "IntegrityViolation", "InvalidStep"):
        from . import errors

        return getattr(errors, name)
    raise AttributeError(f"module 'multiverse' has no attribute {name!r}")
