"""
Errors

Every failure a multiverse operation can report. All of them are
ValueError subclasses so callers that only care about "bad input"
can catch one thing.
"""


class MultiverseError(ValueError):
    """Base class for multiverse errors."""


class NameCollision(MultiverseError):
    """Raised when creating or branching into a timeline name that already exists."""

    def __init__(self, name: str):
        super().__init__(f"Timeline already exists: {name!r}")
        self.name = name


class NotFound(MultiverseError):
    """Raised for a nonexistent timeline, or a step past the available history."""


class IntegrityViolation(MultiverseError):
    """Raised on a cell hash collision or a malformed board.

    A commit that raises this leaves the store exactly as it was.
    """


class InvalidStep(MultiverseError):
    """Raised when a step index is negative or not an integer."""

    def __init__(self, step):
        super().__init__(f"Invalid step index: {step!r} (must be a non-negative int)")
        self.step = step


def check_step(step) -> int:
    """Return *step* if it is a usable step index, else raise InvalidStep."""
    # bool is an int subclass; True is not a step
    if isinstance(step, bool) or not isinstance(step, int) or step < 0:
        raise InvalidStep(step)
    return step
