"""
Plugin Discovery

Discovers and loads plugins via Python entry points (importlib.metadata).
One plugin group is supported:

- ``multiverse.oracles``  — board-evolution oracle factories
"""

import logging
from importlib.metadata import entry_points

logger = logging.getLogger(__name__)

# Entry point group names
ORACLE_GROUP = "multiverse.oracles"


def discover(group: str) -> dict:
    """Discover all entry points for a given group.

    Returns a dict mapping entry point names to loaded objects.
    Invalid entry points are logged and skipped.
    """
    plugins = {}
    eps = entry_points()

    # Python 3.12+ returns EntryPoints with select(), 3.10-3.11 may return a dict
    if hasattr(eps, "select"):
        selected = eps.select(group=group)
    elif isinstance(eps, dict):
        selected = eps.get(group, ())  # type: ignore[arg-type]
    else:
        selected = ()

    for ep in selected:
        try:
            obj = ep.load()
        except Exception as e:
            logger.warning("Failed to load plugin %s:%s: %s", group, ep.name, e)
            continue
        if not callable(obj):
            logger.warning("Plugin %s:%s is not callable; skipping", group, ep.name)
            continue
        plugins[ep.name] = obj
        logger.debug("Loaded plugin %s:%s", group, ep.name)

    return plugins


def discover_oracles() -> dict:
    """Discover oracle plugins.

    Each entry point should resolve to a factory with signature:
        (seed: int | None = None) -> Callable[[Board], Iterable[Cell]]
    """
    return discover(ORACLE_GROUP)
