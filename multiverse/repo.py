"""
Multiverse Repository

The high-level handle that the CLI and library users hold. It ties the
cell store, timeline store and branch manager together over one
SQLite database in a .multiverse directory:

    mv = Multiverse.init("/path/to/project")

    mv.commit("main", {(1, 1), (2, 2)})          # step 0
    mv.commit("main", {(2, 2), (3, 3)})          # step 1
    mv.board_at("main", 0)                       # {(1, 1), (2, 2)}

    mv.branch("main", 0, "what-if")              # independent copy of step 0
    mv.evolve("what-if", get_oracle("life"), 10) # drive it forward

There is no global connection: every operation goes through an
explicit Multiverse (one per thread).
"""

import json
import logging
import time
from collections.abc import Iterable
from pathlib import Path

from .branch import LATEST, BranchManager
from .cas import CellStore
from .cells import Board, BoardDiff, Cell, diff
from .oracles import Oracle, evolve
from .timeline import BoardHistory, CommitInfo, TimelineInfo, TimelineStore

logger = logging.getLogger(__name__)

REPO_DIR_NAME = ".multiverse"

# Current config version; bump when the config schema changes
CONFIG_VERSION = "0.1.0"

DEFAULT_CHECKPOINT_INTERVAL = 64

# Known config keys for validation
KNOWN_CONFIG_KEYS = frozenset(
    {
        "version",
        "default_timeline",
        "created_at",
        "checkpoint_interval",
    }
)


class NotARepository(ValueError):
    """Raised when a command is run outside a multiverse repository."""
    def __init__(self, start_path):
        super().__init__(
            f"Not inside a multiverse repository (searched from {start_path})\n"
            f"  Run 'multiverse init' to create one, or use '-C <path>' to specify a directory."
        )


class Multiverse:
    """
    A multiverse repository.

    Stores all data in a .multiverse directory at the repository root.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self.mv_dir = self.root / REPO_DIR_NAME
        self.db_path = self.mv_dir / "store.db"

        if not self.mv_dir.exists():
            raise ValueError(
                f"Not a multiverse repository: {self.root}\n"
                f"Run `multiverse init` to create one."
            )

        config = self._read_config()
        self._validate_config(config)
        checkpoint_interval = config.get("checkpoint_interval", 0)

        # Validate limits - reject negative values
        if not isinstance(checkpoint_interval, int) or checkpoint_interval < 0:
            raise ValueError(
                f"Invalid config: checkpoint_interval must be an int >= 0, "
                f"got {checkpoint_interval!r}\n"
                f"  Use 0 to disable checkpoints (replay always starts at step 0)"
            )

        self.config = config
        self.store = CellStore(self.db_path)
        self.timelines = TimelineStore(self.store, checkpoint_interval=checkpoint_interval)
        self.branches = BranchManager(self.timelines)

    @classmethod
    def init(
        cls,
        path: Path,
        default_timeline: str = "main",
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ) -> "Multiverse":
        """Initialize a new repository. The default timeline is created empty."""
        root = Path(path).resolve()
        mv_dir = root / REPO_DIR_NAME

        if mv_dir.exists():
            raise ValueError(f"Repository already exists at {root}")

        mv_dir.mkdir(parents=True)
        (mv_dir / "config.json").write_text(json.dumps({
            "version": CONFIG_VERSION,
            "default_timeline": default_timeline,
            "created_at": time.time(),
            "checkpoint_interval": checkpoint_interval,
        }, indent=2))

        mv = cls(root)
        mv.timelines.create(default_timeline)
        logger.info("Initialized multiverse repository at %s", root)
        return mv

    # ── Timelines ─────────────────────────────────────────────────

    def create(self, name: str) -> str:
        return self.timelines.create(name)

    def commit(self, name: str, board: Iterable[Cell]) -> int:
        return self.timelines.commit(name, board)

    def commit_many(self, name: str, boards: Iterable[Iterable[Cell]]) -> list[int]:
        return self.timelines.commit_many(name, boards)

    def latest_board(self, name: str) -> Board:
        return self.timelines.latest_board(name)

    def board_at(self, name: str, step: int) -> Board | None:
        return self.timelines.board_at(name, step)

    def full_history(self, name: str, from_step: int | None = None) -> BoardHistory:
        return self.timelines.full_history(name, from_step)

    def board_as_of(self, name: str, tx: int) -> Board | None:
        return self.timelines.board_as_of(name, tx)

    def current_tx(self) -> int:
        return self.timelines.current_tx()

    def list_timelines(self) -> list[TimelineInfo]:
        return self.timelines.list_timelines()

    def info(self, name: str) -> TimelineInfo:
        return self.timelines.info(name)

    def log(self, name: str, limit: int | None = None) -> list[CommitInfo]:
        return self.timelines.log(name, limit)

    # ── Diffing ───────────────────────────────────────────────────

    def diff(
        self,
        name_a: str,
        step_a: int | None,
        name_b: str,
        step_b: int | None,
    ) -> BoardDiff:
        """Diff two timeline states; a None step means the latest board."""
        with self.store.read_snapshot():
            a = self._resolve(name_a, step_a)
            b = self._resolve(name_b, step_b)
        return diff(a, b)

    def _resolve(self, name: str, step: int | None) -> Board:
        if step is None:
            return self.timelines.latest_board(name)
        return self.timelines.require_board_at(name, step)

    # ── Branching ─────────────────────────────────────────────────

    def branch(self, source: str, at_step: int | None, new_name: str) -> str:
        return self.branches.branch(source, at_step, new_name)

    def branch_modified(
        self,
        source: str,
        at_step: int | None,
        add: Iterable[Cell],
        remove: Iterable[Cell],
        new_name: str,
    ) -> str:
        return self.branches.branch_modified(source, at_step, add, remove, new_name)

    def merge(
        self,
        name_a: str,
        name_b: str,
        new_name: str,
        step_a: int | None = LATEST,
        step_b: int | None = LATEST,
    ) -> str:
        return self.branches.merge(name_a, name_b, new_name, step_a, step_b)

    # ── Evolution ─────────────────────────────────────────────────

    def evolve(self, name: str, oracle: Oracle, steps: int) -> list[int]:
        """Drive *name* forward with *oracle*, one commit per generation."""
        return evolve(self.timelines, name, oracle, steps)

    # ── Status & Integrity ────────────────────────────────────────

    def status(self) -> dict:
        return {
            "root": str(self.root),
            "default_timeline": self.default_timeline(),
            "checkpoint_interval": self.timelines.checkpoint_interval,
            "current_tx": self.current_tx(),
            "timelines": [t.to_dict() for t in self.list_timelines()],
            "storage": {**self.store.stats(), **self.timelines.stats()},
        }

    def verify(self) -> list[dict]:
        """
        Check the store for integrity problems. Returns a list of
        findings; an empty list means the repository is healthy.

        - every cell record's hash recomputes from its coordinates
        - every timeline's steps run 0..n with no gaps
        - every checkpoint equals the board replayed from step 0
        """
        findings = []

        for record in self.store.iter_records():
            expected = self.store.hasher(record.x, record.y)
            if expected != record.hash:
                findings.append({
                    "check": "cell_hash",
                    "detail": f"Record {record.hash} for {record.cell} should hash to {expected}",
                })

        for info in self.list_timelines():
            steps = self.timelines.steps(info.name)
            if steps != list(range(len(steps))):
                findings.append({
                    "check": "step_gap",
                    "timeline": info.name,
                    "detail": f"Steps are not contiguous from 0: {steps[:10]}...",
                })
                continue
            for cp in self.timelines.checkpoint_steps(info.name):
                replayed = self.timelines.reconstructor.board_at(
                    info.name, cp, use_checkpoints=False
                )
                stored = self.timelines.reconstructor.board_at(info.name, cp)
                if replayed != stored:
                    findings.append({
                        "check": "checkpoint",
                        "timeline": info.name,
                        "step": cp,
                        "detail": f"Checkpoint at step {cp} disagrees with replayed history",
                    })

        if findings:
            logger.warning("Integrity check found %d problem(s)", len(findings))
        return findings

    # ── Helpers ───────────────────────────────────────────────────

    def _read_config(self) -> dict:
        """Read repository configuration."""
        config_path = self.mv_dir / "config.json"
        if config_path.exists():
            return json.loads(config_path.read_text())
        return {}

    @staticmethod
    def _validate_config(config: dict) -> None:
        """Validate config version and warn on unknown keys."""
        repo_version = config.get("version")
        if repo_version:
            # Refuse to open repos from a future version
            if _version_tuple(repo_version) > _version_tuple(CONFIG_VERSION):
                raise ValueError(
                    f"Repository config version {repo_version} is newer than "
                    f"this version of multiverse ({CONFIG_VERSION}). "
                    f"Please upgrade multiverse to open this repository."
                )

        # Warn on unknown keys (forward compatibility)
        unknown_keys = set(config.keys()) - KNOWN_CONFIG_KEYS
        if unknown_keys:
            logger.warning("Unknown config keys (ignored): %s", ", ".join(sorted(unknown_keys)))

    def default_timeline(self) -> str:
        return self.config.get("default_timeline", "main")

    @classmethod
    def find(cls, start_path: Path | None = None) -> "Multiverse":
        """Find a repository by walking up from the given path."""
        path = (start_path or Path.cwd()).resolve()
        # Check the path itself and then walk up parents
        while True:
            if (path / REPO_DIR_NAME).exists():
                return cls(path)
            parent = path.parent
            if parent == path:
                break
            path = parent
        raise NotARepository(start_path or Path.cwd())

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        self.store.close()


def _version_tuple(version: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in str(version).split("."))
    except ValueError:
        raise ValueError(f"Invalid config version: {version!r}") from None
