"""
Multiverse CLI

Every command outputs structured JSON when --json is passed, making
it trivial for scripts to parse. Human-readable output is the default.

Boards are given either as repeated --cell X,Y options, as a JSON
file of [x, y] pairs (--file, '-' for stdin), or as a seeded random
starting board (--random N --seed S).

Timeline references in diff/merge take the form NAME or NAME@STEP;
without @STEP the latest board is used.

Usage:
    multiverse init [--checkpoint-interval N] [--timeline NAME]
    multiverse status
    multiverse timelines
    multiverse create NAME
    multiverse commit [TIMELINE] (--cell X,Y ... | --file PATH | --random N [--seed S] | --empty)
    multiverse show [TIMELINE] [--step N] [--normalize]
    multiverse history [TIMELINE] [--from-step N]
    multiverse log [TIMELINE] [--limit N]
    multiverse diff REF_A REF_B
    multiverse branch SOURCE NEW [--step N] [--add X,Y ...] [--remove X,Y ...]
    multiverse merge REF_A REF_B NEW
    multiverse evolve [TIMELINE] [--oracle NAME] [--steps N] [--seed S]
    multiverse as-of TIMELINE TX
    multiverse oracles
    multiverse doctor
"""

import argparse
import difflib
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import multiverse as _mv_pkg

from .cells import as_board, normalize, sorted_cells
from .errors import MultiverseError
from .oracles import available_oracles, get_oracle, starting_board
from .repo import DEFAULT_CHECKPOINT_INTERVAL, Multiverse, NotARepository


@contextmanager
def open_repo(args):
    """Open a Multiverse with guaranteed cleanup on any exit path."""
    mv = Multiverse.find(Path(args.path or "."))
    try:
        yield mv
    finally:
        mv.close()


def format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def print_json(data):
    print(json.dumps(data, indent=2, default=str))


def get_verbosity(args) -> int:
    """Return verbosity level: 0=quiet, 1=normal, 2=verbose."""
    if getattr(args, "json", False):
        return 1
    if getattr(args, "verbose", False):
        return 2
    if getattr(args, "quiet", False):
        return 0
    return 1


def parse_cell(text: str) -> tuple[int, int]:
    """Parse 'X,Y' into a cell."""
    try:
        x, y = text.split(",")
        return int(x), int(y)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected a cell as X,Y, got {text!r}") from None


def parse_ref(text: str) -> tuple[str, int | None]:
    """Parse 'NAME' or 'NAME@STEP' into (name, step)."""
    name, sep, step = text.rpartition("@")
    if not sep:
        return text, None
    try:
        return name, int(step)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected NAME@STEP, got {text!r}") from None


def _format_ref(name: str, step: int | None) -> str:
    return f"{name}@{step}" if step is not None else f"{name}@latest"


def _read_board(args):
    """Collect the board a command was given, or None if it was given none."""
    if args.file:
        text = sys.stdin.read() if args.file == "-" else Path(args.file).read_text()
        return as_board(tuple(c) for c in json.loads(text))
    if args.random is not None:
        return starting_board(args.random, seed=args.seed)
    if args.cell:
        return as_board(args.cell)
    if args.empty:
        return as_board(())
    return None


def _print_board(board, v: int):
    print(f"  {len(board)} cells")
    if v >= 1:
        cells = " ".join(f"({x},{y})" for x, y in sorted(board))
        if cells:
            print(f"  {cells}")


# ── Commands ──────────────────────────────────────────────────


def cmd_init(args):
    v = get_verbosity(args)
    path = Path(args.path or ".").resolve()
    with Multiverse.init(
        path,
        default_timeline=args.timeline,
        checkpoint_interval=args.checkpoint_interval,
    ) as mv:
        if args.json:
            print_json({
                "root": str(path),
                "timeline": mv.default_timeline(),
                "checkpoint_interval": mv.timelines.checkpoint_interval,
            })
        elif v > 0:
            print(f"✓ Initialized multiverse repository at {path}")
            print(f"  Timeline: {mv.default_timeline()}")
            print(f"  Checkpoint interval: {mv.timelines.checkpoint_interval}")


def cmd_status(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        status = mv.status()

        if args.json:
            print_json(status)
        elif v == 0:
            print(status["current_tx"])
        else:
            storage = status["storage"]
            print(f"Repository: {status['root']}")
            print(f"Default:    {status['default_timeline']}")
            print(f"Tx:         {status['current_tx']}")
            print(
                f"Storage:    {storage['cell_records']} cell records, "
                f"{storage['commits']} commits, {storage['deltas']} delta rows, "
                f"{storage['checkpoints']} checkpoints"
            )
            print("\nTimelines:")
            for t in status["timelines"]:
                marker = "→" if t["name"] == status["default_timeline"] else " "
                latest = t["latest_step"] if t["latest_step"] is not None else "-"
                print(f"  {marker} {t['name']}: step {latest}")


def cmd_timelines(args):
    with open_repo(args) as mv:
        infos = mv.list_timelines()

        if args.json:
            print_json([t.to_dict() for t in infos])
        else:
            default = mv.default_timeline()
            for t in infos:
                marker = "→" if t.name == default else " "
                latest = t.latest_step if t.latest_step is not None else "-"
                fork = ""
                if t.fork_source is not None:
                    fork = f"  fork:{_format_ref(t.fork_source, t.fork_step)}"
                ts = format_time(t.created_at)
                print(f"  {marker} {t.name}: step {latest}{fork}  (created {ts})")


def cmd_create(args):
    with open_repo(args) as mv:
        mv.create(args.name)
        if args.json:
            print_json({"name": args.name})
        else:
            print(f"✓ Created timeline: {args.name}")


def cmd_commit(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        name = args.timeline or mv.default_timeline()
        board = _read_board(args)
        if board is None:
            raise ValueError("No board given (use --cell, --file, --random or --empty)")
        step = mv.commit(name, board)

        if args.json:
            print_json({"timeline": name, "step": step, "cells": len(board)})
        elif v == 0:
            print(step)
        else:
            print(f"✓ Committed {name}@{step}")
            print(f"  {len(board)} cells")


def cmd_show(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        name = args.timeline or mv.default_timeline()
        if args.step is None:
            board = mv.latest_board(name)
        else:
            board = mv.board_at(name, args.step)
            if board is None:
                raise MultiverseError(
                    f"Step {args.step} not found in timeline '{name}'"
                )
        if args.normalize:
            board = normalize(board)

        if args.json:
            print_json({"timeline": name, "step": args.step, "cells": sorted_cells(board)})
        else:
            print(f"{_format_ref(name, args.step)}:")
            _print_board(board, v)


def cmd_history(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        name = args.timeline or mv.default_timeline()
        history = mv.full_history(name, args.from_step)
        steps = history.steps()

        if args.json:
            print_json([
                {"step": step, "cells": sorted_cells(board)}
                for step, board in zip(steps, history)
            ])
        elif not len(history):
            print("No boards to show.")
        else:
            for step, board in zip(steps, history):
                print(f"{name}@{step}:")
                _print_board(board, v)


def cmd_log(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        name = args.timeline or mv.default_timeline()
        entries = mv.log(name, limit=args.limit)

        if args.json:
            print_json([e.to_dict() for e in entries])
        elif v == 0:
            for e in entries:
                print(e.step)
        elif not entries:
            print("No commits found.")
        else:
            for e in entries:
                ts = format_time(e.created_at)
                print(f"◉ {name}@{e.step}  tx {e.tx}  {ts}  +{e.added} -{e.removed}")


def cmd_diff(args):
    with open_repo(args) as mv:
        name_a, step_a = args.ref_a
        name_b, step_b = args.ref_b
        result = mv.diff(name_a, step_a, name_b, step_b)

        if args.json:
            print_json(result.to_dict())
        else:
            print(f"Diff: {_format_ref(name_a, step_a)} → {_format_ref(name_b, step_b)}\n")
            for x, y in sorted(result.added):
                print(f"  + ({x},{y})")
            for x, y in sorted(result.removed):
                print(f"  - ({x},{y})")
            if result.is_empty:
                print("  No differences.")
            else:
                print(
                    f"\n  {len(result.added)} added, {len(result.removed)} removed, "
                    f"{len(result.unchanged)} unchanged"
                )


def cmd_branch(args):
    with open_repo(args) as mv:
        add = args.add or []
        remove = args.remove or []
        if add or remove:
            mv.branch_modified(args.source, args.step, add, remove, args.new_name)
        else:
            mv.branch(args.source, args.step, args.new_name)
        info = mv.info(args.new_name)

        if args.json:
            print_json(info.to_dict())
        else:
            print(f"✓ Branched {args.new_name} from {_format_ref(args.source, info.fork_step)}")
            if add or remove:
                print(f"  Modified: +{len(add)} -{len(remove)}")


def cmd_merge(args):
    with open_repo(args) as mv:
        name_a, step_a = args.ref_a
        name_b, step_b = args.ref_b
        mv.merge(name_a, name_b, args.new_name, step_a, step_b)
        board = mv.latest_board(args.new_name)

        if args.json:
            print_json({**mv.info(args.new_name).to_dict(), "cells": len(board)})
        else:
            print(f"✓ Merged {_format_ref(name_a, step_a)} + {_format_ref(name_b, step_b)}"
                  f" into {args.new_name}")
            print(f"  {len(board)} cells")


def cmd_evolve(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        name = args.timeline or mv.default_timeline()
        oracle = get_oracle(args.oracle, seed=args.seed)
        steps = mv.evolve(name, oracle, args.steps)

        if args.json:
            print_json({"timeline": name, "oracle": args.oracle, "steps": steps})
        elif v == 0:
            for s in steps:
                print(s)
        elif not steps:
            print("Nothing to do.")
        else:
            print(f"✓ Evolved {name} with '{args.oracle}': steps {steps[0]}..{steps[-1]}")
            _print_board(mv.latest_board(name), v)


def cmd_as_of(args):
    v = get_verbosity(args)
    with open_repo(args) as mv:
        board = mv.board_as_of(args.timeline, args.tx)
        if board is None:
            raise MultiverseError(
                f"Timeline '{args.timeline}' had no commits as of tx {args.tx}"
            )

        if args.json:
            print_json({"timeline": args.timeline, "tx": args.tx, "cells": sorted_cells(board)})
        else:
            print(f"{args.timeline} as of tx {args.tx}:")
            _print_board(board, v)


def cmd_oracles(args):
    names = sorted(available_oracles())
    if args.json:
        print_json(names)
    else:
        for name in names:
            print(f"  {name}")


def cmd_doctor(args):
    """Check repository integrity."""
    with open_repo(args) as mv:
        findings = mv.verify()

        if args.json:
            print_json({"healthy": not findings, "findings": findings})
        elif not findings:
            print("✓ Repository is healthy.")
        else:
            for f in findings:
                print(f"  ✗ [{f['check']}] {f['detail']}")
            print(f"\n  {len(findings)} problem(s) found.")

        if findings:
            sys.exit(1)


# ── Parser ────────────────────────────────────────────────────


COMMAND_ALIASES = {
    "st": "status",
    "ls": "timelines",
    "ci": "commit",
    "hist": "history",
}

GROUPED_HELP = """\
commands:
  Core:
    init              Initialize a new repository
    status (st)       Show repository status
    timelines (ls)    List timelines
    create            Create an empty timeline
    commit (ci)       Commit a board to a timeline

  History:
    show              Show a board (latest or at a step)
    history (hist)    Replay every board of a timeline
    log               Show the commit log of a timeline
    diff              Diff two boards (NAME or NAME@STEP)
    as-of             Show a board as of a transaction marker

  Branching:
    branch            Fork a timeline from any step
    merge             Start a timeline from the union of two boards

  Evolution:
    evolve            Drive a timeline forward with an oracle
    oracles           List available oracles

  Admin:
    doctor            Check repository integrity
"""


def _add_board_args(p):
    p.add_argument("--cell", "-c", action="append", type=parse_cell, help="Live cell X,Y")
    p.add_argument("--file", "-f", default=None, help="JSON file of [x, y] pairs ('-' for stdin)")
    p.add_argument("--random", type=int, default=None, help="Random starting board of N cells")
    p.add_argument("--seed", type=int, default=None, help="Seed for --random")
    p.add_argument("--empty", action="store_true", help="Commit the empty board")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multiverse",
        description="Multiverse — branchable timelines for cellular automata",
        epilog=GROUPED_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ver = _mv_pkg.__version__
    parser.add_argument("--version", "-V", action="version", version=f"multiverse {ver}")
    parser.add_argument("--path", "-C", default=".", help="Repository path")
    parser.add_argument("--json", "-j", action="store_true", help="JSON output")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Quiet output")

    sub = parser.add_subparsers(dest="command")

    # init
    p = sub.add_parser("init", help="Initialize a new repository")
    p.add_argument(
        "--checkpoint-interval", type=int, default=DEFAULT_CHECKPOINT_INTERVAL,
        help="Store a full board every N steps (0 disables)",
    )
    p.add_argument("--timeline", default="main", help="Name of the default timeline")
    p.set_defaults(func=cmd_init)

    # status
    p = sub.add_parser("status", help="Show repository status")
    p.set_defaults(func=cmd_status)

    # timelines
    p = sub.add_parser("timelines", help="List timelines")
    p.set_defaults(func=cmd_timelines)

    # create
    p = sub.add_parser("create", help="Create an empty timeline")
    p.add_argument("name")
    p.set_defaults(func=cmd_create)

    # commit
    p = sub.add_parser("commit", help="Commit a board to a timeline")
    p.add_argument("timeline", nargs="?", default=None)
    _add_board_args(p)
    p.set_defaults(func=cmd_commit)

    # show
    p = sub.add_parser("show", help="Show a board")
    p.add_argument("timeline", nargs="?", default=None)
    p.add_argument("--step", "-s", type=int, default=None)
    p.add_argument("--normalize", action="store_true", help="Translate to the origin")
    p.set_defaults(func=cmd_show)

    # history
    p = sub.add_parser("history", help="Replay every board of a timeline")
    p.add_argument("timeline", nargs="?", default=None)
    p.add_argument("--from-step", type=int, default=None,
                   help="Use this step as the baseline and show only later boards")
    p.set_defaults(func=cmd_history)

    # log
    p = sub.add_parser("log", help="Show the commit log")
    p.add_argument("timeline", nargs="?", default=None)
    p.add_argument("--limit", "-n", type=int, default=None)
    p.set_defaults(func=cmd_log)

    # diff
    p = sub.add_parser("diff", help="Diff two boards")
    p.add_argument("ref_a", type=parse_ref, help="NAME or NAME@STEP")
    p.add_argument("ref_b", type=parse_ref, help="NAME or NAME@STEP")
    p.set_defaults(func=cmd_diff)

    # branch
    p = sub.add_parser("branch", help="Fork a timeline")
    p.add_argument("source")
    p.add_argument("new_name")
    p.add_argument("--step", "-s", type=int, default=None, help="Step to fork from (default: latest)")
    p.add_argument("--add", action="append", type=parse_cell, help="Cell X,Y to add")
    p.add_argument("--remove", action="append", type=parse_cell, help="Cell X,Y to remove")
    p.set_defaults(func=cmd_branch)

    # merge
    p = sub.add_parser("merge", help="Start a timeline from the union of two boards")
    p.add_argument("ref_a", type=parse_ref, help="NAME or NAME@STEP")
    p.add_argument("ref_b", type=parse_ref, help="NAME or NAME@STEP")
    p.add_argument("new_name")
    p.set_defaults(func=cmd_merge)

    # evolve
    p = sub.add_parser("evolve", help="Drive a timeline forward with an oracle")
    p.add_argument("timeline", nargs="?", default=None)
    p.add_argument("--oracle", "-o", default="life")
    p.add_argument("--steps", "-n", type=int, default=1)
    p.add_argument("--seed", type=int, default=None)
    p.set_defaults(func=cmd_evolve)

    # as-of
    p = sub.add_parser("as-of", help="Show a board as of a transaction marker")
    p.add_argument("timeline")
    p.add_argument("tx", type=int)
    p.set_defaults(func=cmd_as_of)

    # oracles
    p = sub.add_parser("oracles", help="List available oracles")
    p.set_defaults(func=cmd_oracles)

    # doctor
    p = sub.add_parser("doctor", help="Check repository integrity")
    p.set_defaults(func=cmd_doctor)

    return parser


def _error_hint(msg: str) -> str | None:
    """Return a hint for common error messages, or None."""
    lower = msg.lower()
    if "timeline" in lower and "not found" in lower:
        return "Hint: Use 'multiverse timelines' to see available timelines."
    if "already exists" in lower and "timeline" in lower:
        return "Hint: Timeline names are global; pick a new name."
    if "step" in lower and "not found" in lower or "has no step" in lower:
        return "Hint: Use 'multiverse log TIMELINE' to see committed steps."
    return None


_KNOWN_COMMANDS = [
    "init",
    "status",
    "timelines",
    "create",
    "commit",
    "show",
    "history",
    "log",
    "diff",
    "as-of",
    "branch",
    "merge",
    "evolve",
    "oracles",
    "doctor",
]


def _command_index(argv: list[str]) -> int | None:
    """Position of the subcommand in argv, skipping global options."""
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("-C", "--path"):
            i += 2
            continue
        if not arg.startswith("-"):
            return i
        i += 1
    return None


def main(argv: list[str] | None = None):
    argv = list(sys.argv[1:] if argv is None else argv)
    idx = _command_index(argv)

    # Resolve command aliases before parsing
    if idx is not None and argv[idx] in COMMAND_ALIASES:
        argv[idx] = COMMAND_ALIASES[argv[idx]]

    # Check for "did you mean?" before argparse (which exits with code 2)
    if idx is not None:
        attempted = argv[idx]
        all_names = _KNOWN_COMMANDS + list(COMMAND_ALIASES.keys())
        if attempted not in all_names:
            matches = difflib.get_close_matches(attempted, all_names, n=3, cutoff=0.6)
            if matches:
                print(f"Unknown command: '{attempted}'", file=sys.stderr)
                print(f"  Did you mean: {', '.join(matches)}?", file=sys.stderr)
                sys.exit(1)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if hasattr(args, "func"):
        try:
            args.func(args)
        except NotARepository as e:
            if getattr(args, "json", False):
                print_json({"error": str(e)})
            else:
                print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        except Exception as e:
            msg = str(e)
            if getattr(args, "json", False):
                print_json({"error": msg, "type": type(e).__name__})
            else:
                print(f"Error: {msg}", file=sys.stderr)
                hint = _error_hint(msg)
                if hint:
                    print(f"  {hint}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
