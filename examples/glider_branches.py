#!/usr/bin/env python3
"""
Multiverse Branching Example

Demonstrates a full workflow using the Python API:
  1. Initialize a repository and commit a glider
  2. Evolve it with Conway's Life
  3. Branch from an earlier step, nudge a cell, evolve the branch
  4. Compare the timelines and replay their histories

Usage:
    python examples/glider_branches.py          # Run with temp directory (cleaned up)
    python examples/glider_branches.py --keep    # Keep repo for inspection
"""

import argparse
import shutil
import sys
import tempfile
from pathlib import Path

# Ensure the multiverse package is importable when running from the repo root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from multiverse.cells import equal
from multiverse.oracles import get_oracle
from multiverse.repo import Multiverse

GLIDER = {(1, 0), (2, 1), (0, 2), (1, 2), (2, 2)}


def step(n: int, msg: str):
    print(f"\n{'='*60}")
    print(f"  Step {n}: {msg}")
    print(f"{'='*60}\n")


def run_demo(repo_path: Path):
    life = get_oracle("life")

    # ── Step 1: Initialize ──────────────────────────────────────
    step(1, "Initialize a repository and commit a glider")

    with Multiverse.init(repo_path, checkpoint_interval=8) as mv:
        mv.commit("main", GLIDER)
        print(f"  Repository initialized at: {repo_path}")
        print(f"  main@0: {sorted(mv.latest_board('main'))}")

        # ── Step 2: Evolve ──────────────────────────────────────
        step(2, "Evolve main for 12 generations")

        steps = mv.evolve("main", life, 12)
        print(f"  Committed steps {steps[0]}..{steps[-1]}")
        print(f"  Same shape as step 0: {equal(mv.board_at('main', 0), mv.latest_board('main'))}")

        # ── Step 3: Branch ──────────────────────────────────────
        step(3, "Branch from main@4 with one extra cell")

        mv.branch_modified("main", 4, add={(0, 0)}, remove=(), new_name="perturbed")
        mv.evolve("perturbed", life, 8)
        info = mv.info("perturbed")
        print(f"  perturbed forked from {info.fork_source}@{info.fork_step}")
        print(f"  perturbed has {info.commit_count} commits")

        # ── Step 4: Compare ─────────────────────────────────────
        step(4, "Compare the timelines")

        d = mv.diff("main", None, "perturbed", None)
        print(f"  main → perturbed: +{len(d.added)} -{len(d.removed)} ={len(d.unchanged)}")
        for name in ("main", "perturbed"):
            sizes = [len(board) for board in mv.full_history(name)]
            print(f"  {name:10s} population: {sizes}")

        problems = mv.verify()
        print(f"\n  Integrity check: {'ok' if not problems else problems}")


def main():
    parser = argparse.ArgumentParser(description="Multiverse branching demo")
    parser.add_argument("--keep", action="store_true", help="Keep the repository after the demo")
    args = parser.parse_args()

    tmpdir = Path(tempfile.mkdtemp(prefix="multiverse_demo_"))
    try:
        run_demo(tmpdir)
    finally:
        if args.keep:
            print(f"\nRepository kept at: {tmpdir}")
        else:
            shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
