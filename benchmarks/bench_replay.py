"""
Benchmark: Commit and Replay Performance

Measures:
1. Commit throughput (commits/second) for an evolving Life board
2. board_at latency across history lengths, with and without checkpoints
3. Full-history enumeration time

Usage:
    python -m benchmarks.bench_replay
    python -m benchmarks.bench_replay --steps 200 1000 --interval 64 --samples 50
"""

import argparse
import json
import random
import shutil
import statistics
import sys
import tempfile
import time
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from multiverse.oracles import SeededMutation, starting_board
from multiverse.repo import Multiverse


def percentile(data, p):
    """Calculate percentile of data."""
    if not data:
        return 0
    sorted_data = sorted(data)
    k = (len(sorted_data) - 1) * (p / 100)
    f = int(k)
    c = f + 1 if f + 1 < len(sorted_data) else f
    return sorted_data[f] + (sorted_data[c] - sorted_data[f]) * (k - f)


def build_history(mv: Multiverse, steps: int, seed: int = 0) -> float:
    """Commit *steps* boards to main; return commits/second."""
    oracle = SeededMutation(seed=seed, size=40, remove=10, add=12)
    mv.commit("main", starting_board(200, seed=seed, size=40))
    t0 = time.monotonic()
    mv.evolve("main", oracle, steps - 1)
    elapsed = time.monotonic() - t0
    return (steps - 1) / elapsed if elapsed > 0 else 0


def bench_point_reads(steps: int, interval: int, samples: int):
    tmpdir = Path(tempfile.mkdtemp(prefix="multiverse_bench_"))
    try:
        mv = Multiverse.init(tmpdir, checkpoint_interval=interval)
        throughput = build_history(mv, steps)

        latencies = []
        for _ in range(samples):
            target = random.randrange(steps)
            t0 = time.monotonic()
            mv.board_at("main", target)
            latencies.append((time.monotonic() - t0) * 1000)

        t0 = time.monotonic()
        count = sum(1 for _ in mv.full_history("main"))
        history_ms = (time.monotonic() - t0) * 1000

        storage = mv.status()["storage"]
        mv.close()
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)

    return {
        "steps": steps,
        "checkpoint_interval": interval,
        "commits_per_second": throughput,
        "board_at_p50": percentile(latencies, 50),
        "board_at_p95": percentile(latencies, 95),
        "board_at_mean": statistics.mean(latencies),
        "full_history_ms": history_ms,
        "boards": count,
        "storage": storage,
    }


def main():
    parser = argparse.ArgumentParser(description="Multiverse replay benchmarks")
    parser.add_argument("--steps", type=int, nargs="+", default=[100, 500, 1000],
                        help="History lengths to measure")
    parser.add_argument("--interval", type=int, default=64,
                        help="Checkpoint interval for the checkpointed run")
    parser.add_argument("--samples", type=int, default=20,
                        help="Samples for latency measurements")
    parser.add_argument("--json", action="store_true", help="JSON output")
    args = parser.parse_args()

    results = []
    for steps in args.steps:
        for interval in (0, args.interval):
            r = bench_point_reads(steps, interval, args.samples)
            results.append(r)
            if not args.json:
                print(
                    f"  {steps} steps, interval {interval}: "
                    f"{r['commits_per_second']:.0f} commits/s, "
                    f"board_at p50={r['board_at_p50']:.2f}ms p95={r['board_at_p95']:.2f}ms, "
                    f"full history {r['full_history_ms']:.1f}ms, "
                    f"{r['storage']['cell_records']} cell records"
                )

    if args.json:
        print(json.dumps(results, indent=2))


if __name__ == "__main__":
    main()
