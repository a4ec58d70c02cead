"""
CLI tests.

Uses subprocess to invoke the CLI and verify exit codes and output.
"""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest


def run_mv(*args, cwd=None, stdin=None, expect_fail=False):
    """Run a multiverse CLI command and return (returncode, stdout, stderr)."""
    cmd = [sys.executable, "-X", "utf8", "-m", "multiverse.cli"] + list(args)
    result = subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        cwd=cwd,
        input=stdin,
        env={**os.environ, "PYTHONPATH": str(Path(__file__).parent.parent)},
    )
    if not expect_fail:
        if result.returncode != 0:
            print(f"STDOUT: {result.stdout}")
            print(f"STDERR: {result.stderr}")
    return result.returncode, result.stdout, result.stderr


@pytest.fixture
def empty_dir(tmp_path):
    """An empty temporary directory (no repo)."""
    return tmp_path


@pytest.fixture
def repo_dir(tmp_path):
    """A temporary directory with an initialized repository."""
    rc, out, err = run_mv("init", "--checkpoint-interval", "4", cwd=tmp_path)
    assert rc == 0, f"Init failed: {err}"
    return tmp_path


def _cells(out):
    return {tuple(c) for c in json.loads(out)["cells"]}


class TestErrorOutsideRepo:
    def test_status_outside_repo(self, empty_dir):
        rc, out, err = run_mv("status", cwd=empty_dir, expect_fail=True)
        assert rc == 1
        assert "multiverse init" in err

    def test_error_json_mode(self, empty_dir):
        rc, out, err = run_mv("--json", "status", cwd=empty_dir, expect_fail=True)
        assert rc == 1
        assert "error" in json.loads(out)

    def test_path_option(self, repo_dir, empty_dir):
        rc, out, _ = run_mv("-C", str(repo_dir), "--json", "status", cwd=empty_dir.parent)
        assert rc == 0
        assert json.loads(out)["default_timeline"] == "main"


class TestInit:
    def test_init_json(self, empty_dir):
        rc, out, _ = run_mv("--json", "init", "--timeline", "prime", cwd=empty_dir)
        assert rc == 0
        data = json.loads(out)
        assert data["timeline"] == "prime"
        assert data["checkpoint_interval"] == 64

    def test_double_init_fails(self, repo_dir):
        rc, _, err = run_mv("init", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "already exists" in err


class TestCommitAndShow:
    def test_cells_option(self, repo_dir):
        rc, out, _ = run_mv("--json", "commit", "--cell", "1,1", "--cell", "2,2", cwd=repo_dir)
        assert rc == 0
        assert json.loads(out) == {"timeline": "main", "step": 0, "cells": 2}

        rc, out, _ = run_mv("--json", "show", cwd=repo_dir)
        assert rc == 0
        assert _cells(out) == {(1, 1), (2, 2)}

    def test_file_from_stdin(self, repo_dir):
        rc, _, _ = run_mv("commit", "T", "--file", "-", stdin="[[0, 0], [5, -3]]", cwd=repo_dir)
        assert rc == 0
        rc, out, _ = run_mv("--json", "show", "T", "--step", "0", cwd=repo_dir)
        assert _cells(out) == {(0, 0), (5, -3)}

    def test_file_path(self, repo_dir):
        (repo_dir / "board.json").write_text("[[3, 4]]")
        rc, _, _ = run_mv("commit", "--file", "board.json", cwd=repo_dir)
        assert rc == 0
        rc, out, _ = run_mv("--json", "show", cwd=repo_dir)
        assert _cells(out) == {(3, 4)}

    def test_random_board_is_seeded(self, repo_dir):
        run_mv("commit", "A", "--random", "15", "--seed", "3", cwd=repo_dir)
        run_mv("commit", "B", "--random", "15", "--seed", "3", cwd=repo_dir)
        rc, out, _ = run_mv("--json", "diff", "A", "B", cwd=repo_dir)
        assert rc == 0
        data = json.loads(out)
        assert data["added"] == [] and data["removed"] == []

    def test_random_zero_commits_empty_board(self, repo_dir):
        rc, out, _ = run_mv("--json", "commit", "--random", "0", cwd=repo_dir)
        assert rc == 0
        assert json.loads(out) == {"timeline": "main", "step": 0, "cells": 0}

    def test_no_board_given(self, repo_dir):
        rc, _, err = run_mv("commit", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "No board given" in err

    def test_duplicate_cell(self, repo_dir):
        rc, _, err = run_mv("commit", "--cell", "1,1", "--cell", "1,1", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "Duplicate" in err

    def test_bad_cell_syntax(self, repo_dir):
        rc, _, _ = run_mv("commit", "--cell", "1;1", cwd=repo_dir, expect_fail=True)
        assert rc == 2

    def test_show_past_end(self, repo_dir):
        run_mv("commit", "--cell", "1,1", cwd=repo_dir)
        rc, _, err = run_mv("show", "--step", "5", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "not found" in err

    def test_show_normalize(self, repo_dir):
        run_mv("commit", "--cell", "10,10", "--cell", "11,10", cwd=repo_dir)
        rc, out, _ = run_mv("--json", "show", "--normalize", cwd=repo_dir)
        assert _cells(out) == {(0, 0), (1, 0)}

    def test_missing_timeline_hint(self, repo_dir):
        rc, _, err = run_mv("show", "nope", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "multiverse timelines" in err


class TestHistory:
    @pytest.fixture
    def two_steps(self, repo_dir):
        run_mv("commit", "--cell", "1,1", "--cell", "2,2", cwd=repo_dir)
        run_mv("commit", "--cell", "2,2", "--cell", "3,3", cwd=repo_dir)
        return repo_dir

    def test_history(self, two_steps):
        rc, out, _ = run_mv("--json", "history", cwd=two_steps)
        assert rc == 0
        data = json.loads(out)
        assert [d["step"] for d in data] == [0, 1]
        assert data[1]["cells"] == [[2, 2], [3, 3]]

    def test_history_from_step(self, two_steps):
        rc, out, _ = run_mv("--json", "hist", "--from-step", "0", cwd=two_steps)
        assert rc == 0
        assert [d["step"] for d in json.loads(out)] == [1]

    def test_log(self, two_steps):
        rc, out, _ = run_mv("--json", "log", cwd=two_steps)
        assert rc == 0
        data = json.loads(out)
        assert [e["step"] for e in data] == [1, 0]
        assert (data[0]["added"], data[0]["removed"]) == (1, 1)

    def test_diff_steps(self, two_steps):
        rc, out, _ = run_mv("--json", "diff", "main@0", "main@1", cwd=two_steps)
        assert rc == 0
        assert json.loads(out) == {
            "added": [[3, 3]],
            "removed": [[1, 1]],
            "unchanged": [[2, 2]],
        }

    def test_as_of(self, two_steps):
        rc, out, _ = run_mv("--json", "as-of", "main", "1", cwd=two_steps)
        assert rc == 0
        assert _cells(out) == {(1, 1), (2, 2)}


class TestBranching:
    @pytest.fixture
    def seeded(self, repo_dir):
        run_mv("commit", "--cell", "1,1", "--cell", "2,2", cwd=repo_dir)
        return repo_dir

    def test_branch_and_independence(self, seeded):
        rc, out, _ = run_mv("--json", "branch", "main", "alt", "--step", "0", cwd=seeded)
        assert rc == 0
        assert json.loads(out)["fork_source"] == "main"

        run_mv("commit", "--cell", "9,9", cwd=seeded)
        rc, out, _ = run_mv("--json", "show", "alt", cwd=seeded)
        assert _cells(out) == {(1, 1), (2, 2)}

    def test_branch_modified(self, seeded):
        rc, _, _ = run_mv("branch", "main", "alt", "--add", "5,5", "--remove", "1,1", cwd=seeded)
        assert rc == 0
        rc, out, _ = run_mv("--json", "show", "alt", cwd=seeded)
        assert _cells(out) == {(2, 2), (5, 5)}

    def test_branch_collision(self, seeded):
        rc, _, err = run_mv("branch", "main", "main", cwd=seeded, expect_fail=True)
        assert rc == 1
        assert "already exists" in err

    def test_merge(self, seeded):
        run_mv("commit", "other", "--cell", "7,7", cwd=seeded)
        rc, out, _ = run_mv("--json", "merge", "main@0", "other", "both", cwd=seeded)
        assert rc == 0
        assert json.loads(out)["cells"] == 3

    def test_timelines(self, seeded):
        run_mv("branch", "main", "alt", cwd=seeded)
        rc, out, _ = run_mv("--json", "ls", cwd=seeded)
        assert rc == 0
        assert [t["name"] for t in json.loads(out)] == ["main", "alt"]


class TestEvolveAndDoctor:
    def test_evolve_life(self, repo_dir):
        run_mv("commit", "--cell", "0,1", "--cell", "1,1", "--cell", "2,1", cwd=repo_dir)
        rc, out, _ = run_mv("--json", "evolve", "--steps", "3", cwd=repo_dir)
        assert rc == 0
        assert json.loads(out)["steps"] == [1, 2, 3]
        rc, out, _ = run_mv("--json", "show", cwd=repo_dir)
        assert _cells(out) == {(1, 0), (1, 1), (1, 2)}

    def test_unknown_oracle(self, repo_dir):
        rc, _, err = run_mv("evolve", "--oracle", "nope", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "Unknown oracle" in err

    def test_oracles(self, repo_dir):
        rc, out, _ = run_mv("--json", "oracles", cwd=repo_dir)
        assert rc == 0
        assert {"life", "mutate"} <= set(json.loads(out))

    def test_doctor_healthy(self, repo_dir):
        run_mv("commit", "--random", "20", "--seed", "1", cwd=repo_dir)
        run_mv("evolve", "--oracle", "mutate", "--seed", "1", "--steps", "9", cwd=repo_dir)
        rc, out, _ = run_mv("--json", "doctor", cwd=repo_dir)
        assert rc == 0
        assert json.loads(out) == {"healthy": True, "findings": []}


class TestMisc:
    def test_did_you_mean(self, repo_dir):
        rc, _, err = run_mv("comit", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "Did you mean" in err
        assert "commit" in err

    def test_version(self, empty_dir):
        rc, out, _ = run_mv("--version", cwd=empty_dir)
        assert rc == 0
        assert "multiverse" in out

    def test_status_alias(self, repo_dir):
        rc1, out1, _ = run_mv("status", cwd=repo_dir)
        rc2, out2, _ = run_mv("st", cwd=repo_dir)
        assert rc1 == rc2 == 0
        assert out1 == out2

    def test_alias_after_global_options(self, repo_dir):
        run_mv("commit", "--cell", "1,1", cwd=repo_dir)
        rc, out, _ = run_mv("-C", str(repo_dir), "--json", "hist", cwd=repo_dir.parent)
        assert rc == 0
        assert [d["step"] for d in json.loads(out)] == [0]

        rc, out, _ = run_mv("--path", str(repo_dir), "ls", cwd=repo_dir.parent)
        assert rc == 0
        assert "main" in out

    def test_did_you_mean_after_global_options(self, repo_dir):
        rc, _, err = run_mv("--json", "-C", str(repo_dir), "comit", cwd=repo_dir, expect_fail=True)
        assert rc == 1
        assert "Did you mean" in err
