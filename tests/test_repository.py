"""Repository unit tests."""

import json
import logging

import pytest

from multiverse.cells import EMPTY
from multiverse.errors import NameCollision, NotFound
from multiverse.oracles import life
from multiverse.repo import (
    CONFIG_VERSION,
    DEFAULT_CHECKPOINT_INTERVAL,
    REPO_DIR_NAME,
    Multiverse,
    NotARepository,
)

GLIDER = frozenset({(1, 0), (2, 1), (0, 2), (1, 2), (2, 2)})


def _write_config(root, **overrides):
    config = {
        "version": CONFIG_VERSION,
        "default_timeline": "main",
        "checkpoint_interval": 8,
    }
    config.update(overrides)
    (root / REPO_DIR_NAME / "config.json").write_text(json.dumps(config))


class TestInit:
    def test_creates_default_timeline(self, tmp_path):
        with Multiverse.init(tmp_path) as mv:
            assert mv.default_timeline() == "main"
            assert mv.info("main").commit_count == 0
            assert mv.timelines.checkpoint_interval == DEFAULT_CHECKPOINT_INTERVAL

    def test_custom_default_timeline(self, tmp_path):
        with Multiverse.init(tmp_path, default_timeline="prime") as mv:
            assert [t.name for t in mv.list_timelines()] == ["prime"]

    def test_config_written(self, tmp_path):
        Multiverse.init(tmp_path, checkpoint_interval=16).close()
        config = json.loads((tmp_path / REPO_DIR_NAME / "config.json").read_text())
        assert config["version"] == CONFIG_VERSION
        assert config["checkpoint_interval"] == 16

    def test_double_init(self, tmp_path):
        Multiverse.init(tmp_path).close()
        with pytest.raises(ValueError, match="already exists"):
            Multiverse.init(tmp_path)

    def test_open_non_repository(self, tmp_path):
        with pytest.raises(ValueError, match="Not a multiverse repository"):
            Multiverse(tmp_path)


class TestFind:
    def test_walks_up(self, tmp_path):
        Multiverse.init(tmp_path).close()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        with Multiverse.find(nested) as mv:
            assert mv.root == tmp_path.resolve()

    def test_not_a_repository(self, tmp_path):
        with pytest.raises(NotARepository, match="multiverse init"):
            Multiverse.find(tmp_path)


class TestConfig:
    def test_negative_checkpoint_interval(self, tmp_path):
        Multiverse.init(tmp_path).close()
        _write_config(tmp_path, checkpoint_interval=-1)
        with pytest.raises(ValueError, match="checkpoint_interval"):
            Multiverse(tmp_path)

    def test_non_int_checkpoint_interval(self, tmp_path):
        Multiverse.init(tmp_path).close()
        _write_config(tmp_path, checkpoint_interval="8")
        with pytest.raises(ValueError, match="checkpoint_interval"):
            Multiverse(tmp_path)

    def test_newer_version_refused(self, tmp_path):
        Multiverse.init(tmp_path).close()
        _write_config(tmp_path, version="99.0.0")
        with pytest.raises(ValueError, match="newer"):
            Multiverse(tmp_path)

    def test_unknown_keys_warned(self, tmp_path, caplog):
        Multiverse.init(tmp_path).close()
        _write_config(tmp_path, colour="blue")
        with caplog.at_level(logging.WARNING, logger="multiverse.repo"):
            Multiverse(tmp_path).close()
        assert "colour" in caplog.text

    def test_interval_from_config(self, tmp_path):
        Multiverse.init(tmp_path).close()
        _write_config(tmp_path, checkpoint_interval=8)
        with Multiverse(tmp_path) as mv:
            assert mv.timelines.checkpoint_interval == 8


class TestFacade:
    def test_scenario(self, mv):
        assert mv.commit("T", {(1, 1), (2, 2)}) == 0
        assert mv.commit("T", {(2, 2), (3, 3)}) == 1
        mv.branch("T", 0, "T2")
        assert mv.commit("T", {(9, 9)}) == 2
        assert mv.board_at("T2", 0) == {(1, 1), (2, 2)}
        assert mv.latest_board("T") == {(9, 9)}
        assert mv.board_at("T", 5) is None
        with pytest.raises(NameCollision):
            mv.create("T")

    def test_diff_across_timelines(self, mv):
        mv.commit("main", {(1, 1), (2, 2)})
        mv.branch_modified("main", None, {(3, 3)}, {(1, 1)}, "alt")
        d = mv.diff("main", None, "alt", None)
        assert d.added == {(3, 3)}
        assert d.removed == {(1, 1)}
        assert d.unchanged == {(2, 2)}

    def test_diff_missing_step(self, mv):
        mv.commit("main", {(1, 1)})
        with pytest.raises(NotFound):
            mv.diff("main", 0, "main", 3)

    def test_merge(self, mv):
        mv.commit("main", {(0, 0)})
        mv.commit("other", {(1, 1)})
        mv.merge("main", "other", "both")
        assert mv.latest_board("both") == {(0, 0), (1, 1)}

    def test_evolve_and_history(self, mv):
        mv.commit("main", GLIDER)
        assert mv.evolve("main", life, 8) == list(range(1, 9))
        history = list(mv.full_history("main"))
        assert len(history) == 9
        assert history[-1] == mv.latest_board("main")
        assert mv.timelines.checkpoint_steps("main") == [4, 8]

    def test_as_of(self, mv):
        mv.commit("main", {(0, 0)})
        marker = mv.current_tx()
        mv.commit("main", EMPTY)
        assert mv.board_as_of("main", marker) == {(0, 0)}
        assert [e.step for e in mv.log("main")] == [1, 0]

    def test_reopen_keeps_history(self, tmp_path):
        with Multiverse.init(tmp_path) as mv:
            mv.commit_many("main", [{(0, 0)}, {(0, 0), (1, 1)}])
        with Multiverse(tmp_path) as mv:
            assert list(mv.full_history("main")) == [{(0, 0)}, {(0, 0), (1, 1)}]

    def test_status(self, mv):
        mv.commit("main", {(0, 0), (1, 1)})
        status = mv.status()
        assert status["default_timeline"] == "main"
        assert status["current_tx"] == 1
        assert status["storage"]["cell_records"] == 2
        assert status["storage"]["commits"] == 1
        assert status["timelines"][0]["name"] == "main"


class TestVerify:
    @pytest.fixture
    def evolved(self, mv):
        mv.commit("main", GLIDER)
        mv.evolve("main", life, 5)
        return mv

    def test_healthy(self, evolved):
        assert evolved.verify() == []

    def test_tampered_checkpoint(self, evolved):
        conn = evolved.store.conn
        conn.execute("UPDATE checkpoints SET cells = '[]' WHERE timeline = 'main' AND step = 4")
        conn.commit()
        findings = evolved.verify()
        assert [f["check"] for f in findings] == ["checkpoint"]
        assert findings[0]["step"] == 4

    def test_tampered_cell_record(self, evolved):
        conn = evolved.store.conn
        conn.execute("UPDATE cell_records SET x = x + 1000 WHERE x = 1 AND y = 0")
        conn.commit()
        assert "cell_hash" in [f["check"] for f in evolved.verify()]

    def test_step_gap(self, evolved):
        conn = evolved.store.conn
        conn.execute("PRAGMA foreign_keys=OFF")
        conn.execute("DELETE FROM commits WHERE timeline = 'main' AND step = 2")
        conn.commit()
        findings = evolved.verify()
        assert [f["check"] for f in findings] == ["step_gap"]
