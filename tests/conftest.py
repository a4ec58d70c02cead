"""Shared pytest fixtures."""

import pytest

from multiverse.cas import CellStore
from multiverse.repo import Multiverse
from multiverse.timeline import TimelineStore


@pytest.fixture
def store(tmp_path):
    s = CellStore(tmp_path / "store.db")
    yield s
    s.close()


@pytest.fixture
def timelines(store):
    """A TimelineStore without checkpoints: every read replays from step 0."""
    return TimelineStore(store)


@pytest.fixture
def mv(tmp_path):
    """An initialized repository with a small checkpoint interval."""
    repo = Multiverse.init(tmp_path, checkpoint_interval=4)
    yield repo
    repo.close()
