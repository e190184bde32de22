# tests/consensus/test_checkpoint_store.py
import json

import pytest

from dss_core.consensus.checkpoint import CheckpointStore
from dss_core.consensus.consensus_errors import CheckpointError
from dss_core.core.datatypes import CheckpointState


def test_missing_file_starts_at_zero(tmp_path):
    store = CheckpointStore(tmp_path / "block_number.json")
    assert store.load().block_number == 0


def test_save_then_load(tmp_path):
    path = tmp_path / "block_number.json"
    store = CheckpointStore(path)
    store.save(CheckpointState(block_number=16))

    assert json.loads(path.read_text()) == {"block_number": 16}
    assert store.load().block_number == 16
    # No temp files left behind
    assert [p.name for p in tmp_path.iterdir()] == ["block_number.json"]


def test_save_creates_parent_directory(tmp_path):
    store = CheckpointStore(tmp_path / "state" / "block_number.json")
    store.save(CheckpointState(block_number=3))
    assert store.load().block_number == 3


@pytest.mark.parametrize(
    "content",
    ["not json", "{}", '{"block_number": "12"}', '{"block_number": -1}', "[1, 2]"],
)
def test_unreadable_checkpoint_raises(tmp_path, content):
    path = tmp_path / "block_number.json"
    path.write_text(content)
    with pytest.raises(CheckpointError):
        CheckpointStore(path).load()
