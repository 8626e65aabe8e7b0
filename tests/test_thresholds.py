"""
Test Group Threshold Store
"""

import json

import pytest

from trustgate.common.exceptions import StorageError
from trustgate.services.thresholds import ThresholdStore


def test_unknown_group_uses_default(tmp_path):
    store = ThresholdStore(tmp_path / "thresholds.json", default_threshold=60)
    assert store.get("group-1") == 60
    assert store.snapshot() == {}


def test_set_persists_immediately(tmp_path):
    path = tmp_path / "thresholds.json"
    store = ThresholdStore(path, default_threshold=60)
    store.set("group-1", 55)

    assert json.loads(path.read_text()) == {"group-1": 55}
    assert ThresholdStore(path, default_threshold=60).get("group-1") == 55
    assert not path.with_suffix(".tmp").exists()


def test_corrupt_file_falls_back_to_empty_map(tmp_path):
    path = tmp_path / "thresholds.json"
    path.write_text("{not json")

    store = ThresholdStore(path, default_threshold=60)
    assert store.snapshot() == {}
    assert store.get("group-1") == 60


def test_unwritable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    store = ThresholdStore(blocker / "thresholds.json", default_threshold=60)

    with pytest.raises(StorageError):
        store.set("group-1", 55)
    # In-memory value is kept
    assert store.get("group-1") == 55
