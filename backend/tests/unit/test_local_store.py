"""
Unit tests for device-local storage and the JSON collections on top of it.
"""
import json

import pytest

from reviewhub.services.local_store import (
    COMMENTS_NAMESPACE,
    REVIEWS_NAMESPACE,
    DeviceStorageError,
    FileDeviceStorage,
    LocalStore,
    MemoryDeviceStorage,
    new_local_id,
)
from reviewhub.services.records import is_local_id


@pytest.mark.unit
def test_new_local_id_is_prefixed_and_unique():
    """Test new local ID is prefixed and unique."""
    ids = {new_local_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(is_local_id(record_id) for record_id in ids)


@pytest.mark.unit
def test_append_one_assigns_local_id(local_store):
    """Test append one assigns local ID."""
    record_id = local_store.append_one(REVIEWS_NAMESPACE, {"title": "Great"})

    assert is_local_id(record_id)
    assert local_store.load_all(REVIEWS_NAMESPACE) == [{"title": "Great", "id": record_id}]


@pytest.mark.unit
def test_corrupt_collection_reads_as_empty(device_storage, local_store):
    """Test corrupt collection reads as empty."""
    device_storage.set_item(REVIEWS_NAMESPACE, "{not json")

    assert local_store.load_all(REVIEWS_NAMESPACE) == []


@pytest.mark.unit
def test_wrong_shape_reads_as_empty(device_storage, local_store):
    """Test wrong shape reads as empty."""
    device_storage.set_item(REVIEWS_NAMESPACE, json.dumps({"a": 1}))
    device_storage.set_item(COMMENTS_NAMESPACE, json.dumps([1, 2]))

    assert local_store.load_all(REVIEWS_NAMESPACE) == []
    assert local_store.load_map(COMMENTS_NAMESPACE) == {}


@pytest.mark.unit
def test_missing_storage_degrades_softly():
    """Test missing storage degrades softly."""
    store = LocalStore(None)

    assert store.load_all(REVIEWS_NAMESPACE) == []
    assert store.append_one(REVIEWS_NAMESPACE, {"title": "x"}) is None
    assert store.remove_where(REVIEWS_NAMESPACE, lambda r: True) is False


@pytest.mark.unit
def test_quota_exceeded_write_fails_without_raising():
    """Test quota exceeded write fails without raising."""
    store = LocalStore(MemoryDeviceStorage(quota_bytes=64))

    assert store.append_one(REVIEWS_NAMESPACE, {"content": "x" * 200}) is None
    assert store.load_all(REVIEWS_NAMESPACE) == []


@pytest.mark.unit
def test_remove_where_drops_matching_records(local_store):
    """Test remove where drops matching records."""
    keep = local_store.append_one(REVIEWS_NAMESPACE, {"title": "keep"})
    drop = local_store.append_one(REVIEWS_NAMESPACE, {"title": "drop"})

    assert local_store.remove_where(REVIEWS_NAMESPACE, lambda r: r["id"] == drop) is True
    assert [r["id"] for r in local_store.load_all(REVIEWS_NAMESPACE)] == [keep]


@pytest.mark.unit
def test_update_where_reports_no_match(local_store):
    """Test update where reports no match."""
    local_store.append_one(REVIEWS_NAMESPACE, {"title": "a"})

    assert local_store.update_where(REVIEWS_NAMESPACE, lambda r: False, lambda r: None) is False


@pytest.mark.unit
def test_update_where_persists_mutation(local_store):
    """Test update where persists mutation."""
    record_id = local_store.append_one(REVIEWS_NAMESPACE, {"title": "a"})

    updated = local_store.update_where(
        REVIEWS_NAMESPACE,
        lambda r: r["id"] == record_id,
        lambda r: r.update(title="b"),
    )

    assert updated is True
    assert local_store.load_all(REVIEWS_NAMESPACE)[0]["title"] == "b"


@pytest.mark.unit
def test_keyed_collection_append_and_remove(local_store):
    """Test keyed collection append and remove."""
    first = local_store.append_to_map(COMMENTS_NAMESPACE, "review-1", {"content": "one"})
    second = local_store.append_to_map(COMMENTS_NAMESPACE, "review-1", {"content": "two"})

    assert len(local_store.load_map(COMMENTS_NAMESPACE)["review-1"]) == 2

    assert local_store.remove_from_map(COMMENTS_NAMESPACE, "review-1", lambda c: c["id"] == first) is True
    assert [c["id"] for c in local_store.load_map(COMMENTS_NAMESPACE)["review-1"]] == [second]

    # Unknown id under an existing key, then unknown key
    assert local_store.remove_from_map(COMMENTS_NAMESPACE, "review-1", lambda c: c["id"] == "nope") is False
    assert local_store.remove_from_map(COMMENTS_NAMESPACE, "review-2") is False

    assert local_store.remove_from_map(COMMENTS_NAMESPACE, "review-1") is True
    assert local_store.load_map(COMMENTS_NAMESPACE) == {}


@pytest.mark.unit
def test_file_storage_round_trip(tmp_path):
    """Test file storage round trip."""
    storage = FileDeviceStorage(str(tmp_path / "store"))

    assert storage.get_item("local_reviews") is None
    storage.set_item("local_reviews", "[]")
    assert storage.get_item("local_reviews") == "[]"
    storage.remove_item("local_reviews")
    assert storage.get_item("local_reviews") is None
    # Removing twice is fine
    storage.remove_item("local_reviews")


@pytest.mark.unit
def test_file_storage_persists_across_instances(tmp_path):
    """Test file storage persists across instances."""
    root = str(tmp_path / "store")
    first = LocalStore(FileDeviceStorage(root))
    record_id = first.append_one(REVIEWS_NAMESPACE, {"title": "durable"})

    second = LocalStore(FileDeviceStorage(root))
    assert second.load_all(REVIEWS_NAMESPACE)[0]["id"] == record_id


@pytest.mark.unit
def test_file_storage_unwritable_root_raises_storage_error(tmp_path):
    """Test file storage unwritable root raises storage error."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file")
    storage = FileDeviceStorage(str(blocker))

    with pytest.raises(DeviceStorageError):
        storage.set_item("local_reviews", "[]")


@pytest.mark.unit
def test_file_storage_failed_write_leaves_no_temp_file(tmp_path, monkeypatch):
    """Test that a write failing at the final move cleans up its temporary file."""
    root = tmp_path / "store"
    storage = FileDeviceStorage(str(root))
    storage.set_item("local_reviews", "[]")

    def refuse(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("reviewhub.services.local_store.os.replace", refuse)

    with pytest.raises(DeviceStorageError):
        storage.set_item("local_reviews", '[{"id": "local_x"}]')

    assert [path.name for path in root.iterdir()] == ["local_reviews.json"]
    assert storage.get_item("local_reviews") == "[]"
