import errno
import os

import pytest

from efxforge.errors import NotFoundError, PathUnavailableError, WriteFailedError
from efxforge.storage import ArtifactStore, LocationKind, StorageLocation


def test_write_read_delete(tmp_path):
    store = ArtifactStore(tmp_path / "internal")
    directory = store.resolve_directory(StorageLocation.default())

    path = store.write_artifact_bytes(directory, "abc", b"payload")
    assert path == directory / "abc.efx"
    assert store.read_artifact_bytes(directory, "abc") == b"payload"
    assert store.list_ids(directory) == ["abc"]

    assert store.delete_artifact(directory, "abc") is True
    assert store.delete_artifact(directory, "abc") is False
    with pytest.raises(NotFoundError):
        store.read_artifact_bytes(directory, "abc")


def test_overwrite_leaves_no_temp_files(tmp_path):
    store = ArtifactStore(tmp_path)
    store.write_artifact_bytes(tmp_path, "abc", b"one")
    store.write_artifact_bytes(tmp_path, "abc", b"two")

    assert store.read_artifact_bytes(tmp_path, "abc") == b"two"
    assert [p.name for p in tmp_path.iterdir()] == ["abc.efx"]


def test_failed_write_keeps_previous_artifact(tmp_path, monkeypatch):
    store = ArtifactStore(tmp_path)
    store.write_artifact_bytes(tmp_path, "abc", b"old")

    def disk_full(fd):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(os, "fsync", disk_full)
    with pytest.raises(WriteFailedError):
        store.write_artifact_bytes(tmp_path, "abc", b"new and longer")
    monkeypatch.undo()

    assert store.read_artifact_bytes(tmp_path, "abc") == b"old"
    assert [p.name for p in tmp_path.iterdir()] == ["abc.efx"]


def test_copy_artifact(tmp_path):
    store = ArtifactStore(tmp_path)
    store.write_artifact_bytes(tmp_path / "efx", "abc", b"payload")

    target = store.copy_artifact(tmp_path / "efx", "abc", tmp_path / "out" / "show.efx")

    assert target.read_bytes() == b"payload"
    assert store.read_artifact_bytes(tmp_path / "efx", "abc") == b"payload"
    with pytest.raises(NotFoundError):
        store.copy_artifact(tmp_path / "efx", "missing", tmp_path / "out" / "x.efx")
    with pytest.raises(WriteFailedError):
        store.copy_artifact(tmp_path / "efx", "abc", tmp_path / "out")


@pytest.mark.parametrize("bad_id", ["", "..", "a/b"])
def test_rejects_path_like_ids(tmp_path, bad_id):
    with pytest.raises(ValueError):
        ArtifactStore(tmp_path).artifact_path(tmp_path, bad_id)


def test_resolve_locations(tmp_path):
    store = ArtifactStore(tmp_path / "internal")
    assert store.resolve_directory(StorageLocation.default()) == tmp_path / "internal"
    assert store.resolve_directory(StorageLocation.path(tmp_path / "custom")) == tmp_path / "custom"
    assert (tmp_path / "custom").is_dir()


def test_lookup_without_write_access(tmp_path):
    store = ArtifactStore(tmp_path / "internal")
    gone = StorageLocation.path(tmp_path / "unmounted")

    with pytest.raises(PathUnavailableError):
        store.resolve_directory(gone, writable=False)
    assert not (tmp_path / "unmounted").exists()

    (tmp_path / "unmounted").mkdir()
    assert store.resolve_directory(gone, writable=False) == tmp_path / "unmounted"


def test_external_location_needs_resolver(tmp_path):
    location = StorageLocation.external("content://tree/primary%3AEFX")
    with pytest.raises(PathUnavailableError):
        ArtifactStore(tmp_path).resolve_directory(location)


def test_external_location_with_resolver(tmp_path, resolver):
    reference = "content://tree/primary%3AEFX"
    resolver.mapping[reference] = tmp_path / "ext"
    store = ArtifactStore(tmp_path / "internal", external_resolver=resolver)

    assert store.resolve_directory(StorageLocation.external(reference)) == tmp_path / "ext"
    with pytest.raises(PathUnavailableError):
        store.resolve_directory(StorageLocation.external("content://revoked"))


def test_migrate_moves_all(tmp_path):
    store = ArtifactStore(tmp_path)
    old, new = tmp_path / "old", tmp_path / "new"
    for project_id in ("a", "b", "c"):
        store.write_artifact_bytes(old, project_id, project_id.encode() * 10)

    result = store.migrate(old, new, ["a", "b", "c"])

    assert result.ok
    assert sorted(result.moved) == ["a", "b", "c"]
    assert store.list_ids(old) == []
    assert store.read_artifact_bytes(new, "b") == b"b" * 10


def test_migrate_records_failures_and_continues(tmp_path, block):
    store = ArtifactStore(tmp_path)
    old, new = tmp_path / "old", tmp_path / "new"
    for project_id in ("a", "b", "c"):
        store.write_artifact_bytes(old, project_id, project_id.encode())
    block(new, "b")

    result = store.migrate(old, new, ["a", "b", "c"])

    assert sorted(result.moved) == ["a", "c"]
    assert result.failed_ids == {"b"}
    # the failed artifact is still intact at the source
    assert store.read_artifact_bytes(old, "b") == b"b"
    assert not store.exists(old, "a")
    assert [p.name for p in new.iterdir() if p.name.startswith(".")] == []


def test_migrate_can_be_repeated(tmp_path):
    store = ArtifactStore(tmp_path)
    old, new = tmp_path / "old", tmp_path / "new"
    store.write_artifact_bytes(old, "a", b"data")
    # an earlier run copied the file but stopped before deleting the source
    store.write_artifact_bytes(new, "a", b"data")

    result = store.migrate(old, new, ["a", "gone"])

    assert result.moved == ["a"]
    assert result.skipped == ["gone"]
    assert not store.exists(old, "a")
    assert store.read_artifact_bytes(new, "a") == b"data"

    again = store.migrate(old, new, ["a"])
    assert again.ok
    assert again.skipped == ["a"]


def test_migrate_overwrites_stale_destination(tmp_path):
    store = ArtifactStore(tmp_path)
    old, new = tmp_path / "old", tmp_path / "new"
    store.write_artifact_bytes(old, "a", b"fresh")
    store.write_artifact_bytes(new, "a", b"stale")

    store.migrate(old, new, ["a"])
    assert store.read_artifact_bytes(new, "a") == b"fresh"


def test_migrate_same_directory_is_noop(tmp_path):
    store = ArtifactStore(tmp_path)
    store.write_artifact_bytes(tmp_path / "d", "a", b"data")

    result = store.migrate(tmp_path / "d", tmp_path / "d" / ".." / "d", ["a"])

    assert result.moved == []
    assert result.skipped == ["a"]
    assert store.read_artifact_bytes(tmp_path / "d", "a") == b"data"


def test_storage_location_preference_strings(tmp_path):
    assert StorageLocation.from_preference("default_internal").is_default
    assert StorageLocation.from_preference("").is_default

    external = StorageLocation.from_preference("content://tree/abc")
    assert external.kind is LocationKind.EXTERNAL_REFERENCE
    assert external.to_preference() == "content://tree/abc"

    explicit = StorageLocation.from_preference(str(tmp_path))
    assert explicit.kind is LocationKind.EXPLICIT_PATH
    assert StorageLocation.from_preference(tmp_path.as_uri()) == explicit
    assert StorageLocation.from_preference(explicit.to_preference()) == explicit
