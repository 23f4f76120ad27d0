import errno
import json
import os

import pytest

from efxforge.errors import NotFoundError, ReadFailedError, WriteFailedError
from efxforge.models import ProjectRecord
from efxforge.storage import MetadataCatalog


def test_missing_catalog_is_empty(tmp_path):
    catalog = MetadataCatalog(tmp_path / "efx_projects_metadata.json")
    assert catalog.load() == []
    assert len(catalog) == 0


def test_upsert_replaces_by_id(tmp_path):
    catalog = MetadataCatalog(tmp_path / "catalog.json")
    first = ProjectRecord(id="a", name="First", created_at=1000)
    second = ProjectRecord(id="b", name="Second", created_at=2000)
    catalog.upsert(first)
    catalog.upsert(second)

    first.name = "Renamed"
    catalog.upsert(first)

    records = catalog.load()
    assert [r.id for r in records] == ["a", "b"]
    assert records[0].name == "Renamed"


def test_remove_is_idempotent(tmp_path):
    catalog = MetadataCatalog(tmp_path / "catalog.json")
    catalog.upsert(ProjectRecord(id="a"))

    assert catalog.remove("a") is True
    assert catalog.remove("a") is False
    assert catalog.ids() == []


def test_require_unknown_id(tmp_path):
    catalog = MetadataCatalog(tmp_path / "catalog.json")
    with pytest.raises(NotFoundError):
        catalog.require("nope")


def test_catalog_file_format(tmp_path):
    path = tmp_path / "catalog.json"
    catalog = MetadataCatalog(path)
    catalog.upsert(ProjectRecord(id="a", name="Show", audio_ref="/music/song.mp3", created_at=10, updated_at=20))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == [
        {"id": "a", "name": "Show", "audioRef": "/music/song.mp3", "createdAt": 10, "updatedAt": 20}
    ]


def test_legacy_music_key_is_read(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"id": "x", "name": "Old", "musicUriString": "content://song"}]))

    record = MetadataCatalog(path).require("x")
    assert record.audio_ref == "content://song"
    assert record.updated_at >= record.created_at


def test_duplicate_ids_keep_first(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([{"id": "x", "name": "One"}, {"id": "x", "name": "Two"}]))

    records = MetadataCatalog(path).load()
    assert len(records) == 1
    assert records[0].name == "One"


@pytest.mark.parametrize("content", ["{not json", '{"id": "x"}', '[{"name": "no id"}]'])
def test_corrupt_catalog_raises(tmp_path, content):
    path = tmp_path / "catalog.json"
    path.write_text(content)
    with pytest.raises(ReadFailedError):
        MetadataCatalog(path).load()


def test_failed_save_keeps_previous_catalog(tmp_path, monkeypatch):
    path = tmp_path / "catalog.json"
    catalog = MetadataCatalog(path)
    catalog.upsert(ProjectRecord(id="a", name="Kept"))

    def refuse(src, dst):
        raise OSError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(os, "replace", refuse)
    with pytest.raises(WriteFailedError):
        catalog.upsert(ProjectRecord(id="b"))
    monkeypatch.undo()

    records = MetadataCatalog(path).load()
    assert [(r.id, r.name) for r in records] == [("a", "Kept")]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["catalog.json"]


def test_no_temp_files_left_behind(tmp_path):
    catalog = MetadataCatalog(tmp_path / "catalog.json")
    for index in range(5):
        catalog.upsert(ProjectRecord(id=f"p{index}"))
    assert sorted(p.name for p in tmp_path.iterdir()) == ["catalog.json"]


def test_record_touch_is_monotonic():
    record = ProjectRecord(id="a", created_at=10, updated_at=5)
    assert record.updated_at == 10

    record.updated_at = 10 ** 15  # far in the future
    record.touch()
    assert record.updated_at == 10 ** 15


def test_record_audio_name():
    assert ProjectRecord(id="a", audio_ref="/music/My%20Song.mp3").audio_name == "My Song"
    assert ProjectRecord(id="a").audio_name is None


def test_record_requires_id():
    with pytest.raises(ValueError):
        ProjectRecord(id="")
