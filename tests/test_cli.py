import json

import pytest
from typer.testing import CliRunner

from efxforge.cli import app, format_timestamp, parse_timestamp

runner = CliRunner()


def invoke(data_dir, *args):
    result = runner.invoke(app, ["--data-dir", str(data_dir), *args])
    return result, json.loads(result.stdout)


def test_create_and_show(tmp_path):
    result, payload = invoke(tmp_path, "create", "--name", "Intro")
    assert result.exit_code == 0
    assert payload["ok"] is True
    assert payload["command"] == "create"
    project_id = payload["data"]["id"]
    assert payload["data"]["entryCount"] == 1

    result, payload = invoke(tmp_path, "show", project_id)
    assert result.exit_code == 0
    timeline = payload["data"]["timeline"]
    assert timeline["entryCount"] == 1
    assert timeline["audioFingerprint"] == "0x00000000"
    assert timeline["entries"][0]["payload"]["effect_type"] == "OFF"


def test_entry_commands(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]

    _, payload = invoke(tmp_path, "add-entry", project_id, "--at", "0:05.000", "--effect", "strobe", "--color", "#FF0000")
    _, payload = invoke(tmp_path, "add-entry", project_id, "--at", "1000")
    entries = payload["data"]["entries"]
    assert [e["timestampMs"] for e in entries] == [0, 1000, 5000]
    assert [e["effectIndex"] for e in entries] == [1, 2, 3]
    assert entries[2]["payload"]["color"] == "#FF0000"
    assert entries[2]["payload"]["period"] == 2

    _, payload = invoke(tmp_path, "update-entry", project_id, "2", "--at", "500")
    entries = payload["data"]["entries"]
    assert [e["timestampMs"] for e in entries] == [0, 500, 1000]
    # unchanged fields are carried over from the replaced entry
    assert entries[1]["payload"]["effect_type"] == "STROBE"

    _, payload = invoke(tmp_path, "delete-entry", project_id, "0")
    assert payload["data"]["entryCount"] == 2


def test_out_of_range_position(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]

    result, payload = invoke(tmp_path, "delete-entry", project_id, "7")
    assert result.exit_code == 4
    assert payload["ok"] is False
    assert payload["error"]["code"] == "OUT_OF_RANGE"
    assert payload["error"]["retryable"] is False


def test_unknown_project(tmp_path):
    result, payload = invoke(tmp_path, "show", "nope")
    assert result.exit_code == 3
    assert payload["error"]["code"] == "NOT_FOUND"


def test_invalid_input(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]

    result, payload = invoke(tmp_path, "add-entry", project_id, "--at", "soon")
    assert result.exit_code == 2
    assert payload["error"]["code"] == "INVALID_INPUT"

    result, payload = invoke(tmp_path, "add-entry", project_id, "--at", "0", "--effect", "disco")
    assert payload["error"]["code"] == "INVALID_INPUT"


def test_audio_rename_and_delete(tmp_path):
    song = tmp_path / "Night Drive.mp3"
    song.write_bytes(b"ID3 fake audio")
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]

    _, payload = invoke(tmp_path, "set-audio", project_id, str(song))
    assert payload["data"]["suggestedName"] == "Night Drive"
    assert payload["data"]["audioFingerprint"] != "0x00000000"

    _, payload = invoke(tmp_path, "rename", project_id, "Night Drive")
    assert payload["data"]["name"] == "Night Drive"

    _, payload = invoke(tmp_path, "clear-audio", project_id)
    assert payload["data"]["audioFingerprint"] == "0x00000000"

    _, payload = invoke(tmp_path, "delete", project_id)
    assert payload["data"]["removed"] is True
    _, payload = invoke(tmp_path, "list")
    assert payload["data"] == []


def test_export_and_check(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]

    _, payload = invoke(tmp_path, "export", project_id, "show", "--dir", str(tmp_path / "out"))
    exported = tmp_path / "out" / "show.efx"
    assert payload["data"]["path"] == str(exported)
    assert exported.read_bytes()[:4] == b"EFX1"

    _, payload = invoke(tmp_path, "check")
    assert payload["data"]["consistent"] is True


def test_storage_commands(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]
    target = tmp_path / "elsewhere"

    _, payload = invoke(tmp_path, "storage", "set", str(target))
    assert payload["data"]["migration"]["moved"] == [project_id]
    assert payload["data"]["storage"]["directory"] == str(target)

    _, payload = invoke(tmp_path, "storage", "info")
    assert payload["data"]["preference"] == str(target)

    _, payload = invoke(tmp_path, "storage", "retry")
    assert payload["ok"] is True


def test_storage_music(tmp_path):
    _, payload = invoke(tmp_path, "storage", "music")
    assert payload["data"]["preference"] == "default_music"

    music = tmp_path / "music"
    music.mkdir()
    (music / "Anthem.mp3").write_bytes(b"ID3 anthem")
    _, payload = invoke(tmp_path, "storage", "music", str(music))
    assert payload["data"] == {"preference": str(music), "directory": str(music)}

    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]
    # a bare file name is looked up in the music folder
    _, payload = invoke(tmp_path, "set-audio", project_id, "Anthem.mp3")
    assert payload["data"]["audioRef"] == str(music / "Anthem.mp3")
    assert payload["data"]["suggestedName"] == "Anthem"


def test_partial_migration_exit_code(tmp_path):
    _, payload = invoke(tmp_path, "create")
    project_id = payload["data"]["id"]
    target = tmp_path / "elsewhere"
    (target / f"{project_id}.efx").mkdir(parents=True)

    result, payload = invoke(tmp_path, "storage", "set", str(target))
    assert result.exit_code == 11
    assert payload["error"]["retryable"] is True
    assert project_id in payload["error"]["details"]["failed"]


@pytest.mark.parametrize(
    "text, expected",
    [("1500", 1500), ("1:02.5", 62_500), ("2.250", 2250), ("0:00.001", 1), ("10:00", 600_000)],
)
def test_parse_timestamp(text, expected):
    assert parse_timestamp(text) == expected


def test_format_timestamp():
    assert format_timestamp(62_500) == "1:02.500"
    assert format_timestamp(0) == "0:00.000"
