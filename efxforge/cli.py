"""Command line front end for efxforge projects."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import typer

from efxforge import __version__
from efxforge.codec.payload import Color, EffectPayload, EffectType
from efxforge.config import ENV_HOME, default_data_dir
from efxforge.errors import ERROR_CODES, RETRYABLE_CODES, EfxError, PartialMigrationError
from efxforge.models.timeline import AddEntry, DeleteEntry, Timeline, TimelineEntry, UpdateEntry
from efxforge.service import ProjectService
from efxforge.storage.location import StorageLocation

app = typer.Typer(add_completion=False, help="Build and manage EFX lighting timelines")
storage_app = typer.Typer(add_completion=False, help="Where project artifacts are stored")
app.add_typer(storage_app, name="storage")

_TIMESTAMP = re.compile(r"(?:(\d+):)?(\d{1,2})(?:\.(\d{1,3}))?")


def _print(payload: Dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _ok(command: str, data: Any) -> None:
    _print({"ok": True, "version": __version__, "command": command, "data": data})


def _fail(command: str, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
    error: Dict[str, Any] = {"code": code, "message": message, "retryable": code in RETRYABLE_CODES}
    if details:
        error["details"] = details
    _print({"ok": False, "version": __version__, "command": command, "error": error})
    raise typer.Exit(ERROR_CODES.get(code, 1))


def _run(command: str, action: Callable[[], Any]) -> None:
    try:
        data = action()
    except PartialMigrationError as exc:
        details = exc.result.to_dict() if exc.result is not None else {"failed": exc.failed_ids}
        _fail(command, exc.code, exc.message, details)
    except EfxError as exc:
        _fail(command, exc.code, exc.message)
    except ValueError as exc:
        _fail(command, "INVALID_INPUT", str(exc))
    else:
        _ok(command, data)


def _service(ctx: typer.Context) -> ProjectService:
    return ProjectService.from_data_dir(ctx.obj["data_dir"])


def parse_timestamp(text: str) -> int:
    """Milliseconds from ``1500`` (plain ms) or ``m:ss.mmm`` / ``ss.mmm``."""
    text = text.strip()
    if text.isdigit():
        return int(text)
    match = _TIMESTAMP.fullmatch(text)
    if match is None:
        raise ValueError(f"Invalid timestamp {text!r}; use milliseconds or m:ss.mmm")
    minutes, seconds, millis = match.groups()
    return int(minutes or 0) * 60_000 + int(seconds) * 1000 + int((millis or "0").ljust(3, "0"))


def format_timestamp(ms: int) -> str:
    minutes, rest = divmod(ms, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{minutes}:{seconds:02d}.{millis:03d}"


def _effect(name: str) -> EffectType:
    try:
        return EffectType[name.strip().upper()]
    except KeyError:
        choices = ", ".join(member.name.lower() for member in EffectType)
        raise ValueError(f"Unknown effect {name!r}; choose one of {choices}") from None


def _timeline_dict(timeline: Timeline) -> Dict[str, Any]:
    header = timeline.header
    return {
        "formatVersion": header.format_version,
        "audioFingerprint": header.fingerprint_hex(),
        "entryCount": header.entry_count,
        "entries": [
            {
                "position": position,
                "effectIndex": entry.effect_index,
                "timestampMs": entry.timestamp_ms,
                "time": format_timestamp(entry.timestamp_ms),
                "payload": entry.payload.to_dict() if isinstance(entry.payload, EffectPayload) else entry.payload,
            }
            for position, entry in enumerate(timeline.entries)
        ],
    }


def _payload_overrides(
    color: Optional[str],
    background: Optional[str],
    period: Optional[int],
    spf: Optional[int],
    fade: Optional[int],
    random_color: Optional[int],
    random_delay: Optional[int],
) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if color is not None:
        overrides["color"] = Color.from_hex(color)
    if background is not None:
        overrides["background_color"] = Color.from_hex(background)
    for key, value in (
        ("period", period),
        ("spf", spf),
        ("fade", fade),
        ("random_color", random_color),
        ("random_delay", random_delay),
    ):
        if value is not None:
            overrides[key] = value
    return overrides


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", envvar=ENV_HOME, help="Catalog and settings folder"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    ctx.obj = {"data_dir": data_dir or default_data_dir()}


@app.command("list")
def list_projects(ctx: typer.Context) -> None:
    def action() -> Any:
        service = _service(ctx)
        return [service.project_summary(record.id).to_dict() for record in service.list_projects()]

    _run("list", action)


@app.command("create")
def create(ctx: typer.Context, name: Optional[str] = typer.Option(None, "--name")) -> None:
    def action() -> Any:
        service = _service(ctx)
        project_id = service.create_project(name)
        return service.project_summary(project_id).to_dict()

    _run("create", action)


@app.command("show")
def show(ctx: typer.Context, project_id: str) -> None:
    def action() -> Any:
        record, timeline = _service(ctx).open_project(project_id)
        return {"project": record.to_dict(), "timeline": _timeline_dict(timeline)}

    _run("show", action)


@app.command("rename")
def rename(ctx: typer.Context, project_id: str, name: str) -> None:
    _run("rename", lambda: _service(ctx).rename_project(project_id, name).to_dict())


@app.command("delete")
def delete(ctx: typer.Context, project_id: str) -> None:
    _run("delete", lambda: {"id": project_id, "removed": _service(ctx).delete_project(project_id)})


@app.command("set-audio")
def set_audio(ctx: typer.Context, project_id: str, audio: Path) -> None:
    def action() -> Any:
        service = _service(ctx)
        source = audio
        if not audio.is_absolute() and not audio.exists():
            # bare names are looked up in the music folder
            source = service.music_directory() / audio
        timeline = service.set_audio(project_id, str(source))
        return {
            "audioRef": str(source),
            "audioFingerprint": timeline.header.fingerprint_hex(),
            "suggestedName": service.suggest_name_from_audio(str(source)),
        }

    _run("set-audio", action)


@app.command("clear-audio")
def clear_audio(ctx: typer.Context, project_id: str) -> None:
    _run(
        "clear-audio",
        lambda: {"audioFingerprint": _service(ctx).set_audio(project_id, None).header.fingerprint_hex()},
    )


@app.command("add-entry")
def add_entry(
    ctx: typer.Context,
    project_id: str,
    at: str = typer.Option(..., "--at", help="Milliseconds or m:ss.mmm"),
    effect: str = typer.Option("on", "--effect"),
    color: Optional[str] = typer.Option(None, "--color", help="#RRGGBB"),
    background: Optional[str] = typer.Option(None, "--background", help="#RRGGBB"),
    period: Optional[int] = typer.Option(None, "--period"),
    spf: Optional[int] = typer.Option(None, "--spf"),
    fade: Optional[int] = typer.Option(None, "--fade"),
    random_color: Optional[int] = typer.Option(None, "--random-color"),
    random_delay: Optional[int] = typer.Option(None, "--random-delay"),
) -> None:
    def action() -> Any:
        overrides = _payload_overrides(color, background, period, spf, fade, random_color, random_delay)
        payload = EffectPayload.for_effect(_effect(effect), **overrides)
        entry = TimelineEntry(timestamp_ms=parse_timestamp(at), payload=payload)
        return _timeline_dict(_service(ctx).apply_timeline_edit(project_id, AddEntry(entry)))

    _run("add-entry", action)


@app.command("update-entry")
def update_entry(
    ctx: typer.Context,
    project_id: str,
    position: int,
    at: Optional[str] = typer.Option(None, "--at", help="Milliseconds or m:ss.mmm"),
    effect: Optional[str] = typer.Option(None, "--effect"),
    color: Optional[str] = typer.Option(None, "--color", help="#RRGGBB"),
    background: Optional[str] = typer.Option(None, "--background", help="#RRGGBB"),
    period: Optional[int] = typer.Option(None, "--period"),
    spf: Optional[int] = typer.Option(None, "--spf"),
    fade: Optional[int] = typer.Option(None, "--fade"),
    random_color: Optional[int] = typer.Option(None, "--random-color"),
    random_delay: Optional[int] = typer.Option(None, "--random-delay"),
) -> None:
    def action() -> Any:
        service = _service(ctx)
        _, timeline = service.open_project(project_id)
        entries = timeline.entries
        current = entries[position] if 0 <= position < len(entries) else None

        payload = EffectPayload()
        if current is not None and isinstance(current.payload, EffectPayload):
            payload = current.payload
        if effect is not None:
            payload = replace(payload, effect_type=_effect(effect))
        payload = replace(payload, **_payload_overrides(color, background, period, spf, fade, random_color, random_delay))

        if at is not None:
            timestamp = parse_timestamp(at)
        else:
            timestamp = current.timestamp_ms if current is not None else 0
        # an invalid position is reported by the engine
        replacement = TimelineEntry(timestamp_ms=timestamp, payload=payload)
        return _timeline_dict(service.apply_timeline_edit(project_id, UpdateEntry(position, replacement)))

    _run("update-entry", action)


@app.command("delete-entry")
def delete_entry(ctx: typer.Context, project_id: str, position: int) -> None:
    _run(
        "delete-entry",
        lambda: _timeline_dict(_service(ctx).apply_timeline_edit(project_id, DeleteEntry(position))),
    )


@app.command("export")
def export(
    ctx: typer.Context,
    project_id: str,
    name: str,
    directory: Optional[Path] = typer.Option(None, "--dir", help="Target folder (default: EfxExports)"),
) -> None:
    _run("export", lambda: {"path": str(_service(ctx).export_project_to(project_id, name, directory))})


@app.command("check")
def check(ctx: typer.Context) -> None:
    _run("check", lambda: _service(ctx).check_consistency().to_dict())


@storage_app.command("info")
def storage_info(ctx: typer.Context) -> None:
    _run("storage.info", lambda: _service(ctx).storage_info())


@storage_app.command("set")
def storage_set(ctx: typer.Context, location: str = typer.Argument(..., help="Folder path, URI or 'default_internal'")) -> None:
    def action() -> Any:
        service = _service(ctx)
        result = service.change_storage_location(StorageLocation.from_preference(location))
        return {"storage": service.storage_info(), "migration": result.to_dict()}

    _run("storage.set", action)


@storage_app.command("retry")
def storage_retry(ctx: typer.Context) -> None:
    _run("storage.retry", lambda: _service(ctx).retry_migration().to_dict())


@storage_app.command("music")
def storage_music(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Folder to pick audio from, or 'default_music'"),
) -> None:
    def action() -> Any:
        service = _service(ctx)
        if path is not None:
            service.change_music_load_path(path)
        return service.storage_info()["music"]

    _run("storage.music", action)


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
