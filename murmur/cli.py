"""Command line interface for the murmur application."""

from __future__ import annotations

import json
import logging
import wave
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Iterator, Optional

import typer

from . import __version__
from . import config as config_mod
from .exceptions import MurmurError
from .models import HistoryPage
from .service import DictationService

app = typer.Typer(add_completion=False, help="Dictation transcription and searchable history.")

_PREVIEW_WIDTH = 60


def _build_service() -> DictationService:
    return DictationService()


@contextmanager
def _service() -> Iterator[DictationService]:
    try:
        service = _build_service()
    except MurmurError as exc:
        _fail(str(exc), exc)
    try:
        yield service
    finally:
        service.close()


def _fail(message: str, exc: Optional[BaseException] = None) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    if len(flat) <= _PREVIEW_WIDTH:
        return flat
    return flat[: _PREVIEW_WIDTH - 3] + "..."


def _wav_duration(path: Path) -> Optional[float]:
    try:
        with wave.open(str(path), "rb") as clip:
            rate = clip.getframerate()
            return clip.getnframes() / rate if rate else None
    except (wave.Error, EOFError, OSError):
        return None


def _print_page(page: HistoryPage, current: int, limit: int, empty_message: str) -> None:
    if not page.items:
        typer.echo(empty_message)
        return
    header = f"{'ID':<5}  {'Created':<16}  {'Fav':<3}  Text"
    typer.echo(header)
    typer.echo("-" * (len(header) + _PREVIEW_WIDTH - 4))
    for record in page.items:
        created = record.created_at.strftime("%Y-%m-%d %H:%M")
        star = "*" if record.is_favorite else ""
        typer.echo(f"{record.id:<5}  {created:<16}  {star:<3}  {_preview(record.text)}")
    pages = max(1, -(-page.total // limit))
    typer.echo(f"\nPage {max(current, 1)} of {pages} ({page.total} total)")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output to stderr."),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if version:
        typer.echo(f"murmur v{__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, dir_okay=False, help="Path to the audio clip."),
    save: bool = typer.Option(False, "--save/--no-save", help="Keep the transcription in the history."),
    duration: Optional[float] = typer.Option(
        None, "--duration", min=0, help="Clip length in seconds. Read from WAV headers when omitted."
    ),
    mime_type: str = typer.Option("audio/wav", "--mime-type", help="MIME type sent with the audio."),
) -> None:
    """Transcribe an audio clip and optionally store the result."""

    payload = audio.read_bytes()
    if duration is None and audio.suffix.lower() == ".wav":
        duration = _wav_duration(audio)

    with _service() as service:
        transcription_id = None
        try:
            if save:
                outcome, transcription_id = service.transcribe_and_save(payload, duration, mime_type)
            else:
                outcome = service.transcribe(payload, mime_type=mime_type)
        except MurmurError as exc:
            _fail(str(exc), exc)
        if not outcome.success:
            _fail(outcome.error or "Transcription failed.")
        typer.echo(outcome.text)

        if transcription_id is not None:
            typer.secho(f"\nSaved transcription with id {transcription_id}.", fg=typer.colors.BLUE)


@app.command("list")
def list_command(
    page: int = typer.Option(1, "--page", "-p", help="Page to show, starting at 1."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Entries per page."),
) -> None:
    """List stored transcriptions, newest first."""

    with _service() as service:
        try:
            result = service.storage.list_transcriptions(page, limit)
        except MurmurError as exc:
            _fail(str(exc), exc)
    _print_page(result, page, limit, "No transcriptions found. Use `murmur transcribe --save` to create one.")


@app.command()
def search(
    query: str = typer.Argument(..., help="Phrase to look for; the last word may be partial."),
    page: int = typer.Option(1, "--page", "-p", help="Page to show, starting at 1."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Entries per page."),
) -> None:
    """Search stored transcriptions."""

    with _service() as service:
        try:
            result = service.search(query, page, limit)
        except MurmurError as exc:
            _fail(str(exc), exc)
    _print_page(result, page, limit, f"No transcriptions match {query!r}.")


@app.command()
def show(transcription_id: int = typer.Argument(..., help="Identifier of the transcription to display.")) -> None:
    """Show a stored transcription."""

    with _service() as service:
        try:
            record = service.storage.get_transcription(transcription_id)
        except MurmurError as exc:
            _fail(str(exc), exc)

    typer.secho(f"Transcription {record.id}{' (favorite)' if record.is_favorite else ''}", fg=typer.colors.BLUE)
    typer.echo(f"Created: {record.created_at:%Y-%m-%d %H:%M}")
    if record.duration_seconds is not None:
        typer.echo(f"Duration: {record.duration_seconds:.1f}s")
    typer.echo("\n" + record.text)


@app.command()
def delete(transcription_id: int = typer.Argument(..., help="Identifier of the transcription to delete.")) -> None:
    """Delete a stored transcription."""

    with _service() as service:
        try:
            removed = service.storage.delete_transcription(transcription_id)
        except MurmurError as exc:
            _fail(str(exc), exc)
    if not removed:
        _fail(f"Transcription with id {transcription_id} not found")
    typer.secho(f"Transcription {transcription_id} deleted.", fg=typer.colors.BLUE)


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every stored transcription."""

    if not yes:
        typer.confirm("Delete the whole transcription history?", abort=True)
    with _service() as service:
        try:
            service.storage.clear_history()
        except MurmurError as exc:
            _fail(str(exc), exc)
    typer.secho("History cleared.", fg=typer.colors.BLUE)


@app.command()
def favorite(transcription_id: int = typer.Argument(..., help="Identifier of the transcription.")) -> None:
    """Mark or unmark a transcription as favorite."""

    with _service() as service:
        try:
            is_favorite = service.storage.toggle_favorite(transcription_id)
        except MurmurError as exc:
            _fail(str(exc), exc)
    state = "marked as favorite" if is_favorite else "removed from favorites"
    typer.secho(f"Transcription {transcription_id} {state}.", fg=typer.colors.BLUE)


@app.command()
def login(
    api_key: str = typer.Option(
        ...,
        "--api-key",
        help="Gemini API key.",
        prompt=True,
        hide_input=True,
    ),
    check: bool = typer.Option(True, "--check/--no-check", help="Verify the key before storing it."),
) -> None:
    """Store the Gemini API key in the system credential store."""

    with _service() as service:
        if check:
            outcome = service.transcriber.test_connection(api_key)
            if not outcome.success:
                _fail(f"API key rejected: {outcome.error}")
        result = service.set_api_key(api_key)
    if not result.ok:
        _fail(result.error or "Failed to store the API key.")
    typer.secho("API key stored.", fg=typer.colors.BLUE)


@app.command()
def logout() -> None:
    """Remove the stored API key."""

    try:
        config_mod.clear_credential()
    except MurmurError as exc:
        _fail(str(exc), exc)
    typer.secho("API key removed.", fg=typer.colors.BLUE)


@app.command("test-api")
def test_api(
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Key to test instead of the stored one."),
) -> None:
    """Check that the API key is accepted by the transcription service."""

    with _service() as service:
        outcome = service.transcriber.test_connection(api_key)
    if not outcome.success:
        _fail(outcome.error or "API validation failed")
    typer.secho("API key is valid.", fg=typer.colors.GREEN)


@app.command()
def config(
    theme: Optional[str] = typer.Option(None, help="Interface theme (light or dark)."),
    hotkey: Optional[str] = typer.Option(None, help="Global dictation shortcut, e.g. Super+J."),
    sound: Optional[bool] = typer.Option(None, "--sound/--no-sound", help="Play sounds when recording starts and stops."),
    show: bool = typer.Option(False, "--show", help="Display the active settings."),
) -> None:
    """Update or inspect settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {"theme": theme, "hotkey": hotkey, "sound_enabled": sound}.items()
        if value is not None
    }

    if show or not updates:
        typer.echo(json.dumps(asdict(config_mod.load_settings()), indent=2))
        return

    try:
        for key, value in updates.items():
            config_mod.set_setting(key, value)
    except MurmurError as exc:
        _fail(str(exc), exc)
    typer.secho("Settings updated.", fg=typer.colors.BLUE)


@app.command()
def setup() -> None:
    """Run the interactive first-run wizard."""

    from .onboarding import run_onboarding

    with _service() as service:
        try:
            run_onboarding(service)
        except MurmurError as exc:
            _fail(f"Setup failed: {exc}", exc)


@app.command()
def doctor() -> None:
    """Check the history database and the API key configuration."""

    with _service() as service:
        typer.echo(f"Database: {service.storage.db_path}")
        try:
            typer.echo(f"Schema version: {service.storage.schema_version()}")
            service.storage.check_index()
        except MurmurError as exc:
            _fail(str(exc), exc)
        typer.secho("Search index: ok", fg=typer.colors.GREEN)
        if service.transcriber.has_credential:
            typer.secho("API key: configured", fg=typer.colors.GREEN)
        else:
            typer.secho("API key: missing (run `murmur login`)", fg=typer.colors.YELLOW)


if __name__ == "__main__":  # pragma: no cover
    app()
