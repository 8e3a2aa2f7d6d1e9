"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
block listings, chapter marker tables, and playback status lines.
"""

from __future__ import annotations

import json
from typing import NoReturn, Sequence

import typer

from .errors import ReadAloudError, error_payload
from .models.datatypes import Block, ChapterMark
from .playback.state import PlaybackState


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, ReadAloudError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def exit_with_export_error(command_name: str, exc: Exception, as_json: bool) -> NoReturn:
    """Report an export failure, optionally as the machine-readable error body."""

    if as_json:
        typer.echo(json.dumps(error_payload(exc), sort_keys=True), err=True)
        raise typer.Exit(code=1) from exc
    exit_with_command_error(command_name, exc)


def echo_blocks(blocks: Sequence[Block]) -> None:
    """Print one numbered row per block with its length."""

    for number, block in enumerate(blocks, start=1):
        typer.echo(f"{number}. [{len(block.text)}] {block.text}")


def format_timestamp(milliseconds: int) -> str:
    """Format milliseconds as `H:MM:SS.mmm`."""

    seconds, millis = divmod(milliseconds, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def echo_chapter_marks(marks: Sequence[ChapterMark]) -> None:
    """Print chapter start/end offsets and titles."""

    for number, mark in enumerate(marks, start=1):
        typer.echo(
            f"{number}. {format_timestamp(mark.start_ms)} - {format_timestamp(mark.end_ms)} "
            f"{mark.title}"
        )


def echo_playback_state(state: PlaybackState) -> None:
    """Print one status line for a playback state change."""

    total = len(state.blocks)
    position = state.current_index + 1 if total else 0
    typer.echo(f"[playback] status={state.status.value} block={position}/{total}")


def echo_playback_error(exc: Exception) -> None:
    """Print a non-fatal playback failure; the session stays usable."""

    if isinstance(exc, ReadAloudError):
        typer.secho(f"Playback paused: {exc.detail}", fg=typer.colors.RED, err=True)
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
        return
    typer.secho(f"Playback paused: {exc}", fg=typer.colors.RED, err=True)
