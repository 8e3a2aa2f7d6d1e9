"""Command-line interface for readaloud.

Responsibilities:
- Expose user-facing commands for segmentation, listening, and audiobook export.
- Convert CLI arguments into `ReadAloudConfig` and wire runtime components.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

import asyncio
import json
import sys
import threading
from pathlib import Path
from typing import Annotated, Any, TextIO

import typer

from .cancellation import CancelToken
from .cli_rendering import (
    echo_blocks,
    echo_chapter_marks,
    echo_playback_error,
    echo_playback_state,
    exit_with_command_error,
    exit_with_export_error,
)
from .cli_runtime import (
    build_speech_client,
    build_synthesizer,
    load_command_config,
    resolve_runtime,
    resolve_synthesis_runtime_sources,
)
from .config import ReadAloudConfig, SynthesisRuntimeConfig
from .credentials import create_credential_store
from .errors import Cancelled, InvalidInput, ReadAloudError
from .export.assembler import AudiobookAssembler
from .export.narrator import AudiobookNarrator
from .models.datatypes import BookTags, Chapter, TextChapter
from .parsing import normalize_optional_string
from .playback.cache import AudioCache
from .playback.controller import PlaybackController
from .playback.sinks import AudioSink, FfplaySink
from .playback.state import PlaybackState, PlaybackStatus
from .runtime_tools import MediaTools
from .telemetry.logger import EventLogger
from .text.segmenter import TextSegmenter
from .tts.synthesizer import Synthesizer
from .tts.voices import fetch_available_voices

app = typer.Typer(
    name="readaloud",
    no_args_is_help=True,
    help="readaloud CLI.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="YAML config file (environment variables otherwise)."),
]
ModelOption = Annotated[str | None, typer.Option("--model", help="Speech model id override.")]
VoiceOption = Annotated[str | None, typer.Option("--voice", help="Voice id override.")]
BaseUrlOption = Annotated[
    str | None, typer.Option("--base-url", help="OpenAI-compatible API base URL override.")
]
ApiKeyOption = Annotated[
    str | None,
    typer.Option("--api-key", help="API key for this run (not logged)."),
]
VerboseOption = Annotated[
    bool, typer.Option("--verbose", help="Emit debug-level event logs to stderr.")
]


def _read_text(source: Path) -> str:
    """Read UTF-8 text from a file, or from stdin when `source` is `-`."""

    if str(source) == "-":
        return sys.stdin.read()
    try:
        return source.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise InvalidInput(stage="input", detail=f"Input file not found: `{source}`.") from exc
    except UnicodeDecodeError as exc:
        raise InvalidInput(
            stage="input",
            detail=f"Input file `{source}` is not UTF-8 text.",
        ) from exc


def _event_logger(verbose: bool) -> EventLogger:
    return EventLogger(sys.stderr, level="DEBUG" if verbose else "INFO")


def _resolve_config_and_runtime(
    config_file: Path | None,
    overrides: dict[str, Any],
    model: str | None,
    voice: str | None,
    base_url: str | None,
    api_key: str | None,
) -> tuple[ReadAloudConfig, SynthesisRuntimeConfig]:
    """Load config and resolve synthesis runtime values for one command."""

    config = load_command_config(config_file, overrides)
    runtime_cli_values, runtime_secure_values = resolve_synthesis_runtime_sources(
        tts_model=model,
        tts_voice=voice,
        base_url=base_url,
        api_key=api_key,
        credential_store_factory=create_credential_store,
    )
    runtime = resolve_runtime(config, runtime_cli_values, runtime_secure_values)
    return config, runtime


@app.command("segment")
def segment_command(
    source: Annotated[Path, typer.Argument(help="UTF-8 text file, or `-` for stdin.")],
    max_chars: Annotated[
        int | None,
        typer.Option("--max-chars", help="Block budget in characters; 0 disables it."),
    ] = None,
    export_budget: Annotated[
        bool,
        typer.Option("--export", help="Use the export block budget instead of the interactive one."),
    ] = False,
    config_file: ConfigOption = None,
) -> None:
    """Print the speakable blocks a document splits into."""

    try:
        config = load_command_config(config_file)
        if max_chars is not None and max_chars < 0:
            raise InvalidInput(stage="segment", detail="`--max-chars` must not be negative.")
        if max_chars is not None:
            budget = max_chars
        else:
            budget = config.export_block_chars if export_budget else config.block_chars
        blocks = TextSegmenter().segment(_read_text(source), budget)
    except ReadAloudError as exc:
        exit_with_command_error("segment", exc)

    echo_blocks(blocks)
    typer.echo(f"Blocks: {len(blocks)}")


@app.command("voices")
def voices_command(
    config_file: ConfigOption = None,
    base_url: BaseUrlOption = None,
    api_key: ApiKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """List voices offered by the backend, or the built-in list when unavailable."""

    try:
        config, runtime = _resolve_config_and_runtime(
            config_file, {}, None, None, base_url, api_key
        )
    except ReadAloudError as exc:
        exit_with_command_error("voices", exc)

    event_logger = _event_logger(verbose)
    try:
        voices = fetch_available_voices(build_speech_client(config, runtime), event_logger)
    finally:
        event_logger.close()
    for voice in voices:
        typer.echo(voice)


def _build_sink(config: ReadAloudConfig, event_logger: EventLogger) -> AudioSink:
    """Create the audio output used by `speak`."""

    tools = MediaTools.resolve(ffmpeg=config.ffmpeg, ffprobe=config.ffprobe, ffplay=config.ffplay)
    if "ffplay" in tools.missing():
        raise ReadAloudError(
            stage="playback",
            detail=f"Audio player `{config.ffplay}` is not available on PATH.",
            hint="Install ffmpeg (which provides `ffplay`) or set `ffplay` in the config.",
        )
    return FfplaySink(tools.ffplay, event_logger)


def _read_commands(
    stream: TextIO,
    loop: asyncio.AbstractEventLoop,
    queue: asyncio.Queue[str],
) -> None:
    """Forward stdin lines to the session queue; end of input quits."""

    try:
        for line in stream:
            loop.call_soon_threadsafe(queue.put_nowait, line.strip())
        loop.call_soon_threadsafe(queue.put_nowait, "q")
    except RuntimeError:
        # loop already closed after the session ended
        return


def _change_speed(controller: PlaybackController, rate: str) -> None:
    try:
        controller.set_voice(controller.voice.with_speed(float(rate)))
    except InvalidInput as exc:
        typer.echo(exc.detail)
    except ValueError:
        typer.echo(f"Invalid speed `{rate}`.")


async def run_speak_session(
    controller: PlaybackController,
    text: str,
    commands: TextIO,
    start_block: int = 1,
) -> PlaybackState:
    """Drive one interactive session from line commands until quit or end of text.

    Commands: `p` play/pause, `n` next, `b` back, `j N` jump to block N,
    `v NAME` switch voice, `r RATE` change speed, `s` stop, `q` quit.
    """

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str] = asyncio.Queue()

    def _on_state_change(state: PlaybackState) -> None:
        echo_playback_state(state)
        if state.status is PlaybackStatus.STOPPED:
            queue.put_nowait("q")

    controller.on_state_change = _on_state_change
    controller.set_text(text)
    if not controller.state.blocks:
        raise InvalidInput(stage="speak", detail="The document contains no speakable text.")
    typer.echo(
        "Commands: p=play/pause n=next b=back j N=jump v NAME=voice r RATE=speed s=stop q=quit"
    )
    controller.jump_to_index(start_block - 1, autoplay=True)

    reader = threading.Thread(
        target=_read_commands,
        args=(commands, loop, queue),
        daemon=True,
    )
    reader.start()

    try:
        while True:
            command = await queue.get()
            name, _, argument = command.partition(" ")
            name = name.lower()
            if name in {"q", "quit"}:
                break
            if name == "p":
                controller.toggle_play()
            elif name == "n":
                controller.skip_forward()
            elif name == "b":
                controller.skip_backward()
            elif name == "s":
                controller.stop()
                break
            elif name == "j" and argument.strip().isdigit():
                controller.jump_to_index(int(argument) - 1, autoplay=True)
            elif name == "v" and argument.strip():
                controller.set_voice(controller.voice.with_voice(argument.strip()))
            elif name == "r" and argument.strip():
                _change_speed(controller, argument.strip())
            elif name:
                typer.echo(f"Unknown command `{command}`.")
        return controller.state
    finally:
        await controller.close()


@app.command("speak")
def speak_command(
    source: Annotated[Path, typer.Argument(help="UTF-8 text file to read aloud.")],
    start_block: Annotated[
        int, typer.Option("--start-block", min=1, help="1-based block to start from.")
    ] = 1,
    speed: Annotated[
        float | None, typer.Option("--speed", help="Speaking rate (0.25 to 4.0).")
    ] = None,
    config_file: ConfigOption = None,
    model: ModelOption = None,
    voice: VoiceOption = None,
    base_url: BaseUrlOption = None,
    api_key: ApiKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Listen to a document with play/pause/skip line commands on stdin."""

    event_logger = _event_logger(verbose)
    try:
        config, runtime = _resolve_config_and_runtime(
            config_file, {"speed": speed}, model, voice, base_url, api_key
        )
        text = _read_text(source)
        synthesizer: Synthesizer = build_synthesizer(
            config, runtime, batch=False, event_logger=event_logger
        )
        controller = PlaybackController(
            synthesizer,
            _build_sink(config, event_logger),
            voice=config.voice_profile(runtime),
            cache=AudioCache(config.cache_capacity),
            block_chars=config.block_chars,
            prefetch_delay_seconds=config.prefetch_delay_seconds,
            skip_debounce_seconds=config.skip_debounce_seconds,
            on_error=echo_playback_error,
            event_logger=event_logger,
        )
        final_state = asyncio.run(
            run_speak_session(controller, text, sys.stdin, start_block=start_block)
        )
    except ReadAloudError as exc:
        exit_with_command_error("speak", exc)
    finally:
        event_logger.close()

    typer.echo(f"Session ended: {final_state.status.value}")
    typer.echo(f"Cache hit rate: {controller.cache.hit_rate():.2f}")


def _load_export_manifest(manifest_path: Path) -> tuple[list[Chapter], BookTags]:
    """Load `{title?, author?, chapters: [{title, audio}]}` or a bare chapter list.

    Audio paths are resolved relative to the manifest file.
    """

    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise InvalidInput(stage="input", detail=f"Manifest not found: `{manifest_path}`.") from exc
    except json.JSONDecodeError as exc:
        raise InvalidInput(
            stage="input",
            detail=f"Manifest `{manifest_path}` is not valid JSON: {exc.msg}.",
        ) from exc

    if isinstance(payload, list):
        entries, tags = payload, BookTags()
    elif isinstance(payload, dict) and isinstance(payload.get("chapters"), list):
        entries = payload["chapters"]
        tags = BookTags(
            title=normalize_optional_string(payload.get("title")),
            author=normalize_optional_string(payload.get("author")),
        )
    else:
        raise InvalidInput(
            stage="input",
            detail="Manifest must be a chapter list or an object with a `chapters` list.",
        )

    chapters: list[Chapter] = []
    for number, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise InvalidInput(stage="input", detail=f"Chapter {number} must be an object.")
        title = normalize_optional_string(entry.get("title"))
        audio = normalize_optional_string(entry.get("audio"))
        if title is None or audio is None:
            raise InvalidInput(
                stage="input",
                detail=f"Chapter {number} requires non-empty `title` and `audio` fields.",
            )
        audio_path = Path(audio)
        if not audio_path.is_absolute():
            audio_path = manifest_path.parent / audio_path
        try:
            raw_audio = audio_path.read_bytes()
        except FileNotFoundError as exc:
            raise InvalidInput(
                stage="input",
                detail=f"Chapter {number} audio file not found: `{audio_path}`.",
            ) from exc
        chapters.append(Chapter(title=title, raw_audio=raw_audio))
    return chapters, tags


def _build_assembler(config: ReadAloudConfig, event_logger: EventLogger) -> AudiobookAssembler:
    tools = MediaTools.resolve(ffmpeg=config.ffmpeg, ffprobe=config.ffprobe, ffplay=config.ffplay)
    return AudiobookAssembler(tools=tools, work_dir=config.work_dir, event_logger=event_logger)


@app.command("export")
def export_command(
    manifest: Annotated[Path, typer.Argument(help="JSON manifest of chapter titles and audio files.")],
    out: Annotated[Path, typer.Option("--out", help="Destination audiobook file.")],
    audio_format: Annotated[
        str | None, typer.Option("--format", help="Container format: `m4b` or `mp3`.")
    ] = None,
    title: Annotated[str | None, typer.Option("--title", help="Book title tag.")] = None,
    author: Annotated[str | None, typer.Option("--author", help="Book author tag.")] = None,
    json_errors: Annotated[
        bool, typer.Option("--json-errors", help="Report failures as a JSON error body.")
    ] = False,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Assemble chapter audio files into one chaptered audiobook."""

    event_logger = _event_logger(verbose)
    try:
        config = load_command_config(config_file, {"audio_format": audio_format})
        chapters, tags = _load_export_manifest(manifest)
        tags = BookTags(title=title or tags.title, author=author or tags.author)
        marks = _build_assembler(config, event_logger).write_to(
            chapters,
            out,
            config.audio_format,
            tags=tags,
            cancel_token=CancelToken("export"),
        )
    except ReadAloudError as exc:
        exit_with_export_error("export", exc, json_errors)
    finally:
        event_logger.close()

    echo_chapter_marks(marks)
    typer.echo(f"Audiobook: {out}")


@app.command("narrate")
def narrate_command(
    sources: Annotated[
        list[Path], typer.Argument(help="UTF-8 text files, one chapter each, in order.")
    ],
    out: Annotated[Path, typer.Option("--out", help="Destination audiobook file.")],
    audio_format: Annotated[
        str | None, typer.Option("--format", help="Container format: `m4b` or `mp3`.")
    ] = None,
    title: Annotated[str | None, typer.Option("--title", help="Book title tag.")] = None,
    author: Annotated[str | None, typer.Option("--author", help="Book author tag.")] = None,
    speed: Annotated[
        float | None, typer.Option("--speed", help="Speaking rate (0.25 to 4.0).")
    ] = None,
    config_file: ConfigOption = None,
    model: ModelOption = None,
    voice: VoiceOption = None,
    base_url: BaseUrlOption = None,
    api_key: ApiKeyOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Narrate text chapters and assemble them into one chaptered audiobook."""

    event_logger = _event_logger(verbose)
    cancel_token = CancelToken("narrate")

    def _progress(completed: int, total: int, chapter_title: str) -> None:
        typer.echo(f"[progress] command=narrate {completed}/{total} chapter={chapter_title}")

    try:
        config, runtime = _resolve_config_and_runtime(
            config_file,
            {"audio_format": audio_format, "speed": speed},
            model,
            voice,
            base_url,
            api_key,
        )
        chapters = [
            TextChapter(title=path.stem.replace("_", " "), text=_read_text(path))
            for path in sources
        ]
        narrator = AudiobookNarrator(
            build_synthesizer(config, runtime, batch=True, event_logger=event_logger),
            _build_assembler(config, event_logger),
            block_chars=config.export_block_chars,
            event_logger=event_logger,
        )
        marks = narrator.narrate(
            chapters,
            config.voice_profile(runtime),
            out,
            config.audio_format,
            tags=BookTags(title=title, author=author),
            cancel_token=cancel_token,
            progress=_progress,
        )
    except KeyboardInterrupt:
        cancel_token.cancel()
        exit_with_command_error("narrate", Cancelled(stage="narrate", detail="Interrupted."))
    except ReadAloudError as exc:
        exit_with_command_error("narrate", exc)
    finally:
        event_logger.close()

    echo_chapter_marks(marks)
    typer.echo(f"Audiobook: {out}")


@app.command("credentials")
def credentials_command(
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
) -> None:
    """Manage securely stored CLI credentials."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            InvalidInput(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )

    credential_store = create_credential_store()
    if set_api_key:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                "OpenAI API key (hidden input)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                InvalidInput(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(prompted_api_key)
        except (RuntimeError, ValueError) as exc:
            exit_with_command_error(
                "credentials",
                ReadAloudError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo("API key stored in secure credential storage.")
        return

    if clear_api_key:
        if credential_store.clear_api_key():
            typer.echo("Stored API key cleared from secure credential storage.")
        else:
            typer.echo("No stored API key found in secure credential storage.")
        return

    availability = "available" if credential_store.is_available() else "unavailable"
    status = "present" if credential_store.get_api_key() is not None else "not set"
    typer.echo(f"Secure credential storage: {availability}")
    typer.echo(f"Stored OpenAI API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
