"""CLI entry point for the atelier voice assistant.

Commands:
    atelier voice     — talk to the dashboard assistant
    atelier intents   — print the intent schema sent to the model
"""

import asyncio
import json
import logging
import sys

import click

from atelier.config import (
    GEMINI_API_KEY,
    GEMINI_LIVE_MODEL,
    SUPABASE_ANON_KEY,
    SUPABASE_URL,
    VOICE_INPUT_DEVICE,
    VOICE_OUTPUT_DEVICE,
    VOICE_STRICT_PROJECT_MATCH,
)
from atelier.schemas.voice import Speaker, Turn

logger = logging.getLogger("atelier")


def _validate_config() -> None:
    """Fail loudly if required config is missing."""
    missing = []
    if not GEMINI_API_KEY:
        missing.append("GEMINI_API_KEY")
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_ANON_KEY:
        missing.append("SUPABASE_ANON_KEY")
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/internal.env or via SOPS.", err=True)
        sys.exit(1)


def _check_voice_deps() -> None:
    """Fail with a readable message if the audio stack is unusable."""
    try:
        import sounddevice  # noqa: F401
    except (ImportError, OSError) as exc:
        click.echo(f"Error: audio support unavailable ({exc}).", err=True)
        click.echo("Install PortAudio and the sounddevice package.", err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """atelier — voice assistant for the freelance dashboard."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# atelier voice
# ------------------------------------------------------------------


class TranscriptPrinter:
    """Echo transcript changes, streaming deltas onto the current line."""

    _LABELS = {Speaker.USER: "You", Speaker.ASSISTANT: "Assistant", Speaker.SYSTEM: "System"}

    def __init__(self, echo=click.echo) -> None:
        self._echo = echo
        self._turn: Turn | None = None
        self._printed = 0

    def __call__(self, turn: Turn) -> None:
        if turn is self._turn:
            self._echo(turn.text[self._printed:], nl=False)
        else:
            if self._turn is not None:
                self._echo("")
            self._echo(f"{self._LABELS[turn.speaker]}: {turn.text}", nl=False)
            self._turn = turn
        self._printed = len(turn.text)
        if turn.speaker == Speaker.SYSTEM:
            self._echo("")
            self._turn = None
            self._printed = 0


@cli.command()
@click.option("--input-device", type=int, default=VOICE_INPUT_DEVICE, help="sounddevice input index.")
@click.option("--output-device", type=int, default=VOICE_OUTPUT_DEVICE, help="sounddevice output index.")
@click.option(
    "--strict-projects/--first-match",
    default=VOICE_STRICT_PROJECT_MATCH,
    show_default=True,
    help="Refuse task requests whose project name matches several projects.",
)
@click.option("--model", default=GEMINI_LIVE_MODEL, show_default=True, help="Gemini Live model.")
def voice(
    input_device: int | None,
    output_device: int | None,
    strict_projects: bool,
    model: str,
) -> None:
    """Start a speech session: talk, and the assistant updates the dashboard."""
    _check_voice_deps()
    _validate_config()
    asyncio.run(_voice_async(input_device, output_device, strict_projects, model))


async def _voice_async(
    input_device: int | None,
    output_device: int | None,
    strict_projects: bool,
    model: str,
) -> None:
    from atelier.integrations.supabase import SupabaseClient
    from atelier.schemas.voice import AudioConfig, SessionState
    from atelier.voice.live import GeminiLiveTransport
    from atelier.voice.session import VoiceSession
    from atelier.voice.transcript import Transcript

    audio_config = AudioConfig(input_device=input_device, output_device=output_device)
    transcript = Transcript(on_change=TranscriptPrinter())
    transport = GeminiLiveTransport(GEMINI_API_KEY, model)

    async with (
        SupabaseClient(SUPABASE_URL, SUPABASE_ANON_KEY) as store,
        VoiceSession(
            transport=transport,
            store=store,
            audio_config=audio_config,
            strict_project_match=strict_projects,
            transcript=transcript,
            on_status=lambda status: logger.info("Status: %s", status),
        ) as session,
    ):
        await session.start()
        if session.state != SessionState.OPEN:
            click.echo(f"\nCould not start: {session.status}", err=True)
            sys.exit(1)

        click.echo("\n[Press Enter to stop]", err=True)
        loop = asyncio.get_running_loop()
        enter = loop.run_in_executor(None, sys.stdin.readline)
        idle = asyncio.ensure_future(session.wait_idle())
        done, _ = await asyncio.wait({enter, idle}, return_when=asyncio.FIRST_COMPLETED)

        if idle in done:
            click.echo(f"\nSession ended: {session.status} (press Enter to exit)", err=True)
        else:
            idle.cancel()
        await session.stop()


# ------------------------------------------------------------------
# atelier intents
# ------------------------------------------------------------------


@cli.command()
def intents() -> None:
    """Print the function declarations sent to the model."""
    from atelier.planner.intent_schema import build_function_declarations

    click.echo(json.dumps(build_function_declarations(), indent=2))
