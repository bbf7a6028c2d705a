"""Voice session — lifecycle of one live conversation with the assistant.

Ties together the capture pipeline, the Live transport, the intent
dispatcher, playback and the transcript:

    start: audio output -> microphone -> remote session -> Open
    Open:  frames out; transcripts, tool calls and audio in
    stop:  capture, sender, receiver, remote session, playback -> Idle

All state is mutated on the event loop. Every await in ``start()`` is
followed by a generation check so that a ``stop()`` issued while a step
is pending wins, and whatever that step produced is released.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from atelier.errors import (
    AudioInitError,
    CaptureError,
    MicrophoneError,
    PermissionDenied,
    SessionConnectionError,
)
from atelier.integrations.supabase import SupabaseClient
from atelier.orchestrator.dispatcher import dispatch
from atelier.planner.intent_schema import build_function_declarations, build_system_prompt
from atelier.schemas.intents import IntentCall
from atelier.schemas.voice import (
    AudioChunk,
    AudioConfig,
    InputTranscript,
    OutputTranscript,
    ServerMessage,
    SessionClosed,
    SessionErrorMessage,
    SessionState,
    Speaker,
    ToolCallBatch,
    ToolResult,
    TurnComplete,
    WireFrame,
)
from atelier.voice.capture import CapturePipeline
from atelier.voice.codec import decode_frame
from atelier.voice.playback import AudioOutput, PlaybackPipeline
from atelier.voice.transcript import Transcript

if TYPE_CHECKING:
    from atelier.voice.live import GeminiLiveTransport, LiveConnection

logger = logging.getLogger(__name__)

STATUS_READY = "Click the mic to start"
CLOSE_TIMEOUT = 5.0


class VoiceSession:
    """Single-owner controller for the voice assistant.

    At most one live conversation exists per instance; ``start()`` on a
    session that is not idle tears the old one down first.
    """

    def __init__(
        self,
        *,
        transport: GeminiLiveTransport | None,
        store: SupabaseClient,
        audio_config: AudioConfig | None = None,
        output: AudioOutput | None = None,
        capture_factory: Callable[[AudioConfig], CapturePipeline] = CapturePipeline,
        strict_project_match: bool = False,
        transcript: Transcript | None = None,
        on_status: Callable[[str], None] | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._transport = transport
        self._store = store
        self._audio_config = audio_config or AudioConfig()
        self._output = output or AudioOutput(self._audio_config)
        self._playback = PlaybackPipeline(self._output)
        self._capture_factory = capture_factory
        self._strict_project_match = strict_project_match
        self._transcript = transcript or Transcript()
        self._on_status = on_status
        self._today = today

        self._state = SessionState.IDLE
        self._status = STATUS_READY
        self._generation = 0
        self._capture: CapturePipeline | None = None
        self._connection: LiveConnection | None = None
        self._outbox: asyncio.Queue[WireFrame] | None = None
        self._sender_task: asyncio.Task | None = None
        self._receiver_task: asyncio.Task | None = None
        self._call_tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self.last_error: Exception | None = None

    async def __aenter__(self) -> VoiceSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
        if self._call_tasks:
            await asyncio.gather(*self._call_tasks, return_exceptions=True)
        try:
            self._output.close()
        except Exception:
            logger.warning("Error closing audio output", exc_info=True)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def playback(self) -> PlaybackPipeline:
        return self._playback

    @property
    def pending_calls(self) -> int:
        return len(self._call_tasks)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open a new conversation.

        Failures never raise: they leave the session Idle with a status,
        a system line in the transcript and ``last_error`` set.
        """
        if self._state != SessionState.IDLE:
            await self.stop()
        # Wait out a teardown that is still Closing.
        await self._idle.wait()

        if self._transport is None:
            self._set_status("AI Client not initialized.")
            self._transcript.append_system("Error: AI Client is not ready. Check API Key.")
            return

        self._generation += 1
        generation = self._generation
        self.last_error = None
        self._idle.clear()
        self._set_state(SessionState.CONNECTING)
        self._set_status("Initializing session...")
        self._transcript.clear()
        self._transcript.append_system("Starting voice session...")

        try:
            await self._output.resume()
        except AudioInitError as exc:
            await self._fail(
                generation, exc, "Audio system error.",
                f"Error: Could not initialize audio system. {exc}",
            )
            return
        if self._is_stale(generation):
            if self._state == SessionState.IDLE:
                self._step("suspend audio output", self._output.suspend)
            return

        self._set_status("Accessing microphone...")
        capture = self._capture_factory(self._audio_config)
        self._capture = capture
        try:
            await capture.start()
        except Exception as exc:
            if not isinstance(exc, CaptureError):
                logger.exception("Unexpected microphone failure")
            error = MicrophoneError(str(exc))
            error.__cause__ = exc
            status = (
                "Microphone access denied."
                if isinstance(exc, PermissionDenied)
                else "Microphone unavailable."
            )
            await self._fail(
                generation, error, status,
                "Error: Could not access microphone. Please check permissions.",
            )
            return
        if self._is_stale(generation):
            capture.stop()
            return
        self._set_status("Microphone connected.")

        self._set_status("Connecting to assistant...")
        try:
            connection = await self._transport.connect(
                system_prompt=build_system_prompt(self._today()),
                declarations=build_function_declarations(),
            )
        except Exception as exc:
            if self._is_stale(generation):
                logger.info("Connect failed after stop: %s", exc)
                return
            error = exc if isinstance(exc, SessionConnectionError) else SessionConnectionError(str(exc))
            await self._fail(
                generation, error, "Connection failed.",
                f"Error: Could not connect to the voice assistant. {exc}",
            )
            return
        if self._is_stale(generation):
            logger.info("Ignoring session opened after stop")
            await self._close_connection(connection)
            return

        self._connection = connection
        self._outbox = asyncio.Queue()
        self._sender_task = asyncio.create_task(self._send_loop(connection, self._outbox))
        self._receiver_task = asyncio.create_task(self._receive_loop(connection, generation))
        self._set_state(SessionState.OPEN)
        self._set_status("Listening... Speak now.")
        capture.begin(self._on_frame)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _on_frame(self, frame: WireFrame) -> None:
        """Capture sink. Frames arriving outside Open are dropped."""
        if self._state != SessionState.OPEN or self._outbox is None:
            return
        self._outbox.put_nowait(frame)

    async def _send_loop(self, connection: LiveConnection, outbox: asyncio.Queue[WireFrame]) -> None:
        while True:
            frame = await outbox.get()
            try:
                await connection.send_audio(frame)
            except Exception:
                logger.warning("Failed to send audio frame", exc_info=True)

    async def _send_tool_result(self, generation: int, result: ToolResult) -> None:
        connection = self._connection
        if self._is_stale(generation) or connection is None:
            logger.info("Discarding result for %s: session ended", result.call_id)
            return
        try:
            await connection.send_tool_result(result)
        except Exception:
            logger.exception("Failed to send tool result for %s", result.call_id)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _receive_loop(self, connection: LiveConnection, generation: int) -> None:
        try:
            async for message in connection.messages():
                if self._is_stale(generation):
                    return
                await self.handle_message(message, generation=generation)
                if self._is_stale(generation):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Live session receive failed")
            await self.handle_message(SessionErrorMessage(message=str(exc)), generation=generation)
            return

        if not self._is_stale(generation):
            await self.handle_message(SessionClosed(reason="stream ended"), generation=generation)

    async def handle_message(self, message: ServerMessage, *, generation: int | None = None) -> None:
        """Apply one server message to the session."""
        generation = self._generation if generation is None else generation
        if self._is_stale(generation) or self._state != SessionState.OPEN:
            logger.debug("Ignoring %s outside an open session", message.kind)
            return

        if isinstance(message, InputTranscript):
            self._transcript.append_delta(Speaker.USER, message.text)
        elif isinstance(message, OutputTranscript):
            self._transcript.append_delta(Speaker.ASSISTANT, message.text)
        elif isinstance(message, ToolCallBatch):
            for call in message.calls:
                task = asyncio.create_task(self._run_call(call, generation))
                self._call_tasks.add(task)
                task.add_done_callback(self._call_tasks.discard)
        elif isinstance(message, AudioChunk):
            audio = decode_frame(message.data, message.sample_rate, message.channels)
            self._playback.enqueue(audio)
        elif isinstance(message, TurnComplete):
            self._transcript.boundary()
        elif isinstance(message, SessionErrorMessage):
            logger.error("Live session error: %s", message.message)
            await self._fail(
                generation, SessionConnectionError(message.message), "Session Error.",
                f"Error: {message.message}",
            )
        elif isinstance(message, SessionClosed):
            logger.info("Live session closed by server: %s", message.reason)
            await self._teardown(generation)

    async def _run_call(self, call: IntentCall, generation: int) -> None:
        outcome = await dispatch(
            call, store=self._store, strict_project_match=self._strict_project_match,
        )
        if self._is_stale(generation):
            logger.info("Discarding outcome of %s (%s): session ended", call.name, call.call_id)
            return
        try:
            self._transcript.append_system(outcome.message)
        except Exception:
            logger.exception("Transcript update failed for %s", call.call_id)
        await self._send_tool_result(
            generation, ToolResult(call_id=call.call_id, name=call.name, result=outcome.message),
        )

    # ------------------------------------------------------------------
    # Stop / teardown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop listening. Safe in any state and idempotent."""
        await self._teardown(self._generation)

    async def wait_idle(self) -> None:
        """Wait until the session is back to Idle."""
        await self._idle.wait()

    async def _fail(self, generation: int, error: Exception, status: str, line: str) -> None:
        if self._is_stale(generation):
            return
        self._set_state(SessionState.ERROR)
        self.last_error = error
        self._set_status(status)
        self._transcript.append_system(line)
        await self._teardown(generation, status=status)

    async def _teardown(self, generation: int, *, status: str = STATUS_READY) -> None:
        if self._is_stale(generation) or self._state in (SessionState.IDLE, SessionState.CLOSING):
            return

        self._generation += 1
        self._set_state(SessionState.CLOSING)
        logger.info("Tearing down voice session")

        capture, self._capture = self._capture, None
        connection, self._connection = self._connection, None
        sender, self._sender_task = self._sender_task, None
        receiver, self._receiver_task = self._receiver_task, None
        self._outbox = None

        if capture is not None:
            self._step("stop capture", capture.stop)
        for task in (sender, receiver):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        if connection is not None:
            await self._close_connection(connection)
        self._step("stop playback", self._playback.stop_all)
        self._step("suspend audio output", self._output.suspend)

        self._set_state(SessionState.IDLE)
        self._set_status(status)
        self._idle.set()

    async def _close_connection(self, connection: LiveConnection) -> None:
        try:
            await asyncio.wait_for(connection.close(), timeout=CLOSE_TIMEOUT)
        except Exception:
            logger.warning("Error closing live session", exc_info=True)

    def _step(self, name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.warning("Teardown step %r failed", name, exc_info=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            logger.debug("Session state %s -> %s", self._state.value, state.value)
            self._state = state

    def _set_status(self, status: str) -> None:
        self._status = status
        if self._on_status is not None:
            self._on_status(status)
