"""Gemini Live transport for the voice session.

Translates between the Live API SDK objects and atelier's own message
types: outbound WireFrames and ToolResults, inbound ServerMessages. The
session state machine only ever sees the latter.
"""

from __future__ import annotations

import base64
import logging
import re
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from atelier.errors import SessionConnectionError
from atelier.schemas.intents import IntentCall
from atelier.schemas.voice import (
    AudioChunk,
    InputTranscript,
    OutputTranscript,
    ServerMessage,
    SessionClosed,
    SessionErrorMessage,
    ToolCallBatch,
    ToolResult,
    TurnComplete,
    WireFrame,
)

logger = logging.getLogger(__name__)

_RATE_RE = re.compile(r"rate=(\d+)")
DEFAULT_OUTPUT_RATE = 24000


def _rate_from_mime(mime_type: str | None) -> int:
    match = _RATE_RE.search(mime_type or "")
    return int(match.group(1)) if match else DEFAULT_OUTPUT_RATE


def translate(response: Any) -> list[ServerMessage]:
    """Convert one LiveServerMessage into zero or more ServerMessages.

    Order within a response: transcripts, tool calls, audio, turn complete.
    """
    messages: list[ServerMessage] = []
    content = getattr(response, "server_content", None)

    if content is not None:
        input_tx = getattr(content, "input_transcription", None)
        if input_tx is not None and getattr(input_tx, "text", None):
            messages.append(InputTranscript(text=input_tx.text))
        output_tx = getattr(content, "output_transcription", None)
        if output_tx is not None and getattr(output_tx, "text", None):
            messages.append(OutputTranscript(text=output_tx.text))

    tool_call = getattr(response, "tool_call", None)
    if tool_call is not None and tool_call.function_calls:
        messages.append(
            ToolCallBatch(
                calls=[
                    IntentCall(call_id=fc.id or "", name=fc.name or "", args=dict(fc.args or {}))
                    for fc in tool_call.function_calls
                ]
            )
        )

    if content is not None:
        model_turn = getattr(content, "model_turn", None)
        for part in getattr(model_turn, "parts", None) or []:
            blob = getattr(part, "inline_data", None)
            if blob is None or not blob.data:
                continue
            if not (blob.mime_type or "").startswith("audio/"):
                continue
            messages.append(
                AudioChunk(
                    data=base64.b64encode(blob.data).decode("ascii"),
                    sample_rate=_rate_from_mime(blob.mime_type),
                )
            )
        if getattr(content, "turn_complete", False):
            messages.append(TurnComplete())

    return messages


class LiveConnection:
    """An open Live API session."""

    def __init__(self, session: Any, context: Any) -> None:
        self._session = session
        self._context = context
        self._closed = False

    async def send_audio(self, frame: WireFrame) -> None:
        await self._session.send_realtime_input(
            audio=types.Blob(data=base64.b64decode(frame.data), mime_type=frame.mime_type)
        )

    async def send_tool_result(self, result: ToolResult) -> None:
        await self._session.send_tool_response(
            function_responses=[
                types.FunctionResponse(
                    id=result.call_id,
                    name=result.name,
                    response={"result": result.result},
                )
            ]
        )

    async def messages(self) -> AsyncIterator[ServerMessage]:
        """Yield server messages until the connection ends.

        The SDK's ``receive()`` stops at every turn boundary, so it is
        re-entered until the socket closes. The stream always ends with a
        SessionClosed or SessionErrorMessage.
        """
        try:
            while not self._closed:
                async for response in self._session.receive():
                    for message in translate(response):
                        yield message
        except ConnectionClosedOK as exc:
            yield SessionClosed(reason=str(exc))
            return
        except ConnectionClosed as exc:
            yield SessionErrorMessage(message=f"Connection lost: {exc}")
            return
        yield SessionClosed(reason="closed by client")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._context.__aexit__(None, None, None)
        logger.info("Live session closed")


class GeminiLiveTransport:
    """Opens Live API sessions with the assistant's configuration.

    Usage::

        transport = GeminiLiveTransport(api_key, model)
        connection = await transport.connect(system_prompt=..., declarations=...)
    """

    def __init__(self, api_key: str, model: str) -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model

    def build_config(
        self, *, system_prompt: str, declarations: list[dict[str, Any]]
    ) -> types.LiveConnectConfig:
        # Live API takes tools as raw dicts rather than SDK types.
        return types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=types.Content(parts=[types.Part(text=system_prompt)]),
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
            tools=[{"function_declarations": declarations}],
        )

    async def connect(
        self, *, system_prompt: str, declarations: list[dict[str, Any]]
    ) -> LiveConnection:
        """Open a session; returns once the server has confirmed setup.

        Raises:
            SessionConnectionError: The handshake failed.
        """
        config = self.build_config(system_prompt=system_prompt, declarations=declarations)
        context = self._client.aio.live.connect(model=self._model, config=config)
        try:
            session = await context.__aenter__()
        except Exception as exc:
            raise SessionConnectionError(str(exc) or type(exc).__name__) from exc
        logger.info("Live session open (model=%s, %d tools)", self._model, len(declarations))
        return LiveConnection(session, context)
