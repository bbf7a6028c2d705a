"""Schemas for the voice session.

Covers: session state machine, audio configuration, wire frames, the
tagged union of server messages and transcript turns.
"""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from atelier.schemas.intents import IntentCall

CAPTURE_MIME_TYPE = "audio/pcm;rate=16000"


class SessionState(StrEnum):
    """States of the voice session state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    ERROR = "error"


class Speaker(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AudioConfig(BaseModel):
    """Audio device and format configuration."""

    input_device: int | None = Field(
        default=None,
        description="sounddevice input device index (None = system default)",
    )
    output_device: int | None = Field(
        default=None,
        description="sounddevice output device index (None = system default)",
    )
    sample_rate_capture: int = Field(
        default=16000,
        description="Rate of frames sent to the speech session in Hz",
    )
    sample_rate_playback: int = Field(
        default=24000,
        description="Rate of audio returned by the speech session in Hz",
    )
    channels: int = Field(default=1, description="Number of audio channels (mono)")
    frame_samples: int = Field(
        default=4096,
        gt=0,
        description="Samples per outbound frame (4096 at 16 kHz is ~256 ms)",
    )

    @property
    def frame_duration_ms(self) -> float:
        return self.frame_samples * 1000 / self.sample_rate_capture


class WireFrame(BaseModel):
    """One encoded audio frame as carried over the speech session."""

    data: str = Field(description="Base64 of little-endian signed 16-bit PCM")
    mime_type: str = CAPTURE_MIME_TYPE


class Turn(BaseModel):
    """One contiguous span of transcript text from a single speaker."""

    speaker: Speaker
    text: str


class ToolResult(BaseModel):
    """Client reply to one intent call."""

    call_id: str
    name: str
    result: str


# --- Server -> client messages ---


class InputTranscript(BaseModel):
    kind: Literal["input_transcript"] = "input_transcript"
    text: str


class OutputTranscript(BaseModel):
    kind: Literal["output_transcript"] = "output_transcript"
    text: str


class ToolCallBatch(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    calls: list[IntentCall]


class AudioChunk(BaseModel):
    kind: Literal["audio"] = "audio"
    data: str = Field(description="Base64 of little-endian signed 16-bit PCM")
    sample_rate: int = 24000
    channels: int = 1


class TurnComplete(BaseModel):
    kind: Literal["turn_complete"] = "turn_complete"


class SessionErrorMessage(BaseModel):
    kind: Literal["error"] = "error"
    message: str


class SessionClosed(BaseModel):
    kind: Literal["closed"] = "closed"
    reason: str = ""


ServerMessage = Annotated[
    InputTranscript
    | OutputTranscript
    | ToolCallBatch
    | AudioChunk
    | TurnComplete
    | SessionErrorMessage
    | SessionClosed,
    Field(discriminator="kind"),
]
