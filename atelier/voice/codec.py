"""PCM <-> wire conversion for the speech session.

Outbound frames are float32 samples in [-1, 1] packed as little-endian
signed 16-bit PCM and base64 encoded. Inbound chunks go the other way and
come back as a DecodedAudio buffer ready for playback.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from math import gcd

import numpy as np

from atelier.schemas.voice import CAPTURE_MIME_TYPE, WireFrame

logger = logging.getLogger(__name__)

_INT16_SCALE = 32768.0
_PCM_DTYPE = np.dtype("<i2")


@dataclass(frozen=True)
class DecodedAudio:
    """Playable audio: float32 samples shaped (frames, channels)."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1]) if self.samples.ndim > 1 else 1

    @property
    def duration(self) -> float:
        """Length in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate


def encode_frame(samples: np.ndarray, mime_type: str = CAPTURE_MIME_TYPE) -> WireFrame:
    """Encode float samples as a base64 PCM16 wire frame.

    Values outside [-1, 1] are clipped rather than wrapped.
    """
    data = np.asarray(samples, dtype=np.float32).reshape(-1)
    scaled = np.clip(np.rint(data * _INT16_SCALE), -_INT16_SCALE, _INT16_SCALE - 1)
    pcm = scaled.astype(_PCM_DTYPE).tobytes()
    return WireFrame(data=base64.b64encode(pcm).decode("ascii"), mime_type=mime_type)


def decode_frame(wire: str | bytes, sample_rate: int, channels: int = 1) -> DecodedAudio:
    """Decode a base64 PCM16 payload into a de-interleaved float buffer.

    Malformed or empty input returns an empty buffer. A trailing partial
    sample frame is dropped.
    """
    empty = DecodedAudio(np.zeros((0, max(channels, 1)), dtype=np.float32), sample_rate)
    if not wire or channels < 1:
        return empty

    try:
        raw = base64.b64decode(wire, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Dropping malformed audio payload (%d chars)", len(wire))
        return empty

    frame_bytes = _PCM_DTYPE.itemsize * channels
    usable = len(raw) - len(raw) % frame_bytes
    if usable == 0:
        return empty

    pcm = np.frombuffer(raw[:usable], dtype=_PCM_DTYPE)
    samples = (pcm.astype(np.float32) / _INT16_SCALE).reshape(-1, channels)
    return DecodedAudio(samples, sample_rate)


def resample(samples: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """Polyphase resample along the first axis."""
    if from_rate == to_rate or samples.size == 0:
        return samples
    from scipy.signal import resample_poly

    factor = gcd(from_rate, to_rate)
    return resample_poly(samples, to_rate // factor, from_rate // factor, axis=0).astype(
        np.float32
    )
