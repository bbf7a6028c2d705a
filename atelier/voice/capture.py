"""Microphone capture via sounddevice.

CapturePipeline opens an InputStream, re-slices whatever block size the
device delivers into fixed-size frames at the session rate (resampling with
scipy when the device cannot run at that rate) and hands each encoded frame
to a sink on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import numpy as np

from atelier.errors import DeviceUnavailable, PermissionDenied
from atelier.schemas.voice import AudioConfig, WireFrame
from atelier.voice.codec import encode_frame, resample

logger = logging.getLogger(__name__)

FrameSink = Callable[[WireFrame], None]

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")


class FrameChunker:
    """Accumulate sample blocks and emit frames of exactly ``frame_samples``."""

    def __init__(self, frame_samples: int) -> None:
        if frame_samples <= 0:
            raise ValueError("frame_samples must be positive")
        self._frame_samples = frame_samples
        self._pending = np.zeros(0, dtype=np.float32)

    @property
    def pending(self) -> int:
        return int(self._pending.size)

    def push(self, block: np.ndarray) -> list[np.ndarray]:
        samples = np.asarray(block, dtype=np.float32).reshape(-1)
        if self._pending.size:
            samples = np.concatenate([self._pending, samples])

        count = samples.size // self._frame_samples
        cut = count * self._frame_samples
        frames = [
            samples[i : i + self._frame_samples].copy()
            for i in range(0, cut, self._frame_samples)
        ]
        self._pending = samples[cut:].copy()
        return frames

    def reset(self) -> None:
        self._pending = np.zeros(0, dtype=np.float32)


class CapturePipeline:
    """Owns one microphone stream for the lifetime of a session.

    Usage::

        capture = CapturePipeline(config)
        await capture.start()          # acquires the device
        capture.begin(session_sink)    # starts framing
        ...
        capture.stop()                 # idempotent
    """

    def __init__(self, config: AudioConfig) -> None:
        self._config = config
        self._chunker = FrameChunker(config.frame_samples)
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._sink: FrameSink | None = None
        self._device_rate = config.sample_rate_capture
        self._stopped = False
        self.frames_sent = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def device_rate(self) -> int:
        return self._device_rate

    async def start(self) -> CapturePipeline:
        """Acquire the microphone.

        Raises:
            DeviceUnavailable: No input device exists or it cannot be opened.
            PermissionDenied: The OS refused access to the microphone.
        """
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._stream = await asyncio.to_thread(self._open_stream)
        logger.info(
            "Microphone opened (device=%s, rate=%d Hz)",
            self._config.input_device, self._device_rate,
        )
        return self

    def _open_stream(self):
        import sounddevice as sd

        device = self._config.input_device
        try:
            info = sd.query_devices(device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise DeviceUnavailable(f"No microphone available: {exc}") from exc

        try:
            sd.check_input_settings(
                device=device,
                samplerate=self._config.sample_rate_capture,
                channels=self._config.channels,
                dtype="float32",
            )
            self._device_rate = self._config.sample_rate_capture
        except (ValueError, sd.PortAudioError):
            self._device_rate = int(info["default_samplerate"])
            logger.info(
                "Input device does not support %d Hz, resampling from %d Hz",
                self._config.sample_rate_capture, self._device_rate,
            )

        blocksize = int(
            self._config.frame_samples * self._device_rate / self._config.sample_rate_capture
        )
        try:
            return sd.InputStream(
                samplerate=self._device_rate,
                channels=self._config.channels,
                dtype="float32",
                blocksize=blocksize,
                device=device,
                callback=self._audio_callback,
            )
        except sd.PortAudioError as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _PERMISSION_MARKERS):
                raise PermissionDenied(f"Microphone access denied: {exc}") from exc
            raise DeviceUnavailable(f"Could not open microphone: {exc}") from exc

    def begin(self, sink: FrameSink) -> None:
        """Start the framing loop, forwarding each encoded frame to ``sink``."""
        if self._stream is None:
            raise RuntimeError("CapturePipeline.start() must succeed before begin()")
        self._sink = sink
        self._stream.start()

    def _audio_callback(self, indata, frames, time_info, status):
        """sounddevice callback — runs in a separate thread."""
        if status:
            logger.warning("Audio input status: %s", status)
        if self._loop is not None and not self._stopped:
            self._loop.call_soon_threadsafe(self._on_block, indata[:, 0].copy())

    def _on_block(self, block: np.ndarray) -> None:
        # Blocks queued before stop() may still land here.
        if self._stopped or self._sink is None:
            return

        block = resample(block, self._device_rate, self._config.sample_rate_capture)
        for frame in self._chunker.push(block):
            self._sink(encode_frame(frame))
            self.frames_sent += 1

    def stop(self) -> None:
        """Stop framing and release the microphone. Safe to call repeatedly."""
        if self._stopped and self._stream is None:
            return
        self._stopped = True
        self._sink = None
        self._chunker.reset()

        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        except Exception:
            logger.warning("Error stopping microphone stream", exc_info=True)
        try:
            stream.close()
        except Exception:
            logger.warning("Error closing microphone stream", exc_info=True)
        logger.info("Microphone released")
