"""Gapless playback of response audio.

AudioOutput is a callback-driven sounddevice OutputStream that mixes
sources scheduled at absolute positions on its own sample clock.
PlaybackPipeline sits on top and keeps the scheduling cursor so that
independently arriving chunks play back-to-back.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable

import numpy as np

from atelier.errors import AudioInitError
from atelier.schemas.voice import AudioConfig
from atelier.voice.codec import DecodedAudio, resample

logger = logging.getLogger(__name__)


class ScheduledSource:
    """One buffer scheduled on an AudioOutput."""

    def __init__(self, samples: np.ndarray, start_frame: int, sample_rate: int) -> None:
        self.samples = samples
        self.start_frame = start_frame
        self.sample_rate = sample_rate
        self.stopped = False
        self.ended = False

    @property
    def start_time(self) -> float:
        return self.start_frame / self.sample_rate

    @property
    def duration(self) -> float:
        return self.samples.shape[0] / self.sample_rate

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.samples.shape[0]

    def stop(self) -> None:
        self.stopped = True


EndedCallback = Callable[[ScheduledSource], None]


def _fit_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    if samples.ndim == 1:
        samples = samples.reshape(-1, 1)
    if samples.shape[1] == channels:
        return samples
    if samples.shape[1] == 1:
        return np.repeat(samples, channels, axis=1)
    return samples.mean(axis=1, keepdims=True).repeat(channels, axis=1)


class AudioOutput:
    """Output stream with a sample-accurate clock.

    ``current_time`` counts seconds of audio rendered since the stream was
    created; it stands still while the output is suspended. Sources are
    mixed from the PortAudio thread, so the source list is guarded by a lock
    and end notifications are marshalled back onto the event loop.
    """

    def __init__(self, config: AudioConfig) -> None:
        self._config = config
        self._sample_rate = config.sample_rate_playback
        self._channels = config.channels
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()
        self._sources: list[tuple[ScheduledSource, EndedCallback]] = []
        self._rendered = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._rendered / self._sample_rate

    @property
    def is_running(self) -> bool:
        return self._stream is not None and bool(self._stream.active)

    async def resume(self) -> None:
        """Create the stream on first use and (re)start it.

        Raises:
            AudioInitError: The platform refused to open or start the output.
        """
        self._loop = asyncio.get_running_loop()
        try:
            if self._stream is None:
                self._stream = await asyncio.to_thread(self._open_stream)
                logger.info("Audio output opened (%d Hz)", self._sample_rate)
            if not self._stream.active:
                await asyncio.to_thread(self._stream.start)
        except AudioInitError:
            raise
        except Exception as exc:
            raise AudioInitError(f"Could not initialize audio output: {exc}") from exc

    def _open_stream(self):
        import sounddevice as sd

        try:
            sd.check_output_settings(
                device=self._config.output_device,
                samplerate=self._sample_rate,
                channels=self._channels,
                dtype="float32",
            )
        except (ValueError, sd.PortAudioError):
            info = sd.query_devices(self._config.output_device, kind="output")
            self._sample_rate = int(info["default_samplerate"])
            logger.info("Output device does not support requested rate, using %d Hz",
                        self._sample_rate)

        return sd.OutputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="float32",
            device=self._config.output_device,
            callback=self._audio_callback,
        )

    def play_at(
        self,
        audio: DecodedAudio,
        start_time: float,
        on_ended: EndedCallback,
    ) -> ScheduledSource:
        """Schedule ``audio`` to start at ``start_time`` on the output clock."""
        samples = resample(audio.samples, audio.sample_rate, self._sample_rate)
        samples = _fit_channels(samples, self._channels).astype(np.float32, copy=False)
        source = ScheduledSource(samples, round(start_time * self._sample_rate), self._sample_rate)
        with self._lock:
            self._sources.append((source, on_ended))
        return source

    def _audio_callback(self, outdata, frames, time_info, status):
        """sounddevice callback — runs in a separate thread."""
        if status:
            logger.debug("Audio output status: %s", status)
        outdata.fill(0)
        finished: list[tuple[ScheduledSource, EndedCallback]] = []

        with self._lock:
            block_start = self._rendered
            block_end = block_start + frames
            for entry in self._sources:
                source = entry[0]
                if source.stopped or source.end_frame <= block_start:
                    finished.append(entry)
                    continue
                if source.start_frame >= block_end:
                    continue
                lo = max(source.start_frame, block_start)
                hi = min(source.end_frame, block_end)
                outdata[lo - block_start : hi - block_start] += source.samples[
                    lo - source.start_frame : hi - source.start_frame
                ]
                if source.end_frame <= block_end:
                    finished.append(entry)
            for entry in finished:
                self._sources.remove(entry)
            self._rendered = block_end

        np.clip(outdata, -1.0, 1.0, out=outdata)
        for source, on_ended in finished:
            if source.stopped:
                continue
            source.ended = True
            if self._loop is not None:
                self._loop.call_soon_threadsafe(on_ended, source)

    def clear(self) -> None:
        """Drop every scheduled source without notifying."""
        with self._lock:
            for source, _ in self._sources:
                source.stop()
            self._sources.clear()

    def suspend(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def close(self) -> None:
        self.clear()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            logger.info("Audio output closed")


class PlaybackPipeline:
    """Schedules decoded response chunks for back-to-back playback."""

    def __init__(self, output: AudioOutput) -> None:
        self._output = output
        self._cursor = 0.0
        self._active: set[ScheduledSource] = set()

    @property
    def cursor(self) -> float:
        """Scheduled end time of the last enqueued buffer."""
        return self._cursor

    @property
    def active(self) -> set[ScheduledSource]:
        return set(self._active)

    def enqueue(self, audio: DecodedAudio) -> ScheduledSource | None:
        """Schedule ``audio`` at ``max(cursor, now)`` and advance the cursor."""
        if audio.frames == 0:
            return None

        start = max(self._cursor, self._output.current_time)
        source = self._output.play_at(audio, start, self._on_ended)
        self._cursor = start + audio.duration
        self._active.add(source)
        logger.debug(
            "Scheduled %.3fs of audio at %.3fs (%d active)",
            audio.duration, start, len(self._active),
        )
        return source

    def _on_ended(self, source: ScheduledSource) -> None:
        self._active.discard(source)

    def stop_all(self) -> None:
        """Stop every in-flight buffer and reset the cursor."""
        for source in self._active:
            try:
                source.stop()
            except Exception:
                logger.warning("Error stopping audio source", exc_info=True)
        self._active.clear()
        self._output.clear()
        self._cursor = 0.0
