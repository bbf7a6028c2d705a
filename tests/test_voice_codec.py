"""Tests for atelier.voice.codec — PCM16 wire encoding and decoding."""

import base64

import numpy as np
import pytest

from atelier.schemas.voice import CAPTURE_MIME_TYPE
from atelier.voice.codec import DecodedAudio, decode_frame, encode_frame, resample


def _pcm(*values: int) -> str:
    return base64.b64encode(np.array(values, dtype="<i2").tobytes()).decode("ascii")


class TestEncodeFrame:
    def test_mime_type(self):
        frame = encode_frame(np.zeros(4, dtype=np.float32))
        assert frame.mime_type == CAPTURE_MIME_TYPE == "audio/pcm;rate=16000"

    def test_two_bytes_per_sample(self):
        frame = encode_frame(np.zeros(4096, dtype=np.float32))
        assert len(base64.b64decode(frame.data)) == 8192

    def test_known_values(self):
        frame = encode_frame(np.array([0.0, 0.5, -0.5, -1.0], dtype=np.float32))
        pcm = np.frombuffer(base64.b64decode(frame.data), dtype="<i2")
        assert pcm.tolist() == [0, 16384, -16384, -32768]

    def test_little_endian(self):
        frame = encode_frame(np.array([1 / 32768], dtype=np.float32))
        assert base64.b64decode(frame.data) == b"\x01\x00"

    def test_clips_out_of_range(self):
        frame = encode_frame(np.array([1.0, 2.0, -3.0], dtype=np.float32))
        pcm = np.frombuffer(base64.b64decode(frame.data), dtype="<i2")
        assert pcm.tolist() == [32767, 32767, -32768]


class TestDecodeFrame:
    def test_round_trip_within_one_step(self):
        rng = np.random.default_rng(7)
        samples = rng.uniform(-1.0, 0.999, 1000).astype(np.float32)
        audio = decode_frame(encode_frame(samples).data, 16000)
        assert audio.samples.shape == (1000, 1)
        assert np.max(np.abs(audio.samples[:, 0] - samples)) <= 1 / 32768

    def test_scaling(self):
        audio = decode_frame(_pcm(16384, -32768), 24000)
        assert audio.samples[:, 0].tolist() == [0.5, -1.0]
        assert audio.samples.dtype == np.float32

    def test_duration(self):
        audio = decode_frame(_pcm(*([0] * 12000)), 24000)
        assert audio.frames == 12000
        assert audio.duration == pytest.approx(0.5)

    def test_stereo_deinterleaved(self):
        audio = decode_frame(_pcm(100, -100, 200, -200), 24000, channels=2)
        assert audio.channels == 2
        assert audio.frames == 2
        assert (audio.samples[:, 0] > 0).all()
        assert (audio.samples[:, 1] < 0).all()

    def test_empty_input(self):
        audio = decode_frame("", 24000)
        assert audio.frames == 0
        assert audio.duration == 0.0

    def test_malformed_base64(self):
        audio = decode_frame("not base64!!", 24000)
        assert audio.frames == 0

    def test_trailing_odd_byte_dropped(self):
        wire = base64.b64encode(b"\x00\x40\x01").decode("ascii")
        audio = decode_frame(wire, 24000)
        assert audio.frames == 1
        assert audio.samples[0, 0] == pytest.approx(0.5)

    def test_partial_stereo_frame_dropped(self):
        audio = decode_frame(_pcm(1, 2, 3), 24000, channels=2)
        assert audio.frames == 1

    def test_accepts_bytes(self):
        audio = decode_frame(_pcm(0, 0).encode("ascii"), 24000)
        assert audio.frames == 2


class TestDecodedAudio:
    def test_zero_rate_has_zero_duration(self):
        audio = DecodedAudio(np.zeros((10, 1), dtype=np.float32), 0)
        assert audio.duration == 0.0


class TestResample:
    def test_same_rate_is_identity(self):
        samples = np.ones(100, dtype=np.float32)
        assert resample(samples, 16000, 16000) is samples

    def test_length_scales_with_rate(self):
        samples = np.zeros(4800, dtype=np.float32)
        out = resample(samples, 48000, 16000)
        assert out.shape == (1600,)
        assert out.dtype == np.float32

    def test_two_dimensional(self):
        samples = np.zeros((1600, 2), dtype=np.float32)
        out = resample(samples, 16000, 24000)
        assert out.shape == (2400, 2)

    def test_empty(self):
        samples = np.zeros(0, dtype=np.float32)
        assert resample(samples, 48000, 16000).size == 0
