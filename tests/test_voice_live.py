"""Tests for atelier.voice.live — Live API message translation and connection."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from atelier.errors import SessionConnectionError
from atelier.schemas.voice import (
    AudioChunk,
    InputTranscript,
    OutputTranscript,
    SessionClosed,
    SessionErrorMessage,
    ToolCallBatch,
    ToolResult,
    TurnComplete,
    WireFrame,
)
from atelier.voice.live import GeminiLiveTransport, LiveConnection, translate


def _response(server_content=None, tool_call=None):
    return SimpleNamespace(server_content=server_content, tool_call=tool_call)


def _content(**kwargs):
    defaults = dict(
        input_transcription=None,
        output_transcription=None,
        model_turn=None,
        turn_complete=False,
    )
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class TestTranslate:
    def test_input_transcription(self):
        messages = translate(_response(_content(input_transcription=SimpleNamespace(text="Add"))))
        assert messages == [InputTranscript(text="Add")]

    def test_output_transcription(self):
        messages = translate(_response(_content(output_transcription=SimpleNamespace(text="Ok"))))
        assert messages == [OutputTranscript(text="Ok")]

    def test_empty_transcription_skipped(self):
        assert translate(_response(_content(input_transcription=SimpleNamespace(text="")))) == []

    def test_tool_call(self):
        call = SimpleNamespace(
            id="c1", name="create-todo", args={"text": "Call Ana"}
        )
        messages = translate(_response(tool_call=SimpleNamespace(function_calls=[call])))

        assert len(messages) == 1
        batch = messages[0]
        assert isinstance(batch, ToolCallBatch)
        assert batch.calls[0].call_id == "c1"
        assert batch.calls[0].name == "create-todo"
        assert batch.calls[0].args == {"text": "Call Ana"}

    def test_audio_part(self):
        blob = SimpleNamespace(data=b"\x00\x40", mime_type="audio/pcm;rate=24000")
        turn = SimpleNamespace(parts=[SimpleNamespace(inline_data=blob)])
        messages = translate(_response(_content(model_turn=turn)))

        assert messages == [
            AudioChunk(data=base64.b64encode(b"\x00\x40").decode("ascii"), sample_rate=24000)
        ]

    def test_audio_rate_defaults_to_24k(self):
        blob = SimpleNamespace(data=b"\x00\x00", mime_type="audio/pcm")
        turn = SimpleNamespace(parts=[SimpleNamespace(inline_data=blob)])
        assert translate(_response(_content(model_turn=turn)))[0].sample_rate == 24000

    def test_non_audio_parts_skipped(self):
        parts = [
            SimpleNamespace(inline_data=None),
            SimpleNamespace(inline_data=SimpleNamespace(data=b"x", mime_type="image/png")),
        ]
        assert translate(_response(_content(model_turn=SimpleNamespace(parts=parts)))) == []

    def test_turn_complete_comes_last(self):
        blob = SimpleNamespace(data=b"\x00\x00", mime_type="audio/pcm;rate=24000")
        content = _content(
            output_transcription=SimpleNamespace(text="Done."),
            model_turn=SimpleNamespace(parts=[SimpleNamespace(inline_data=blob)]),
            turn_complete=True,
        )
        kinds = [m.kind for m in translate(_response(content))]
        assert kinds == ["output_transcript", "audio", "turn_complete"]

    def test_empty_response(self):
        assert translate(_response()) == []


class FakeLiveSession:
    """Mimics the SDK session: each receive() ends at a turn boundary."""

    def __init__(self, turns, end: Exception):
        self._turns = list(turns)
        self._end = end

    async def _receive(self):
        if not self._turns:
            raise self._end
        for response in self._turns.pop(0):
            yield response

    def receive(self):
        return self._receive()


class TestLiveConnection:
    async def test_send_audio(self):
        session = AsyncMock()
        connection = LiveConnection(session, MagicMock())
        frame = WireFrame(data=base64.b64encode(b"\x01\x00").decode("ascii"))

        await connection.send_audio(frame)

        blob = session.send_realtime_input.await_args.kwargs["audio"]
        assert blob.data == b"\x01\x00"
        assert blob.mime_type == "audio/pcm;rate=16000"

    async def test_send_tool_result(self):
        session = AsyncMock()
        connection = LiveConnection(session, MagicMock())

        await connection.send_tool_result(
            ToolResult(call_id="c1", name="create-todo", result="Successfully added to-do: x")
        )

        response = session.send_tool_response.await_args.kwargs["function_responses"][0]
        assert response.id == "c1"
        assert response.name == "create-todo"
        assert response.response == {"result": "Successfully added to-do: x"}

    async def test_messages_span_turns_until_clean_close(self):
        first = _response(_content(input_transcription=SimpleNamespace(text="Hi"), turn_complete=True))
        second = _response(_content(output_transcription=SimpleNamespace(text="Hello")))
        session = FakeLiveSession([[first], [second]], ConnectionClosedOK(None, None))
        connection = LiveConnection(session, MagicMock())

        messages = [m async for m in connection.messages()]

        assert [m.kind for m in messages] == [
            "input_transcript",
            "turn_complete",
            "output_transcript",
            "closed",
        ]
        assert isinstance(messages[-1], SessionClosed)

    async def test_messages_report_abnormal_close(self):
        session = FakeLiveSession([], ConnectionClosedError(None, None))
        connection = LiveConnection(session, MagicMock())

        messages = [m async for m in connection.messages()]

        assert len(messages) == 1
        assert isinstance(messages[0], SessionErrorMessage)
        assert messages[0].message.startswith("Connection lost")

    async def test_close_is_idempotent(self):
        context = MagicMock()
        context.__aexit__ = AsyncMock()
        connection = LiveConnection(AsyncMock(), context)

        await connection.close()
        await connection.close()

        context.__aexit__.assert_awaited_once()


class TestGeminiLiveTransport:
    @pytest.fixture
    def transport(self):
        with patch("atelier.voice.live.genai.Client"):
            yield GeminiLiveTransport("test-key", "gemini-test")

    def test_config_carries_prompt(self, transport):
        config = transport.build_config(system_prompt="Be brief.", declarations=[])
        assert config.system_instruction.parts[0].text == "Be brief."
        assert config.input_audio_transcription is not None
        assert config.output_audio_transcription is not None

    async def test_connect(self, transport):
        session = AsyncMock()
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=session)
        transport._client.aio.live.connect.return_value = context

        connection = await transport.connect(system_prompt="Be brief.", declarations=[])

        assert isinstance(connection, LiveConnection)
        kwargs = transport._client.aio.live.connect.call_args.kwargs
        assert kwargs["model"] == "gemini-test"

    async def test_connect_failure(self, transport):
        context = MagicMock()
        context.__aenter__ = AsyncMock(side_effect=OSError("handshake refused"))
        transport._client.aio.live.connect.return_value = context

        with pytest.raises(SessionConnectionError, match="handshake refused"):
            await transport.connect(system_prompt="Be brief.", declarations=[])
