"""Tests for the atelier CLI."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from atelier.cli import TranscriptPrinter, cli
from atelier.schemas.voice import Speaker
from atelier.voice.transcript import Transcript


@pytest.fixture
def runner():
    return CliRunner()


class TestVoiceCommand:
    def test_missing_deps_error(self, runner):
        with patch("atelier.cli._check_voice_deps") as mock_check:
            mock_check.side_effect = SystemExit(1)
            result = runner.invoke(cli, ["voice"])
            assert result.exit_code != 0

    def test_missing_config(self, runner):
        with (
            patch("atelier.cli._check_voice_deps"),
            patch("atelier.cli.GEMINI_API_KEY", ""),
            patch("atelier.cli.SUPABASE_URL", ""),
            patch("atelier.cli.SUPABASE_ANON_KEY", "key"),
            patch("atelier.cli.asyncio.run") as mock_run,
        ):
            result = runner.invoke(cli, ["voice"])

        assert result.exit_code == 1
        assert "GEMINI_API_KEY" in result.output
        assert "SUPABASE_URL" in result.output
        mock_run.assert_not_called()

    def test_options_reach_session(self, runner):
        with (
            patch("atelier.cli._check_voice_deps"),
            patch("atelier.cli._validate_config"),
            patch("atelier.cli.asyncio.run") as mock_run,
            patch("atelier.cli._voice_async") as mock_voice,
        ):
            result = runner.invoke(
                cli, ["voice", "--input-device", "2", "--output-device", "3", "--strict-projects"]
            )

        assert result.exit_code == 0
        mock_run.assert_called_once()
        args = mock_voice.call_args.args
        assert args[:3] == (2, 3, True)

    def test_voice_help(self, runner):
        result = runner.invoke(cli, ["voice", "--help"])
        assert result.exit_code == 0
        assert "speech" in result.output.lower()

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert "voice" in result.output
        assert "intents" in result.output


class TestIntentsCommand:
    def test_prints_declarations(self, runner):
        result = runner.invoke(cli, ["intents"])

        assert result.exit_code == 0
        declarations = json.loads(result.output)
        assert [d["name"] for d in declarations][0] == "create-project"
        assert len(declarations) == 5


class TestTranscriptPrinter:
    def test_streams_deltas_on_one_line(self):
        out = []
        transcript = Transcript(
            on_change=TranscriptPrinter(echo=lambda text, nl=True: out.append(text + ("\n" if nl else "")))
        )

        transcript.append_delta(Speaker.USER, "Add a ")
        transcript.append_delta(Speaker.USER, "task")
        transcript.append_delta(Speaker.ASSISTANT, "Done")
        transcript.append_system("Successfully added to-do: task")

        assert "".join(out) == (
            "You: Add a task\n"
            "Assistant: Done\n"
            "System: Successfully added to-do: task\n"
        )
