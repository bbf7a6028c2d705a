"""Tests for atelier.config and atelier.secrets."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from atelier.config import _optional_int
from atelier.secrets import decrypt_env, load_scope


class TestOptionalInt:
    def test_blank_is_none(self):
        assert _optional_int(None) is None
        assert _optional_int("  ") is None

    def test_parses_index(self):
        assert _optional_int("3") == 3


class TestLoadScope:
    def test_missing_file_is_empty(self, tmp_path):
        assert load_scope(tmp_path, "internal", use_sops=False) == {}

    def test_reads_known_keys_only(self, tmp_path):
        (tmp_path / "internal.env").write_text(
            "GEMINI_API_KEY=abc\nVOICE_INPUT_DEVICE=2\nVITE_SUPABASE_URL=ignored\n"
        )
        assert load_scope(tmp_path, "internal", use_sops=False) == {
            "GEMINI_API_KEY": "abc",
            "VOICE_INPUT_DEVICE": "2",
        }

    def test_environment_wins(self, tmp_path):
        (tmp_path / "internal.env").write_text("SUPABASE_URL=https://file.supabase.co\n")
        environ = {"SUPABASE_URL": "https://env.supabase.co", "HOME": "/root"}

        values = load_scope(tmp_path, "internal", use_sops=False, environ=environ)

        assert values == {"SUPABASE_URL": "https://env.supabase.co"}

    def test_sops_scope(self, tmp_path):
        (tmp_path / "internal.env.enc").write_text("encrypted")
        completed = MagicMock(stdout="SUPABASE_URL=https://demo.supabase.co\nOTHER=x\n")

        with patch("atelier.secrets.subprocess.run", return_value=completed) as mock_run:
            values = load_scope(tmp_path, "internal", use_sops=True)

        assert values == {"SUPABASE_URL": "https://demo.supabase.co"}
        assert mock_run.call_args.args[0] == [
            "sops", "--decrypt", str(tmp_path / "internal.env.enc"),
        ]

    def test_sops_requires_encrypted_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_scope(tmp_path, "internal", use_sops=True)


class TestDecryptEnv:
    def test_sops_failure_propagates(self, tmp_path):
        path = tmp_path / "internal.env.enc"
        path.write_text("encrypted")

        with (
            patch(
                "atelier.secrets.subprocess.run",
                side_effect=subprocess.CalledProcessError(1, "sops"),
            ),
            pytest.raises(subprocess.CalledProcessError),
        ):
            decrypt_env(path)
