"""Shared fixtures for atelier tests."""

import os

import pytest

# Load scipy.signal (used lazily by atelier.voice.codec.resample) up front so that
# tests patching sys.modules with patch.dict do not unload its numpy extension
# modules, which cannot be re-imported within one process.
import scipy.signal  # noqa: F401


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("ATELIER_USE_SOPS", "false")


@pytest.fixture()
def project_root():
    """Return the project root path."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
