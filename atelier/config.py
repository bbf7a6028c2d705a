"""Single source of truth for all configuration and secrets.

All modules import from here — never from os.environ directly.

Set ATELIER_USE_SOPS=true to decrypt secrets/internal.env.enc with SOPS;
otherwise a plain secrets/internal.env (chmod 600) is read if present.
"""

import os
from pathlib import Path

from atelier.secrets import load_scope

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("ATELIER_USE_SOPS", "false").lower() == "true"


def _optional_int(value: str | None) -> int | None:
    if value is None or value.strip() == "":
        return None
    return int(value)


_internal = load_scope(PROJECT_ROOT / "secrets", "internal", use_sops=USE_SOPS, environ=os.environ)

# --- Gemini Live ---
GEMINI_API_KEY: str = _internal.get("GEMINI_API_KEY") or ""
GEMINI_LIVE_MODEL: str = (
    _internal.get("GEMINI_LIVE_MODEL") or "gemini-2.5-flash-native-audio-preview-09-2025"
)

# --- Supabase (PostgREST) ---
SUPABASE_URL: str = _internal.get("SUPABASE_URL") or ""
SUPABASE_ANON_KEY: str = _internal.get("SUPABASE_ANON_KEY") or ""

# --- Voice ---
VOICE_INPUT_DEVICE: int | None = _optional_int(_internal.get("VOICE_INPUT_DEVICE"))
VOICE_OUTPUT_DEVICE: int | None = _optional_int(_internal.get("VOICE_OUTPUT_DEVICE"))
VOICE_STRICT_PROJECT_MATCH: bool = (
    (_internal.get("VOICE_STRICT_PROJECT_MATCH") or "false").lower() == "true"
)
