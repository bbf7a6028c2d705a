"""Secrets loading for atelier.

Each scope lives in ``secrets/<scope>.env`` (plain, development) or
``secrets/<scope>.env.enc`` (SOPS-encrypted). Only keys with an atelier
prefix are kept, so one env file can be shared with the dashboard itself.
"""

import subprocess
from collections.abc import Mapping
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

KNOWN_PREFIXES = ("GEMINI_", "SUPABASE_", "VOICE_")


def decrypt_env(encrypted_path: str | Path) -> str:
    """Return the plaintext of a SOPS-encrypted env file.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {path}")

    result = subprocess.run(
        ["sops", "--decrypt", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


def _known(values: Mapping[str, str | None]) -> dict[str, str]:
    return {
        key: value
        for key, value in values.items()
        if value is not None and key.startswith(KNOWN_PREFIXES)
    }


def load_scope(
    directory: str | Path,
    scope: str,
    *,
    use_sops: bool,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Load one secrets scope, with ``environ`` taking precedence.

    With ``use_sops`` the encrypted file is required; otherwise a missing
    plain file yields only the environment overrides.
    """
    directory = Path(directory)
    if use_sops:
        raw = dotenv_values(stream=StringIO(decrypt_env(directory / f"{scope}.env.enc")))
    else:
        path = directory / f"{scope}.env"
        raw = dotenv_values(path) if path.exists() else {}

    values = _known(raw)
    values.update(_known(environ or {}))
    return values
