"""Error taxonomy for the voice assistant.

Session-level errors (capture, audio init, connection) abort the start of a
session and force a teardown. Intent-level errors are local to one intent
call and end up in the tool-result reply; the session keeps running.
"""


class AtelierError(Exception):
    """Base class for all errors raised by atelier."""


# --- Session-level ---


class CaptureError(AtelierError):
    """The microphone could not be opened."""


class PermissionDenied(CaptureError):
    """The user or OS refused microphone access."""


class DeviceUnavailable(CaptureError):
    """No usable input device exists."""


class MicrophoneError(AtelierError):
    """A capture failure surfaced while a session was connecting."""


class AudioInitError(AtelierError):
    """The playback or capture audio context could not be created."""


class SessionConnectionError(AtelierError):
    """The remote speech session failed to open or failed mid-session."""


# --- Intent-level ---


class IntentError(AtelierError):
    """An intent call could not be executed."""


class UnknownIntent(IntentError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Function {name} is not implemented.")
        self.name = name


class InvalidIntentArguments(IntentError):
    """Arguments from the model failed validation."""


class ProjectNotFound(IntentError):
    def __init__(self, query: str) -> None:
        super().__init__(f"No project matching '{query}' was found.")
        self.query = query


class AmbiguousProject(IntentError):
    def __init__(self, query: str, names: list[str]) -> None:
        joined = ", ".join(names)
        super().__init__(f"'{query}' matches several projects: {joined}.")
        self.query = query
        self.names = names


class MutationFailed(IntentError):
    """The database rejected a write or could not be reached."""


class RecordNotFound(AtelierError):
    """A select expected a row and found none."""
