"""Running transcript of a voice session."""

from __future__ import annotations

from collections.abc import Callable

from atelier.schemas.voice import Speaker, Turn


class Transcript:
    """Ordered log of speaker turns with streaming merge.

    Consecutive deltas from the same speaker are concatenated onto that
    speaker's open turn. A speaker change, a system line or a call to
    :meth:`boundary` closes the open turn so the next delta starts a new one.

    ``on_change`` is invoked with the affected turn after every mutation,
    which lets a front end redraw only the last line.
    """

    def __init__(self, *, on_change: Callable[[Turn], None] | None = None) -> None:
        self._turns: list[Turn] = []
        self._open: Speaker | None = None
        self._on_change = on_change

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append_delta(self, speaker: Speaker, text: str) -> Turn:
        """Merge ``text`` into the open turn of ``speaker`` or start a new turn."""
        if speaker == Speaker.SYSTEM:
            return self.append_system(text)

        last = self._turns[-1] if self._turns else None
        if last is not None and self._open == speaker and last.speaker == speaker:
            last.text += text
            turn = last
        else:
            turn = Turn(speaker=speaker, text=text)
            self._turns.append(turn)
            self._open = speaker

        self._notify(turn)
        return turn

    def append_system(self, text: str) -> Turn:
        """Push a system turn. System turns never merge."""
        turn = Turn(speaker=Speaker.SYSTEM, text=text)
        self._turns.append(turn)
        self._open = None
        self._notify(turn)
        return turn

    def boundary(self) -> None:
        """Close the open user/assistant turn."""
        self._open = None

    def clear(self) -> None:
        self._turns.clear()
        self._open = None

    def render(self) -> str:
        """Return the transcript as ``Speaker: text`` lines."""
        return "\n".join(f"{t.speaker.value.title()}: {t.text}" for t in self._turns)

    def _notify(self, turn: Turn) -> None:
        if self._on_change is not None:
            self._on_change(turn)
