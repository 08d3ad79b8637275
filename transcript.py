"""Merging of interim and final transcript events into one transcript."""

from __future__ import annotations

from models import TranscriptEvent


def apply_transcript_event(
    event: TranscriptEvent,
    current_final: str,
    current_interim: str,
) -> tuple[str, str]:
    """
    Fold one remote event into the (final, interim) pair.

    Final events are appended to the confirmed transcript with a single
    space and clear the interim fragment. Interim events replace the
    fragment outright, since each hypothesis supersedes the previous one.
    Blank events leave both values untouched.
    """
    text = event.text.strip()
    if not text:
        return current_final, current_interim
    if event.is_final:
        if current_final:
            return f"{current_final} {text}".strip(), ""
        return text, ""
    return current_final, event.text


class TranscriptReconciler:
    def __init__(self) -> None:
        self._final = ""
        self._interim = ""

    @property
    def final(self) -> str:
        return self._final

    @property
    def interim(self) -> str:
        return self._interim

    @property
    def text(self) -> str:
        """Confirmed transcript followed by the in-progress fragment, for display."""
        if self._final and self._interim:
            return f"{self._final} {self._interim}"
        return self._final or self._interim

    def apply(self, event: TranscriptEvent) -> bool:
        """Apply ``event``; return True if either value changed."""
        new_final, new_interim = apply_transcript_event(event, self._final, self._interim)
        changed = (new_final, new_interim) != (self._final, self._interim)
        self._final, self._interim = new_final, new_interim
        return changed

    def clear_interim(self) -> bool:
        changed = bool(self._interim)
        self._interim = ""
        return changed

    def clear(self) -> None:
        self._final = ""
        self._interim = ""
