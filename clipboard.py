"""Clipboard service for exporting the transcript."""

from __future__ import annotations

import logging

from errors import CLIPBOARD_FAILED
from models import CopyResult

try:
    import pyperclip
except Exception:  # pragma: no cover
    pyperclip = None  # type: ignore

logger = logging.getLogger(__name__)


class PyperclipClipboard:
    def copy_text(self, text: str) -> CopyResult:
        if not text.strip():
            return CopyResult(success=False, reason="transcript is empty")
        if pyperclip is None:
            return CopyResult(success=False, reason="clipboard dependency missing")
        try:
            pyperclip.copy(text)
        except Exception as exc:
            logger.warning("Clipboard copy failed: %s", exc)
            return CopyResult(success=False, reason=f"{CLIPBOARD_FAILED}: {exc}")
        return CopyResult(success=True, reason="ok")
