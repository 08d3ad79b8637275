from __future__ import annotations

from unittest.mock import MagicMock

import clipboard
from clipboard import PyperclipClipboard


def test_copy_returns_failure_on_empty_text() -> None:
    result = PyperclipClipboard().copy_text("   ")

    assert result.success is False
    assert result.reason == "transcript is empty"


def test_copy_returns_failure_when_dependency_missing(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(clipboard, "pyperclip", None)

    result = PyperclipClipboard().copy_text("hello")

    assert result.success is False
    assert result.reason == "clipboard dependency missing"


def test_copy_writes_text_to_clipboard(monkeypatch) -> None:  # noqa: ANN001
    fake = MagicMock()
    monkeypatch.setattr(clipboard, "pyperclip", fake)

    result = PyperclipClipboard().copy_text("hello world")

    assert result.success is True
    fake.copy.assert_called_once_with("hello world")


def test_copy_reports_backend_failure(monkeypatch) -> None:  # noqa: ANN001
    fake = MagicMock()
    fake.copy.side_effect = RuntimeError("no display")
    monkeypatch.setattr(clipboard, "pyperclip", fake)

    result = PyperclipClipboard().copy_text("hello")

    assert result.success is False
    assert "CLIPBOARD_FAILED" in result.reason
    assert "no display" in result.reason
