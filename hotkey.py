"""Push-to-talk hotkey based on pynput."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


def key_name(key: Any) -> str:
    """Name a pynput key the way it is stored in config: ``Key.alt_r`` or ``f``."""
    char = getattr(key, "char", None)
    if char:
        return str(char).lower()
    return str(key)


class PushToTalkHotkey:
    """
    Report one press when the hotkey goes down and one release when it
    comes back up. OS auto-repeat while the key is held is swallowed.
    """

    def __init__(self, hotkey_name: str = "Key.alt_r") -> None:
        self.hotkey_name = hotkey_name if hotkey_name.startswith("Key.") else hotkey_name.lower()
        self._listener: Optional[Any] = None
        self._held = False
        self._lock = threading.Lock()
        self._on_press: Optional[Callable[[], None]] = None
        self._on_release: Optional[Callable[[], None]] = None

    @property
    def is_held(self) -> bool:
        return self._held

    @property
    def running(self) -> bool:
        return self._listener is not None

    def start(self, on_press: Callable[[], None], on_release: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        if self._listener is not None:
            return
        self._on_press = on_press
        self._on_release = on_release
        self._listener = keyboard.Listener(on_press=self._handle_press, on_release=self._handle_release)
        self._listener.start()
        logger.info("Push-to-talk hotkey %s armed", self.hotkey_name)

    def stop(self) -> None:
        listener = self._listener
        self._listener = None
        if listener is not None:
            listener.stop()
        with self._lock:
            was_held = self._held
            self._held = False
        if was_held and self._on_release is not None:
            self._on_release()

    def _handle_press(self, key: Any) -> None:
        if key_name(key) != self.hotkey_name:
            return
        with self._lock:
            if self._held:
                return
            self._held = True
        if self._on_press is not None:
            self._on_press()

    def _handle_release(self, key: Any) -> None:
        if key_name(key) != self.hotkey_name:
            return
        with self._lock:
            if not self._held:
                return
            self._held = False
        if self._on_release is not None:
            self._on_release()
