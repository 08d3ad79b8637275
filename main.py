"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import sys
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Coroutine

from clipboard import PyperclipClipboard
from config import JsonConfigStore
from hotkey import PushToTalkHotkey
from interfaces import ConfigStore, PrerecordedTranscriber
from log_config import setup_logging
from models import SessionState
from overlay import TranscriptOverlay
from recognizer import DeepgramLiveChannel, DeepgramPrerecordedClient
from recorder import SoundDeviceAudioCapture
from session_controller import SessionController

try:
    from PySide6.QtCore import QObject, QSize, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import (
        QApplication,
        QFileDialog,
        QInputDialog,
        QMenu,
        QMessageBox,
        QSystemTrayIcon,
    )
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

ICON_COLORS = {
    SessionState.IDLE.value: "#888888",
    SessionState.RECORDING.value: "#FF4444",
    SessionState.PROCESSING.value: "#FFCC00",
    SessionState.ERRORED.value: "#FF8800",
}


def _create_icon(color: str, size: int = 22) -> QIcon:
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


class LoopThread:
    """An asyncio event loop on a daemon thread; the whole core runs on it."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="asyncio-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> None:
        self._thread.start()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._log_failure)
        return future

    def call(self, fn: Any, *args: Any) -> None:
        self.loop.call_soon_threadsafe(fn, *args)

    def stop(self, timeout: float = 2.0) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout)

    @staticmethod
    def _log_failure(future: Future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Background task failed", exc_info=future.exception())


class UIBridge(QObject):
    state_signal = Signal(str, str)  # from_state, to_state
    transcript_signal = Signal(str, str)  # final, interim
    error_signal = Signal(str)
    file_result_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store: ConfigStore = JsonConfigStore()
        self.overlay = TranscriptOverlay()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.transcript_signal.connect(self._on_transcript_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.file_result_signal.connect(self._on_file_result_ui)

        self.runner = LoopThread()
        self.capture = SoundDeviceAudioCapture(chunk_ms=self.config_store.get_session_settings().chunk_ms)
        self.controller = self._build_controller(self.config_store.get_api_key())
        self.hotkey = PushToTalkHotkey(hotkey_name=self.config_store.get_hotkey())

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_COLORS[SessionState.IDLE.value]))
        self.tray.setToolTip("Voice to Text - Ready")
        self._setup_menu()
        self.tray.show()

    def _build_controller(self, api_key: str) -> SessionController:
        options = self.config_store.get_recognition_options()
        return SessionController(
            capture=self.capture,
            channel_factory=lambda key: DeepgramLiveChannel(api_key=key, options=options),
            credential=api_key,
            clipboard=PyperclipClipboard(),
            settings=self.config_store.get_session_settings(),
            on_state_change=self._on_state_change,
            on_transcript=self._on_transcript,
            on_error=self._on_error,
        )

    def _setup_menu(self) -> None:
        menu = QMenu()
        entries = [
            ("Copy Transcript", self._copy_transcript),
            ("Clear Transcript", self._clear_transcript),
            ("Transcribe Audio File...", self._transcribe_file),
            None,
            ("Set API Key", self._set_api_key),
            ("Set Hotkey", self._set_hotkey),
            None,
            ("Quit", self.quit),
        ]
        for entry in entries:
            if entry is None:
                menu.addSeparator()
                continue
            label, handler = entry
            action = QAction(label, menu)
            action.triggered.connect(handler)
            menu.addAction(action)
        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Menu actions (UI thread)
    # ------------------------------------------------------------------

    def _copy_transcript(self) -> None:
        self.runner.call(self.controller.copy_transcript)

    def _clear_transcript(self) -> None:
        self.runner.submit(self.controller.clear_transcript())

    def _transcribe_file(self) -> None:
        path, _ = QFileDialog.getOpenFileName(None, "Transcribe audio file", "", "Audio (*.wav *.mp3 *.m4a *.ogg *.webm *.flac)")
        if not path:
            return
        self.runner.submit(self._transcribe_path(Path(path)))

    def _build_file_transcriber(self) -> PrerecordedTranscriber:
        return DeepgramPrerecordedClient(
            api_key=self.config_store.get_api_key(),
            options=self.config_store.get_recognition_options(),
        )

    async def _transcribe_path(self, path: Path) -> None:
        client = self._build_file_transcriber()
        mimetype = mimetypes.guess_type(path.name)[0] or "audio/wav"
        try:
            audio = await asyncio.to_thread(path.read_bytes)
            text = await client.transcribe(audio, mimetype=mimetype)
        except Exception as exc:
            logger.warning("File transcription failed for %s: %s", path, exc)
            self._on_error("FILE_TRANSCRIPTION", str(exc))
            return
        if text:
            await self.controller.append_final_text(text)
        self.ui.file_result_signal.emit(text)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "Deepgram API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        # the credential is fixed per controller, so swap in a new one
        old = self.controller
        self.controller = self._build_controller(value)
        self.runner.submit(old.aclose())
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(None, "Hotkey", "Use pynput key format, e.g. Key.alt_r")
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    # ------------------------------------------------------------------
    # Controller callbacks (loop thread -> emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_transcript(self, final: str, interim: str) -> None:
        self.ui.transcript_signal.emit(final, interim)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(message or code)

    # ------------------------------------------------------------------
    # UI thread handlers
    # ------------------------------------------------------------------

    def _on_transcript_ui(self, final: str, interim: str) -> None:
        self.overlay.set_transcript(final, interim)

    def _on_error_ui(self, message: str) -> None:
        self.tray.setToolTip(f"Voice to Text - {message}")
        self.overlay.show_error(message)

    def _on_file_result_ui(self, text: str) -> None:
        if not text:
            self.overlay.show_error("No speech found in file")
            return
        self.overlay.show()
        self.overlay.hide_with_delay(6000)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        self.tray.setIcon(_create_icon(ICON_COLORS.get(to_state, ICON_COLORS[SessionState.IDLE.value])))
        self.overlay.set_state(to_state)
        if to_state == SessionState.RECORDING.value:
            self.tray.setToolTip("Voice to Text - Recording...")
        elif to_state == SessionState.PROCESSING.value:
            self.tray.setToolTip("Voice to Text - Processing...")
        elif to_state == SessionState.IDLE.value:
            self.tray.setToolTip("Voice to Text - Ready")
            self.overlay.hide_with_delay(2500)

    # ------------------------------------------------------------------
    # Hotkey handlers (pynput thread)
    # ------------------------------------------------------------------

    def _on_hotkey_press(self) -> None:
        self.runner.submit(self.controller.start_session())

    def _on_hotkey_release(self) -> None:
        self.runner.submit(self.controller.stop_session())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.runner.start()
        if not self.controller.has_credential:
            self.overlay.show_error("Set your Deepgram API key from the tray menu.", hide_after_ms=6000)
        try:
            self.hotkey.start(on_press=self._on_hotkey_press, on_release=self._on_hotkey_release)
        except Exception as exc:
            logger.warning("Hotkey disabled: %s", exc)
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        try:
            self.runner.submit(self.controller.aclose()).result(timeout=10)
        except Exception as exc:
            logger.warning("Controller did not close cleanly: %s", exc)
        self.runner.stop()
        self.app.quit()


def main() -> int:
    setup_logging()
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
