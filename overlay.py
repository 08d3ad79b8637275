"""Floating overlay that shows the live transcript."""

from __future__ import annotations

import html

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

PANEL_STYLE = "font-size: 18px; padding: 16px; background: rgba(0,0,0,190); border-radius: 12px;"
STATUS_STYLE = "color: #BBBBBB; font-size: 12px; padding: 4px 16px;"

STATUS_TEXT = {
    "IDLE": "Ready",
    "RECORDING": "\U0001f399 Listening...",
    "PROCESSING": "Finishing...",
    "ERRORED": "Error",
}


def render_transcript(final: str, interim: str) -> str:
    """Rich text with confirmed words in white and the pending hypothesis greyed out."""
    parts = []
    if final:
        parts.append(f"<span style='color: white;'>{html.escape(final)}</span>")
    if interim:
        parts.append(f"<span style='color: #9A9A9A; font-style: italic;'>{html.escape(interim)}</span>")
    return " ".join(parts)


class TranscriptOverlay(QWidget):
    def __init__(self, width: int = 640) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(width)

        self._status = QLabel(STATUS_TEXT["IDLE"])
        self._status.setStyleSheet(STATUS_STYLE)

        self._body = QLabel("")
        self._body.setWordWrap(True)
        self._body.setTextFormat(Qt.RichText)
        self._body.setStyleSheet(f"color: white; {PANEL_STYLE}")

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(2)
        layout.addWidget(self._status)
        layout.addWidget(self._body)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None

    def set_state(self, state: str) -> None:
        self._status.setText(STATUS_TEXT.get(state, state))
        if state == "RECORDING":
            self._cancel_hide_timer()
            self._body.setStyleSheet(f"color: white; {PANEL_STYLE}")
            self._place()
            self.show()

    def set_transcript(self, final: str, interim: str) -> None:
        self._body.setText(render_transcript(final, interim))
        self._place()

    def show_error(self, text: str, hide_after_ms: int = 4000) -> None:
        self._body.setStyleSheet(f"color: #FF6B6B; {PANEL_STYLE}")
        self._body.setText(html.escape(f"⚠ {text}"))
        self._place()
        self.show()
        self.hide_with_delay(hide_after_ms)

    def hide_with_delay(self, delay_ms: int = 1500) -> None:
        self._cancel_hide_timer()
        if QTimer is None:
            return
        self._hide_timer = QTimer()
        self._hide_timer.setSingleShot(True)
        self._hide_timer.timeout.connect(self.hide)
        self._hide_timer.start(delay_ms)

    def _place(self) -> None:
        """Pin the window to the top centre of the primary screen."""
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        self.move(geom.x() + (geom.width() - self.width()) // 2, geom.y() + 40)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
