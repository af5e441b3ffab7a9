"""Overlay window with live voice chat status."""

from __future__ import annotations

from typing import Optional, Sequence

from voice_chat import format_elapsed

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QHBoxLayout, QLabel, QProgressBar, QVBoxLayout, QWidget
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QHBoxLayout = object  # type: ignore
    QLabel = object  # type: ignore
    QProgressBar = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

_LABEL_STYLE = "color: {color}; font-size: {size}px; padding: 4px 16px; background: transparent;"
_PANEL_STYLE = "background: rgba(0,0,0,190); border-radius: 12px;"
_BAR_STYLE = (
    "QProgressBar { background: rgba(255,255,255,30); border: none; border-radius: 2px; }"
    "QProgressBar::chunk { background: #4FC3F7; border-radius: 2px; }"
)


class OverlayWindow(QWidget):
    def __init__(self, bar_count: int = 8) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setFixedWidth(600)

        panel = QWidget(self)
        panel.setStyleSheet(_PANEL_STYLE)

        self._status = QLabel("")
        self._elapsed = QLabel("")
        self._transcript = QLabel("")
        self._transcript.setWordWrap(True)
        self._status.setStyleSheet(_LABEL_STYLE.format(color="#B0BEC5", size=14))
        self._elapsed.setStyleSheet(_LABEL_STYLE.format(color="#B0BEC5", size=14))
        self._reset_style()

        self._bars: list[QProgressBar] = []
        bars_row = QHBoxLayout()
        bars_row.setContentsMargins(16, 0, 16, 0)
        for _ in range(bar_count):
            bar = QProgressBar()
            bar.setOrientation(Qt.Vertical)
            bar.setRange(0, 100)
            bar.setTextVisible(False)
            bar.setFixedSize(8, 32)
            bar.setStyleSheet(_BAR_STYLE)
            self._bars.append(bar)
            bars_row.addWidget(bar)
        bars_row.addStretch(1)
        bars_row.addWidget(self._elapsed)

        inner = QVBoxLayout(panel)
        inner.setContentsMargins(0, 8, 0, 8)
        inner.addWidget(self._status)
        inner.addLayout(bars_row)
        inner.addWidget(self._transcript)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(panel)
        self.setLayout(layout)

        self._hide_timer: Optional[QTimer] = None

    def _center_top(self) -> None:
        """Position the window at the top center of the primary screen."""
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        x = geom.x() + (geom.width() - self.width()) // 2
        y = geom.y() + 40
        self.move(x, y)

    def _reveal(self) -> None:
        self._cancel_hide_timer()
        self._center_top()
        self.show()

    def set_feedback(self, text: Optional[str]) -> None:
        self._status.setText(text or "")
        if text:
            self._reveal()

    def set_text(self, text: str) -> None:
        """Show the partial or final transcript."""
        self._reset_style()
        self._transcript.setText(text)
        self._reveal()

    def set_levels(self, levels: Sequence[float]) -> None:
        for bar, level in zip(self._bars, levels):
            bar.setValue(int(level))

    def set_elapsed(self, seconds: int) -> None:
        self._elapsed.setText(format_elapsed(seconds) if seconds else "")

    def clear(self) -> None:
        self._status.setText("")
        self._transcript.setText("")
        self._elapsed.setText("")
        self.set_levels([0.0] * len(self._bars))

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        """Hide the overlay window after a short delay."""
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def show_error(self, text: str, hide_after_ms: int = 3000) -> None:
        """Show an error message and auto-hide after given ms."""
        self._transcript.setStyleSheet(_LABEL_STYLE.format(color="#FF6B6B", size=18))
        self._transcript.setText(f"⚠️ {text}")
        self._reveal()
        self.hide_with_delay(hide_after_ms)

    def show_notice(self, text: str, hide_after_ms: int = 3000) -> None:
        self._transcript.setStyleSheet(_LABEL_STYLE.format(color="#FFD54F", size=16))
        self._transcript.setText(text)
        self._reveal()
        self.hide_with_delay(hide_after_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None

    def _reset_style(self) -> None:
        self._transcript.setStyleSheet(_LABEL_STYLE.format(color="white", size=18))
