"""Application entrypoint."""

from __future__ import annotations

import sys
import threading
from pathlib import Path

from audio_sink import SoundDeviceSink
from capture import SoundDeviceCaptureSource
from chat_relay import ChatRelay
from config import JsonConfigStore
from edge_functions import EdgeFunctionClient
from errors import ERROR_MESSAGES, VoiceChatError
from hotkey import ToggleHotkey
from interfaces import ConfigStore
from local_speech import Pyttsx3SpeechEngine
from logging_setup import get_logger, setup_logging
from models import VOICE_PROFILES, PlaybackStatus, SessionState, find_voice_profile
from overlay import OverlayWindow
from playback import PlaybackController, PlaybackResource
from recorder import SegmentRecorder
from sound_effects import AudioSettings, SoundEffects
from speech_client import OpenAITTSClient
from transcription import WhisperTranscriptionClient
from vad import VoiceActivityDetector
from voice_chat import VoiceChatOrchestrator

try:
    from PySide6.QtCore import QObject, QSize, Signal
    from PySide6.QtGui import QAction, QActionGroup, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QLineEdit, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

log = get_logger(__name__)

LOG_FILE = Path.home() / ".config" / "truenorth_voice" / "voice.log"


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"
ICON_RECORDING = "#FF4444"
ICON_TRANSCRIBING = "#4FC3F7"
ICON_ERROR = "#FF8800"


class UIBridge(QObject):
    partial_signal = Signal(str)
    error_signal = Signal(str)
    notice_signal = Signal(str)
    feedback_signal = Signal(str)
    elapsed_signal = Signal(int)
    levels_signal = Signal(list)
    state_signal = Signal(str, str)
    playback_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store: ConfigStore = JsonConfigStore()
        setup_logging(self.config_store.get_log_level(), log_file=LOG_FILE)

        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.partial_signal.connect(self._on_partial_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.notice_signal.connect(self._on_notice_ui)
        self.ui.feedback_signal.connect(self._on_feedback_ui)
        self.ui.elapsed_signal.connect(self.overlay.set_elapsed)
        self.ui.levels_signal.connect(self.overlay.set_levels)
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.playback_signal.connect(self._on_playback_ui)

        self.settings = AudioSettings(
            volume=self.config_store.get_volume(),
            muted=self.config_store.get_muted(),
        )
        self.client = EdgeFunctionClient(
            base_url=self.config_store.get_api_base_url(),
            api_token=self.config_store.get_api_token(),
        )
        self.relay = ChatRelay(self.client)
        self.playback = PlaybackController(
            resource=PlaybackResource(audio=SoundDeviceSink(), speech=Pyttsx3SpeechEngine()),
            speech_client=OpenAITTSClient(self.client),
            settings=self.settings,
            voice=find_voice_profile(self.config_store.get_voice()),
            on_status_change=self._on_playback_change,
            on_notice=self._on_notice,
        )
        self.sounds = SoundEffects(self.settings, sink_factory=SoundDeviceSink)
        self.controller = VoiceChatOrchestrator(
            capture=SoundDeviceCaptureSource(),
            vad=VoiceActivityDetector(),
            recorder=SegmentRecorder(),
            transcriber=WhisperTranscriptionClient(self.client),
            on_send_message=self._on_send_message,
            playback=self.playback,
            sounds=self.sounds,
            auto_stop_enabled=self.config_store.get_auto_stop(),
            on_state_change=self._on_state_change,
            on_partial=self._on_partial,
            on_error=self._on_error,
            on_feedback=self._on_feedback,
            on_elapsed=self.ui.elapsed_signal.emit,
            on_levels=self.ui.levels_signal.emit,
        )
        self.hotkey = ToggleHotkey(hotkey_name=self.config_store.get_hotkey())
        self._last_reply = ""

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("TrueNorth Voice — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        self.auto_stop_action = QAction("Auto-stop on silence", menu)
        self.auto_stop_action.setCheckable(True)
        self.auto_stop_action.setChecked(self.controller.auto_stop_enabled)
        self.auto_stop_action.toggled.connect(self._set_auto_stop)
        menu.addAction(self.auto_stop_action)

        voice_menu = menu.addMenu("Voice")
        voice_group = QActionGroup(voice_menu)
        current_voice = self.playback.state.voice_profile.id
        for profile in VOICE_PROFILES:
            action = QAction(f"{profile.name} — {profile.description}", voice_menu)
            action.setCheckable(True)
            action.setChecked(profile.id == current_voice)
            action.triggered.connect(lambda checked=False, voice_id=profile.id: self._set_voice(voice_id))
            voice_group.addAction(action)
            voice_menu.addAction(action)

        self.mute_action = QAction("Mute", menu)
        self.mute_action.setCheckable(True)
        self.mute_action.setChecked(self.settings.muted)
        self.mute_action.toggled.connect(self._set_muted)
        menu.addAction(self.mute_action)

        volume_action = QAction("Set Volume…", menu)
        volume_action.triggered.connect(self._set_volume)
        menu.addAction(volume_action)

        menu.addSeparator()
        self.play_action = QAction("Play Reply", menu)
        self.play_action.setEnabled(False)
        self.play_action.triggered.connect(self._toggle_reply)
        menu.addAction(self.play_action)

        reset_action = QAction("Reset", menu)
        reset_action.triggered.connect(self.controller.reset)
        menu.addAction(reset_action)

        menu.addSeparator()
        url_action = QAction("Set API URL", menu)
        url_action.triggered.connect(self._set_api_url)
        menu.addAction(url_action)

        token_action = QAction("Set API Token", menu)
        token_action.triggered.connect(self._set_api_token)
        menu.addAction(token_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # Menu handlers
    # ------------------------------------------------------------------

    def _set_auto_stop(self, enabled: bool) -> None:
        self.controller.set_auto_stop(enabled)
        self.config_store.set_auto_stop(enabled)

    def _set_voice(self, voice_id: str) -> None:
        self.playback.set_voice(voice_id)
        self.config_store.set_voice(voice_id)

    def _set_muted(self, muted: bool) -> None:
        self.playback.set_muted(muted)
        self.config_store.set_muted(muted)

    def _set_volume(self) -> None:
        value, ok = QInputDialog.getInt(None, "Volume", "Volume (0-100)", self.settings.volume, 0, 100, 5)
        if not ok:
            return
        self.playback.set_volume(value)
        self.config_store.set_volume(value)

    def _set_api_url(self) -> None:
        value, ok = QInputDialog.getText(None, "API URL", "Backend URL", text=self.client.base_url)
        if not ok:
            return
        self.config_store.set_api_base_url(value)
        self.client.base_url = value.rstrip("/")
        QMessageBox.information(None, "Saved", "API URL saved and applied.")

    def _set_api_token(self) -> None:
        value, ok = QInputDialog.getText(None, "API Token", "Access token", QLineEdit.Password)
        if not ok:
            return
        self.config_store.set_api_token(value)
        self.client.api_token = value
        QMessageBox.information(None, "Saved", "API token saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(None, "Hotkey", "Use pynput key format, e.g. Key.alt_l")
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        self.hotkey.hotkey_name = value
        QMessageBox.information(None, "Saved", "Hotkey saved and applied.")

    def _toggle_reply(self) -> None:
        if self._last_reply:
            self.controller.play_response(self._last_reply)

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_send_message(self, text: str) -> None:
        self.ui.partial_signal.emit(text)
        threading.Thread(target=self._relay, args=(text,), daemon=True).start()

    def _relay(self, text: str) -> None:
        try:
            reply = self.relay.send(text)
        except VoiceChatError as exc:
            log.warning("chat.failed", code=exc.code, error=exc.message)
            self._on_error(exc.code, exc.message)
            return
        self._last_reply = reply.content
        self.ui.playback_signal.emit(PlaybackStatus.STOPPED.value)
        self.controller.speak_reply(reply.content)

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_partial(self, text: str) -> None:
        self.ui.partial_signal.emit(text)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(message or ERROR_MESSAGES.get(code, code))

    def _on_notice(self, message: str) -> None:
        self.ui.notice_signal.emit(message)

    def _on_feedback(self, message: str | None) -> None:
        self.ui.feedback_signal.emit(message or "")

    def _on_playback_change(self, from_status: PlaybackStatus, to_status: PlaybackStatus) -> None:
        self.ui.playback_signal.emit(to_status.value)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_partial_ui(self, text: str) -> None:
        self.overlay.set_text(text)

    def _on_error_ui(self, msg: str) -> None:
        self.overlay.show_error(msg)

    def _on_notice_ui(self, msg: str) -> None:
        self.overlay.show_notice(msg)

    def _on_feedback_ui(self, msg: str) -> None:
        self.overlay.set_feedback(msg)

    def _on_playback_ui(self, status: str) -> None:
        self.play_action.setEnabled(bool(self._last_reply))
        self.play_action.setText("Pause Reply" if status == PlaybackStatus.PLAYING.value else "Play Reply")

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        if to_state == SessionState.RECORDING.value:
            self.overlay.clear()
            self.tray.setIcon(_create_icon(ICON_RECORDING))
            self.tray.setToolTip("TrueNorth Voice — Recording...")
        elif to_state == SessionState.TRANSCRIBING.value:
            self.tray.setIcon(_create_icon(ICON_TRANSCRIBING))
            self.tray.setToolTip("TrueNorth Voice — Transcribing...")
        elif to_state == SessionState.IDLE.value:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.tray.setToolTip("TrueNorth Voice — Ready")
            self.overlay.hide_with_delay(2500)
        elif to_state == SessionState.ERROR.value:
            self.tray.setIcon(_create_icon(ICON_ERROR))
            self.tray.setToolTip("TrueNorth Voice — Error (use Reset to retry)")

    # ------------------------------------------------------------------
    # Hotkey handler
    # ------------------------------------------------------------------

    def _on_hotkey(self) -> None:
        state = self.controller.state
        if state == SessionState.RECORDING:
            self.controller.stop()
        elif state == SessionState.ERROR:
            self.controller.retry()
            self.controller.start()
        elif state == SessionState.IDLE:
            self.controller.start()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(on_toggle=self._on_hotkey)
        except Exception as exc:
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        log.info("app.started", hotkey=self.hotkey.hotkey_name)
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.controller.close()
        self.sounds.close()
        self.client.close()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
