"""Global push-to-toggle hotkey based on pynput."""

from __future__ import annotations

import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class ToggleHotkey:
    """Calls ``on_toggle`` once per key press; auto-repeat is ignored until release."""

    def __init__(self, hotkey_name: str = "Key.alt_l") -> None:
        self.hotkey_name = hotkey_name
        self._listener: Optional[object] = None
        self._held = False
        self._lock = threading.Lock()
        self._on_toggle: Optional[Callable[[], None]] = None

    def start(self, on_toggle: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._on_toggle = on_toggle
        self._listener = keyboard.Listener(on_press=self.handle_press, on_release=self.handle_release)
        self._listener.start()

    def handle_press(self, key: object) -> None:
        if str(key) != self.hotkey_name:
            return
        with self._lock:
            if self._held:
                return
            self._held = True
            on_toggle = self._on_toggle
        if on_toggle is not None:
            on_toggle()

    def handle_release(self, key: object) -> None:
        if str(key) != self.hotkey_name:
            return
        with self._lock:
            self._held = False

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
        self._on_toggle = None
