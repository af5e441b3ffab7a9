from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

import hotkey as hotkey_mod
from hotkey import ToggleHotkey


@patch("hotkey.keyboard")
def test_press_toggles_once_until_release(mock_keyboard: MagicMock) -> None:
    calls: list[int] = []
    hk = ToggleHotkey("Key.alt_l")
    hk.start(on_toggle=lambda: calls.append(1))

    mock_keyboard.Listener.assert_called_once()
    mock_keyboard.Listener.return_value.start.assert_called_once()

    hk.handle_press("Key.alt_l")
    hk.handle_press("Key.alt_l")  # auto-repeat
    assert calls == [1]

    hk.handle_release("Key.alt_l")
    hk.handle_press("Key.alt_l")
    assert calls == [1, 1]


@patch("hotkey.keyboard")
def test_other_keys_are_ignored(mock_keyboard: MagicMock) -> None:
    calls: list[int] = []
    hk = ToggleHotkey("Key.alt_l")
    hk.start(on_toggle=lambda: calls.append(1))

    hk.handle_press("Key.shift")
    hk.handle_press("'a'")
    assert calls == []


@patch("hotkey.keyboard")
def test_stop_stops_listener(mock_keyboard: MagicMock) -> None:
    hk = ToggleHotkey()
    hk.start(on_toggle=lambda: None)
    hk.stop()
    hk.stop()

    mock_keyboard.Listener.return_value.stop.assert_called_once()


def test_start_raises_without_pynput(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(hotkey_mod, "keyboard", None)
    with pytest.raises(RuntimeError, match="pynput is not installed"):
        ToggleHotkey().start(on_toggle=lambda: None)
