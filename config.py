"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path

from models import DEFAULT_VOICE_ID, VOICE_PROFILES

TOKEN_ENV_VAR = "TRUENORTH_API_TOKEN"
URL_ENV_VAR = "TRUENORTH_API_URL"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "truenorth_voice" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_base_url(self) -> str:
        data = self._read_all()
        return str(data.get("api_base_url", "") or os.getenv(URL_ENV_VAR, ""))

    def set_api_base_url(self, url: str) -> None:
        self._set("api_base_url", url.rstrip("/"))

    def get_api_token(self) -> str:
        data = self._read_all()
        return str(data.get("api_token", "") or os.getenv(TOKEN_ENV_VAR, ""))

    def set_api_token(self, token: str) -> None:
        self._set("api_token", token)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", "Key.alt_l"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_auto_stop(self) -> bool:
        data = self._read_all()
        value = data.get("auto_stop", True)
        return value if isinstance(value, bool) else True

    def set_auto_stop(self, enabled: bool) -> None:
        self._set("auto_stop", bool(enabled))

    def get_voice(self) -> str:
        data = self._read_all()
        voice = str(data.get("voice", DEFAULT_VOICE_ID))
        if voice not in {p.id for p in VOICE_PROFILES}:
            return DEFAULT_VOICE_ID
        return voice

    def set_voice(self, voice_id: str) -> None:
        if voice_id not in {p.id for p in VOICE_PROFILES}:
            raise ValueError(f"unknown voice profile: {voice_id}")
        self._set("voice", voice_id)

    def get_muted(self) -> bool:
        data = self._read_all()
        value = data.get("muted", False)
        return value if isinstance(value, bool) else False

    def set_muted(self, muted: bool) -> None:
        self._set("muted", bool(muted))

    def get_volume(self) -> int:
        data = self._read_all()
        try:
            volume = int(data.get("volume", 50))
        except (TypeError, ValueError):
            return 50
        return max(0, min(100, volume))

    def set_volume(self, volume: int) -> None:
        self._set("volume", max(0, min(100, int(volume))))

    def get_log_level(self) -> str:
        data = self._read_all()
        return str(data.get("log_level", "INFO")).upper()

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
