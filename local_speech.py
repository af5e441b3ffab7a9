"""On-device speech synthesis through pyttsx3."""

from __future__ import annotations

import threading
from typing import Any, Optional

from interfaces import MediaListener
from logging_setup import get_logger
from models import MediaEvent

try:
    import pyttsx3
except Exception:  # pragma: no cover
    pyttsx3 = None  # type: ignore

log = get_logger(__name__)


def _voice_languages(voice: Any) -> list[str]:
    langs = []
    for lang in getattr(voice, "languages", None) or []:
        if isinstance(lang, bytes):
            lang = lang.decode("utf-8", errors="ignore")
        langs.append(str(lang).lower())
    return langs


class Pyttsx3SpeechEngine:
    """
    Wraps a pyttsx3 engine behind start/pause/resume/cancel controls.

    pyttsx3 cannot pause mid-utterance: ``pause()`` stops the utterance and
    ``resume()`` speaks the same text again from the start.
    """

    def __init__(self, locale: str = "en", rate: int = 180) -> None:
        self.locale = locale.lower()
        self.rate = rate
        self._lock = threading.RLock()
        self._engine: Any = None
        self._thread: Optional[threading.Thread] = None
        self._listener: Optional[MediaListener] = None
        self._text = ""
        self._volume = 1.0
        self._utterance = 0
        self._paused = False
        self._supported: Optional[bool] = None

    def is_supported(self) -> bool:
        if pyttsx3 is None:
            return False
        if self._supported is None:
            try:
                self._get_engine()
                self._supported = True
            except Exception as exc:
                log.warning("local_speech.unavailable", error=str(exc))
                self._supported = False
        return self._supported

    def set_listener(self, listener: Optional[MediaListener]) -> None:
        self._listener = listener

    def speak(self, text: str, volume: float) -> None:
        self.cancel()
        previous = self._thread
        if previous is not None and previous is not threading.current_thread():
            # pyttsx3 allows one run loop at a time.
            previous.join(timeout=1.0)
        with self._lock:
            self._utterance += 1
            utterance = self._utterance
            self._text = text
            self._volume = volume
            self._paused = False
            self._thread = threading.Thread(target=self._run, args=(utterance, text, volume), daemon=True)
            self._thread.start()

    def pause(self) -> None:
        with self._lock:
            if self._paused or not self._text:
                return
            self._paused = True
            self._utterance += 1
            self._stop_engine()
        self._emit(MediaEvent.PAUSE)

    def resume(self) -> None:
        with self._lock:
            if not self._paused:
                return
            text, volume = self._text, self._volume
        self.speak(text, volume)

    def cancel(self) -> None:
        with self._lock:
            self._utterance += 1
            self._paused = False
            self._stop_engine()

    def set_volume(self, gain: float) -> None:
        with self._lock:
            volume = max(0.0, min(1.0, float(gain)))
            changed = volume != self._volume
            self._volume = volume
            if self._engine is not None:
                self._engine.setProperty("volume", volume)
            restart = changed and self._speaking()
            text = self._text
        if restart:
            # The driver reads volume once per utterance.
            self.speak(text, volume)

    def _speaking(self) -> bool:
        thread = self._thread
        return bool(self._text) and not self._paused and thread is not None and thread.is_alive()

    def _get_engine(self) -> Any:
        if self._engine is None:
            if pyttsx3 is None:
                raise RuntimeError("pyttsx3 is not installed")
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            voice_id = self._pick_voice(engine)
            if voice_id:
                engine.setProperty("voice", voice_id)
            self._engine = engine
        return self._engine

    def _pick_voice(self, engine: Any) -> Optional[str]:
        for voice in engine.getProperty("voices") or []:
            langs = _voice_languages(voice)
            if any(lang.startswith(self.locale) for lang in langs) or self.locale in str(voice.id).lower():
                return voice.id
        return None

    def _run(self, utterance: int, text: str, volume: float) -> None:
        try:
            engine = self._get_engine()
            engine.setProperty("volume", volume)
            started = engine.connect("started-utterance", lambda name: self._on_engine_event(utterance, MediaEvent.PLAY))
            finished = engine.connect(
                "finished-utterance", lambda name, completed: self._on_engine_event(utterance, MediaEvent.ENDED)
            )
            try:
                engine.say(text)
                engine.runAndWait()
            finally:
                engine.disconnect(started)
                engine.disconnect(finished)
        except Exception:
            log.exception("local_speech.failed")
            self._on_engine_event(utterance, MediaEvent.ERROR)

    def _on_engine_event(self, utterance: int, event: MediaEvent) -> None:
        with self._lock:
            if utterance != self._utterance:
                return
        self._emit(event)

    def _stop_engine(self) -> None:
        if self._engine is not None:
            try:
                self._engine.stop()
            except Exception:
                log.exception("local_speech.stop_failed")

    def _emit(self, event: MediaEvent) -> None:
        listener = self._listener
        if listener is not None:
            listener(event)
