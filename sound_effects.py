"""UI cue sounds, synthesised as short tones."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from interfaces import AudioSink
from logging_setup import get_logger
from models import SoundEffect

log = get_logger(__name__)

EFFECT_SAMPLE_RATE = 24000

# (frequency Hz, duration s) segments per cue.
_TONES: dict[SoundEffect, tuple[tuple[float, float], ...]] = {
    SoundEffect.START: ((660.0, 0.08), (880.0, 0.10)),
    SoundEffect.STOP: ((880.0, 0.08), (660.0, 0.10)),
    SoundEffect.SEND: ((784.0, 0.06), (1046.5, 0.12)),
    SoundEffect.ERROR: ((220.0, 0.18), (196.0, 0.22)),
    SoundEffect.PROCESSING: ((523.25, 0.05), (0.0, 0.05), (523.25, 0.05)),
}


@dataclass
class AudioSettings:
    """The single volume/mute setting shared by speech and cue playback."""

    volume: int = 50
    muted: bool = False

    @property
    def gain(self) -> float:
        if self.muted:
            return 0.0
        return max(0, min(100, self.volume)) / 100.0


def render_tone(segments: tuple[tuple[float, float], ...], sample_rate: int = EFFECT_SAMPLE_RATE) -> np.ndarray:
    parts = []
    for frequency, duration in segments:
        t = np.arange(int(sample_rate * duration)) / sample_rate
        tone = np.sin(2 * np.pi * frequency * t) * 0.4 if frequency else np.zeros_like(t)
        fade = min(len(t) // 4, int(sample_rate * 0.01))
        if fade:
            ramp = np.linspace(0.0, 1.0, fade)
            tone[:fade] *= ramp
            tone[-fade:] *= ramp[::-1]
        parts.append(tone)
    return np.concatenate(parts).astype(np.float32)


class SoundEffects:
    def __init__(self, settings: AudioSettings, sink_factory: Callable[[], AudioSink]) -> None:
        self._settings = settings
        self._sink_factory = sink_factory
        self._lock = threading.Lock()
        self._sinks: dict[SoundEffect, AudioSink] = {}
        self._buffers = {effect: render_tone(segments) for effect, segments in _TONES.items()}

    def play(self, effect: SoundEffect) -> None:
        gain = self._settings.gain
        if gain <= 0.0:
            return
        try:
            sink = self._sink(effect)
            sink.load(self._buffers[effect], EFFECT_SAMPLE_RATE)
            sink.set_volume(gain)
            sink.play()
        except Exception as exc:
            log.warning("sound_effect.failed", effect=effect.value, error=str(exc))

    def close(self) -> None:
        with self._lock:
            sinks = list(self._sinks.values())
            self._sinks.clear()
        for sink in sinks:
            sink.close()

    def _sink(self, effect: SoundEffect) -> AudioSink:
        with self._lock:
            sink: Optional[AudioSink] = self._sinks.get(effect)
            if sink is None:
                sink = self._sink_factory()
                self._sinks[effect] = sink
            return sink
