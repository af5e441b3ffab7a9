"""Amplitude-threshold voice activity detection."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

import numpy as np

from interfaces import CaptureStream, TimerFactory, TimerHandle
from logging_setup import get_logger
from models import AudioFrame, VADState
from timers import ThreadingTimerFactory

log = get_logger(__name__)


class FrequencyAnalyser:
    """
    Byte-scaled spectrum average in the manner of a browser AnalyserNode.

    Each frame's most recent ``fft_size`` samples are Blackman-windowed,
    transformed, smoothed against the previous spectrum and converted to
    decibels. Decibels are mapped linearly onto 0..255 between
    ``min_decibels`` and ``max_decibels`` and the mean of the bins is the
    frame level.
    """

    def __init__(
        self,
        fft_size: int = 256,
        min_decibels: float = -45.0,
        max_decibels: float = -10.0,
        smoothing_time_constant: float = 0.5,
    ) -> None:
        if fft_size <= 0 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two (got {fft_size})")
        if min_decibels >= max_decibels:
            raise ValueError("min_decibels must be below max_decibels")
        self.fft_size = fft_size
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self.smoothing_time_constant = smoothing_time_constant
        self._window = np.blackman(fft_size)
        self._previous = np.zeros(fft_size // 2)

    def reset(self) -> None:
        self._previous = np.zeros(self.fft_size // 2)

    def measure(self, frame: AudioFrame) -> float:
        samples = np.frombuffer(frame.pcm16_bytes, dtype=np.int16).astype(np.float32) / 32768.0
        if frame.channels > 1:
            samples = samples.reshape(-1, frame.channels).mean(axis=1)
        if len(samples) >= self.fft_size:
            block = samples[-self.fft_size:]
        else:
            block = np.concatenate([np.zeros(self.fft_size - len(samples), dtype=np.float32), samples])

        spectrum = np.abs(np.fft.rfft(block * self._window))[: self.fft_size // 2] / self.fft_size
        tau = self.smoothing_time_constant
        smoothed = tau * self._previous + (1.0 - tau) * spectrum
        self._previous = smoothed

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(smoothed)
        scale = 255.0 / (self.max_decibels - self.min_decibels)
        byte_values = np.clip((decibels - self.min_decibels) * scale, 0.0, 255.0)
        return float(np.mean(byte_values))


class VoiceActivityDetector:
    def __init__(
        self,
        min_decibels: float = -45.0,
        silence_debounce_ms: int = 1500,
        speech_level: float = 30.0,
        fft_size: int = 256,
        timers: Optional[TimerFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.silence_debounce_ms = silence_debounce_ms
        self.speech_level = speech_level
        self._analyser = FrequencyAnalyser(fft_size=fft_size, min_decibels=min_decibels)
        self._timers = timers or ThreadingTimerFactory()
        self._clock = clock
        self._lock = threading.RLock()
        self._state = VADState()
        self._stream: Optional[CaptureStream] = None
        self._timer_seq = 0
        self._on_speech_start: Optional[Callable[[], None]] = None
        self._on_speech_end: Optional[Callable[[], None]] = None
        self._on_noise_level: Optional[Callable[[float], None]] = None

    @property
    def is_speaking(self) -> bool:
        return self._state.is_speaking

    @property
    def state(self) -> VADState:
        return self._state

    def start(
        self,
        stream: CaptureStream,
        on_speech_start: Callable[[], None],
        on_speech_end: Callable[[], None],
        on_noise_level: Optional[Callable[[float], None]] = None,
    ) -> None:
        with self._lock:
            if self._stream is not None:
                return
            self._state = VADState()
            self._analyser.reset()
            self._on_speech_start = on_speech_start
            self._on_speech_end = on_speech_end
            self._on_noise_level = on_noise_level
            self._stream = stream
        stream.add_listener(self._on_frame)

    def stop(self) -> None:
        with self._lock:
            self._cancel_silence_timer()
            stream = self._stream
            self._stream = None
            self._state = VADState()
            self._on_speech_start = None
            self._on_speech_end = None
            self._on_noise_level = None
        if stream is not None:
            stream.remove_listener(self._on_frame)

    def process_level(self, level: float) -> None:
        """Feed one sampled level (0..255 byte scale) through the detector."""
        with self._lock:
            if self._stream is None:
                return
            on_noise_level = self._on_noise_level
            on_speech_start = None
            if level > self.speech_level:
                self._state.last_speech_at = self._clock()
                self._cancel_silence_timer()
                if not self._state.is_speaking:
                    self._state.is_speaking = True
                    on_speech_start = self._on_speech_start
            elif self._state.is_speaking and self._state.silence_timer is None:
                self._timer_seq += 1
                seq = self._timer_seq
                self._state.silence_timer = self._timers.call_later(
                    self.silence_debounce_ms / 1000.0,
                    lambda: self._silence_elapsed(seq),
                )

        if on_noise_level is not None:
            try:
                on_noise_level(min(100.0, max(0.0, level * 1.5)))
            except Exception:
                log.exception("vad.noise_level_callback_failed")
        if on_speech_start is not None:
            log.debug("vad.speech_start", level=round(level, 1))
            on_speech_start()

    def _on_frame(self, frame: AudioFrame) -> None:
        with self._lock:
            if self._stream is None:
                return
            level = self._analyser.measure(frame)
        self.process_level(level)

    def _silence_elapsed(self, seq: int) -> None:
        with self._lock:
            if seq != self._timer_seq or not self._state.is_speaking:
                return
            self._state.silence_timer = None
            self._state.is_speaking = False
            on_speech_end = self._on_speech_end
        log.debug("vad.speech_end", debounce_ms=self.silence_debounce_ms)
        if on_speech_end is not None:
            on_speech_end()

    def _cancel_silence_timer(self) -> None:
        timer: Optional[TimerHandle] = self._state.silence_timer
        self._timer_seq += 1
        if timer is not None:
            timer.cancel()
            self._state.silence_timer = None
