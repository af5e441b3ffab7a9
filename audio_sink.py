"""Single-buffer audio output, the desktop stand-in for an audio element."""

from __future__ import annotations

import threading
from typing import Any, Optional

import numpy as np

from interfaces import MediaListener
from logging_setup import get_logger
from models import MediaEvent

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

log = get_logger(__name__)


class SoundDeviceSink:
    def __init__(self, device: Optional[int] = None, blocksize: int = 1024) -> None:
        self.device = device
        self.blocksize = blocksize
        self._lock = threading.RLock()
        self._stream: Any = None
        self._samples = np.zeros(0, dtype=np.float32)
        self._sample_rate = 24000
        self._position = 0
        self._gain = 1.0
        self._paused = False
        self._stopping = False
        self._spent: Any = None
        self._listener: Optional[MediaListener] = None

    @property
    def playing(self) -> bool:
        return self._stream is not None and not self._paused

    def set_listener(self, listener: Optional[MediaListener]) -> None:
        self._listener = listener

    def load(self, samples: Any, sample_rate: int) -> None:
        self.stop()
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim == 2:
            data = data.mean(axis=1)
        with self._lock:
            self._samples = data.reshape(-1)
            self._sample_rate = int(sample_rate)
            self._position = 0

    def play(self) -> None:
        with self._lock:
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            if self._stream is not None:
                return
            self._close_spent()
            self._stopping = False
            self._paused = False
            self._stream = sd.OutputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.blocksize,
                device=self.device,
                callback=self._fill,
                finished_callback=self._on_finished,
            )
            self._stream.start()
        self._emit(MediaEvent.PLAY)

    def pause(self) -> None:
        with self._lock:
            if self._stream is None or self._paused:
                return
            self._paused = True
        self._emit(MediaEvent.PAUSE)

    def resume(self) -> None:
        with self._lock:
            if self._stream is None or not self._paused:
                return
            self._paused = False
        self._emit(MediaEvent.PLAY)

    def stop(self) -> None:
        with self._lock:
            stream = self._stream
            self._stream = None
            self._stopping = True
            self._paused = False
            self._position = 0
            self._close_spent()
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception:
                log.exception("sink.stop_failed")

    def set_volume(self, gain: float) -> None:
        with self._lock:
            self._gain = max(0.0, min(1.0, float(gain)))

    def close(self) -> None:
        self.stop()
        self._listener = None

    def _fill(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        with self._lock:
            if self._paused:
                outdata.fill(0)
                return
            chunk = self._samples[self._position : self._position + frames]
            count = len(chunk)
            outdata[:count, 0] = chunk * self._gain
            outdata[count:] = 0
            self._position += count
        if count < frames:
            raise sd.CallbackStop

    def _on_finished(self) -> None:
        with self._lock:
            if self._stopping:
                return
            # PortAudio forbids closing a stream from its own callback.
            self._spent = self._stream
            self._stream = None
            self._position = 0
        self._emit(MediaEvent.ENDED)

    def _close_spent(self) -> None:
        spent = self._spent
        self._spent = None
        if spent is not None:
            try:
                spent.close()
            except Exception:
                log.exception("sink.close_failed")

    def _emit(self, event: MediaEvent) -> None:
        listener = self._listener
        if listener is not None:
            listener(event)
