"""Microphone capture source adapter."""

from __future__ import annotations

import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Optional

from errors import PermissionDenied
from interfaces import FrameListener
from logging_setup import get_logger
from models import AudioFrame, CaptureConstraints

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

log = get_logger(__name__)


class SoundDeviceStream:
    """One open microphone stream.

    The PortAudio callback only enqueues frames; a dispatcher thread hands
    them to listeners so analysis never runs on the audio thread.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        queue_maxsize: int = 50,
        device: Optional[int] = None,
        constraints: Optional[CaptureConstraints] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self.constraints = constraints or CaptureConstraints()
        self.dropped_chunks = 0
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._listeners: list[FrameListener] = []
        self._queue: Queue[AudioFrame | None] = Queue(maxsize=queue_maxsize)
        self._dispatcher: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._running

    def open(self) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    device=self.device,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                raise PermissionDenied(f"microphone unavailable: {exc}") from exc
            self._running = True
            self._dispatcher = threading.Thread(target=self._dispatch, daemon=True)
            self._dispatcher.start()
        log.info("capture.opened", sample_rate=self.sample_rate, channels=self.channels, device=self.device)

    def add_listener(self, listener: FrameListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: FrameListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def release(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._stream is not None:
                try:
                    self._stream.stop()
                    self._stream.close()
                finally:
                    self._stream = None
            self._emit_sentinel()
            dispatcher = self._dispatcher
            self._dispatcher = None
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout=1.0)
        log.info("capture.released", dropped_chunks=self.dropped_chunks)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        if np is None:
            return
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        frame = AudioFrame(
            pcm16_bytes=payload,
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            self._queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _dispatch(self) -> None:
        while True:
            try:
                frame = self._queue.get(timeout=0.5)
            except Empty:
                if not self._running:
                    return
                continue
            if frame is None:
                return
            with self._lock:
                listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(frame)
                except Exception:
                    log.exception("capture.listener_failed")

    def _emit_sentinel(self) -> None:
        try:
            self._queue.put_nowait(None)
        except Full:
            pass


class SoundDeviceCaptureSource:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
        device: Optional[int] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device

    def acquire(self, constraints: Optional[CaptureConstraints] = None) -> SoundDeviceStream:
        stream = SoundDeviceStream(
            sample_rate=self.sample_rate,
            channels=self.channels,
            chunk_ms=self.chunk_ms,
            device=self.device,
            constraints=constraints,
        )
        stream.open()
        return stream
