"""Segment recorder: slices captured frames into fixed-length chunks."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from interfaces import CaptureStream
from logging_setup import get_logger
from models import AudioChunk, AudioFrame

log = get_logger(__name__)

ChunkCallback = Callable[[AudioChunk, int], None]


class SegmentRecorder:
    def __init__(self, flush_interval_ms: int = 1000) -> None:
        self.flush_interval_ms = flush_interval_ms
        self._lock = threading.Lock()
        self._stream: Optional[CaptureStream] = None
        self._on_chunk: Optional[ChunkCallback] = None
        self._running = False
        self._finalized = False
        self._chunks: list[AudioChunk] = []
        self._pending = bytearray()
        self._pending_started_ms = 0
        self._sample_rate = 16000
        self._channels = 1

    @property
    def running(self) -> bool:
        return self._running

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def start(self, stream: CaptureStream, on_chunk: Optional[ChunkCallback] = None) -> None:
        with self._lock:
            if self._running:
                return
            self._stream = stream
            self._on_chunk = on_chunk
            self._chunks = []
            self._pending = bytearray()
            self._running = True
            self._finalized = False
        stream.add_listener(self._on_frame)

    def request_partial_flush(self, min_chunks: int = 1) -> Optional[list[AudioChunk]]:
        """Return the chunks recorded so far without stopping, or None if too few."""
        with self._lock:
            if not self._running or len(self._chunks) < min_chunks:
                return None
            return list(self._chunks)

    def finalize(self) -> Optional[list[AudioChunk]]:
        """Stop recording and return every chunk in order. Only the first call returns data."""
        with self._lock:
            if not self._running or self._finalized:
                return None
            self._running = False
            self._finalized = True
            if self._pending:
                self._flush_pending()
            chunks = list(self._chunks)
            stream = self._detach()
        if stream is not None:
            stream.remove_listener(self._on_frame)
        log.info("recorder.finalized", chunks=len(chunks), bytes=sum(len(c.pcm16_bytes) for c in chunks))
        return chunks

    def discard(self) -> None:
        with self._lock:
            self._running = False
            self._finalized = True
            self._chunks = []
            self._pending = bytearray()
            stream = self._detach()
        if stream is not None:
            stream.remove_listener(self._on_frame)

    def _on_frame(self, frame: AudioFrame) -> None:
        emitted: Optional[AudioChunk] = None
        with self._lock:
            if not self._running:
                return
            if not self._pending:
                self._pending_started_ms = frame.timestamp_ms
            self._sample_rate = frame.sample_rate
            self._channels = frame.channels
            self._pending.extend(frame.pcm16_bytes)
            if len(self._pending) >= self._bytes_per_chunk():
                emitted = self._flush_pending()
            count = len(self._chunks)
            on_chunk = self._on_chunk
        if emitted is not None and on_chunk is not None:
            on_chunk(emitted, count)

    def _bytes_per_chunk(self) -> int:
        return int(self._sample_rate * self._channels * 2 * self.flush_interval_ms / 1000)

    def _flush_pending(self) -> AudioChunk:
        chunk = AudioChunk(
            index=len(self._chunks),
            pcm16_bytes=bytes(self._pending),
            sample_rate=self._sample_rate,
            channels=self._channels,
            timestamp_ms=self._pending_started_ms,
        )
        self._chunks.append(chunk)
        self._pending = bytearray()
        return chunk

    def _detach(self) -> Optional[CaptureStream]:
        stream = self._stream
        self._stream = None
        self._on_chunk = None
        return stream
