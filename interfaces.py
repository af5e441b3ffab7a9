"""Protocol interfaces used by the orchestrator and playback controller."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence

from models import AudioChunk, AudioFrame, CaptureConstraints, MediaEvent, SoundEffect

FrameListener = Callable[[AudioFrame], None]
MediaListener = Callable[[MediaEvent], None]


class CaptureStream(Protocol):
    def add_listener(self, listener: FrameListener) -> None: ...

    def remove_listener(self, listener: FrameListener) -> None: ...

    def release(self) -> None: ...


class CaptureSource(Protocol):
    def acquire(self, constraints: Optional[CaptureConstraints] = None) -> CaptureStream: ...


class ActivityDetector(Protocol):
    def start(
        self,
        stream: CaptureStream,
        on_speech_start: Callable[[], None],
        on_speech_end: Callable[[], None],
        on_noise_level: Optional[Callable[[float], None]] = None,
    ) -> None: ...

    def stop(self) -> None: ...


class Recorder(Protocol):
    def start(
        self,
        stream: CaptureStream,
        on_chunk: Optional[Callable[[AudioChunk, int], None]] = None,
    ) -> None: ...

    def request_partial_flush(self, min_chunks: int = 1) -> Optional[list[AudioChunk]]: ...

    def finalize(self) -> Optional[list[AudioChunk]]: ...

    def discard(self) -> None: ...


class Transcriber(Protocol):
    def transcribe_partial(self, chunks: Sequence[AudioChunk]) -> Optional[str]: ...

    def transcribe_final(self, chunks: Sequence[AudioChunk]) -> str: ...


class SpeechClient(Protocol):
    def synthesize(self, text: str, voice: str) -> bytes: ...


class AudioSink(Protocol):
    def set_listener(self, listener: Optional[MediaListener]) -> None: ...

    def load(self, samples: Any, sample_rate: int) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    def set_volume(self, gain: float) -> None: ...

    def close(self) -> None: ...


class LocalSpeechEngine(Protocol):
    def is_supported(self) -> bool: ...

    def set_listener(self, listener: Optional[MediaListener]) -> None: ...

    def speak(self, text: str, volume: float) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def cancel(self) -> None: ...

    def set_volume(self, gain: float) -> None: ...


class SoundPlayer(Protocol):
    def play(self, effect: SoundEffect) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerFactory(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> TimerHandle: ...


class ConfigStore(Protocol):
    def get_api_base_url(self) -> str: ...

    def set_api_base_url(self, url: str) -> None: ...

    def get_api_token(self) -> str: ...

    def set_api_token(self, token: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_auto_stop(self) -> bool: ...

    def set_auto_stop(self, enabled: bool) -> None: ...

    def get_voice(self) -> str: ...

    def set_voice(self, voice_id: str) -> None: ...

    def get_muted(self) -> bool: ...

    def set_muted(self, muted: bool) -> None: ...

    def get_volume(self) -> int: ...

    def set_volume(self, volume: int) -> None: ...

    def get_log_level(self) -> str: ...
