"""Core data models for the voice chat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class SessionState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    TRANSCRIBING = "TRANSCRIBING"
    ERROR = "ERROR"


class PlaybackStatus(str, Enum):
    STOPPED = "STOPPED"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"


class PlaybackBackend(str, Enum):
    NONE = "none"
    REMOTE = "remote"
    LOCAL = "local"


class MediaEvent(str, Enum):
    PLAY = "play"
    PAUSE = "pause"
    ENDED = "ended"
    ERROR = "error"


class SoundEffect(str, Enum):
    START = "start"
    STOP = "stop"
    SEND = "send"
    ERROR = "error"
    PROCESSING = "processing"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class AudioChunk:
    index: int
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class CaptureConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


@dataclass
class RecordingSession:
    session_id: int
    started_at: float
    status: SessionState = SessionState.RECORDING
    elapsed_seconds: int = 0
    audio_chunks: list[AudioChunk] = field(default_factory=list)
    partial_in_flight: bool = False


@dataclass
class VADState:
    is_speaking: bool = False
    last_speech_at: float = 0.0
    silence_timer: Any = None


@dataclass(frozen=True)
class FinalTranscript:
    text: str
    session_id: int


@dataclass(frozen=True)
class VoiceProfile:
    id: str
    name: str
    description: str


VOICE_PROFILES: tuple[VoiceProfile, ...] = (
    VoiceProfile("alloy", "Alloy", "Neutral & Versatile"),
    VoiceProfile("echo", "Echo", "Soft & Conversational"),
    VoiceProfile("fable", "Fable", "Warm & Relatable"),
    VoiceProfile("onyx", "Onyx", "Deep & Authoritative"),
    VoiceProfile("nova", "Nova", "Bright & Professional"),
    VoiceProfile("shimmer", "Shimmer", "Clear & Gentle"),
)

DEFAULT_VOICE_ID = "alloy"


def find_voice_profile(voice_id: str) -> VoiceProfile:
    for profile in VOICE_PROFILES:
        if profile.id == voice_id:
            return profile
    raise ValueError(f"unknown voice profile: {voice_id}")


@dataclass
class PlaybackState:
    status: PlaybackStatus = PlaybackStatus.STOPPED
    voice_profile: VoiceProfile = field(default_factory=lambda: find_voice_profile(DEFAULT_VOICE_ID))
    volume: int = 50
    muted: bool = False


@dataclass(frozen=True)
class RemoteAudio:
    audio_bytes: bytes
    samples: Any
    sample_rate: int


@dataclass(frozen=True)
class LocalSynthesis:
    text: str
    reason: str = ""
    entitlement_required: bool = False


@dataclass(frozen=True)
class Unsupported:
    reason: str = ""


SynthesisOutcome = Union[RemoteAudio, LocalSynthesis, Unsupported]


@dataclass
class ChatReply:
    content: str
    thread_id: Optional[str] = None
