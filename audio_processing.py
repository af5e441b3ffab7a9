"""Audio helpers: PCM conversion, WAV packing, silence trim and normalisation."""

from __future__ import annotations

import io
import wave
from typing import Sequence

import numpy as np

from models import AudioChunk


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    return np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype(np.int16).tobytes()


def join_chunks(chunks: Sequence[AudioChunk]) -> bytes:
    return b"".join(chunk.pcm16_bytes for chunk in chunks)


def pcm_to_wav_bytes(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> bytes:
    """Wrap raw PCM bytes in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


def normalize_audio(samples: np.ndarray, target_peak: float = 0.7) -> np.ndarray:
    """Scale to ``target_peak`` unless the peak already sits in (0.1, 0.8)."""
    if samples.size == 0:
        return samples
    peak = float(np.max(np.abs(samples)))
    if 0.1 < peak < 0.8:
        return samples
    if peak == 0.0:
        return samples
    return (samples * (target_peak / peak)).astype(np.float32)


def trim_silence(samples: np.ndarray, threshold: float = 0.01, margin: int = 1000) -> np.ndarray:
    """Drop leading/trailing samples quieter than ``threshold``, keeping ``margin`` samples of context."""
    loud = np.flatnonzero(np.abs(samples) > threshold)
    if loud.size == 0:
        return samples
    start = max(0, int(loud[0]) - margin)
    end = min(len(samples) - 1, int(loud[-1]) + margin)
    return samples[start : end + 1]


def prepare_upload(chunks: Sequence[AudioChunk], preprocess: bool = False) -> bytes:
    """Build the WAV payload for a chunk sequence, optionally trimmed and normalised."""
    pcm = join_chunks(chunks)
    sample_rate = chunks[0].sample_rate if chunks else 16000
    channels = chunks[0].channels if chunks else 1
    if preprocess and pcm and channels == 1:
        samples = normalize_audio(trim_silence(pcm16_to_float(pcm)))
        pcm = float_to_pcm16(samples)
    return pcm_to_wav_bytes(pcm, sample_rate=sample_rate, channels=channels)
