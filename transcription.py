"""Speech-to-text client for the hosted Whisper transcription function.

Partial requests are a display hint: every failure is logged and swallowed so
recording carries on. Final requests are authoritative and raise
``TranscriptionError``. Audio below ``min_audio_bytes`` never leaves the
machine.
"""

from __future__ import annotations

from typing import Optional, Sequence

import requests

from audio_processing import prepare_upload
from edge_functions import EdgeFunctionClient, error_detail
from errors import (
    ASR_PROTOCOL_ERROR,
    RecordingTooShort,
    TranscriptionError,
    VoiceChatError,
    classify_failure,
)
from logging_setup import get_logger
from models import AudioChunk

log = get_logger(__name__)

# Half a second of 16 kHz mono PCM16.
MIN_AUDIO_BYTES = 16000


class WhisperTranscriptionClient:
    def __init__(
        self,
        client: EdgeFunctionClient,
        function_name: str = "whisper-transcription",
        min_audio_bytes: int = MIN_AUDIO_BYTES,
        partial_timeout_s: float = 10.0,
        final_timeout_s: float = 30.0,
        preprocess_final: bool = True,
    ) -> None:
        self._client = client
        self._function_name = function_name
        self.min_audio_bytes = min_audio_bytes
        self._partial_timeout_s = partial_timeout_s
        self._final_timeout_s = final_timeout_s
        self._preprocess_final = preprocess_final

    def is_too_short(self, chunks: Sequence[AudioChunk]) -> bool:
        return sum(len(c.pcm16_bytes) for c in chunks) < self.min_audio_bytes

    def transcribe_partial(self, chunks: Sequence[AudioChunk]) -> Optional[str]:
        if self.is_too_short(chunks):
            return None
        try:
            text = self._request(chunks, priority="low", timeout_s=self._partial_timeout_s, preprocess=False)
        except (VoiceChatError, requests.RequestException) as exc:
            log.warning("transcription.partial_failed", error=str(exc), chunks=len(chunks))
            return None
        return text.strip() or None

    def transcribe_final(self, chunks: Sequence[AudioChunk]) -> str:
        if self.is_too_short(chunks):
            raise RecordingTooShort()
        try:
            text = self._request(
                chunks,
                priority="high",
                timeout_s=self._final_timeout_s,
                preprocess=self._preprocess_final,
            )
        except TranscriptionError:
            raise
        except VoiceChatError as exc:
            raise TranscriptionError(exc.message, code=exc.code, retryable=exc.retryable) from exc
        except requests.RequestException as exc:
            code, retryable = classify_failure(str(exc))
            raise TranscriptionError(f"Transcription failed: {exc}", code=code, retryable=retryable) from exc
        if not text.strip():
            raise TranscriptionError("No transcription returned", code=ASR_PROTOCOL_ERROR, retryable=True)
        log.info("transcription.final_ok", chunks=len(chunks), chars=len(text))
        return text.strip()

    def _request(self, chunks: Sequence[AudioChunk], priority: str, timeout_s: float, preprocess: bool) -> str:
        wav = prepare_upload(chunks, preprocess=preprocess)
        filename = "recording.wav" if priority == "high" else "partial_recording.wav"
        response = self._client.post(
            self._function_name,
            files={"audio": (filename, wav, "audio/wav")},
            headers={"X-Priority": priority},
            timeout_s=timeout_s,
        )
        if response.status_code >= 400:
            code, retryable = classify_failure("", status_code=response.status_code)
            raise TranscriptionError(
                f"Transcription failed: {response.status_code} {error_detail(response)}",
                code=code,
                retryable=retryable,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TranscriptionError("Transcription response is not JSON", retryable=True) from exc
        if not isinstance(payload, dict):
            raise TranscriptionError("Transcription response format is invalid", retryable=True)
        return str(payload.get("text") or "")
