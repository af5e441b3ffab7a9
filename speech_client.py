"""Text-to-speech client for the hosted OpenAI TTS function."""

from __future__ import annotations

import io
from typing import Any

import requests

from edge_functions import EdgeFunctionClient, error_detail
from errors import EntitlementRequired, PlaybackTransportError, VoiceChatError, classify_failure
from logging_setup import get_logger

try:
    import soundfile as sf
except Exception:  # pragma: no cover
    sf = None  # type: ignore

log = get_logger(__name__)


class OpenAITTSClient:
    def __init__(
        self,
        client: EdgeFunctionClient,
        function_name: str = "openai-tts",
        timeout_s: float = 20.0,
    ) -> None:
        self._client = client
        self._function_name = function_name
        self._timeout_s = timeout_s

    def synthesize(self, text: str, voice: str) -> bytes:
        """Return encoded audio bytes for ``text`` spoken by ``voice``.

        Raises EntitlementRequired on HTTP 402 and PlaybackTransportError on
        any other failure.
        """
        try:
            response = self._client.post(
                self._function_name,
                json={"text": text, "voice": voice},
                headers={"Content-Type": "application/json"},
                timeout_s=self._timeout_s,
            )
        except requests.RequestException as exc:
            _, retryable = classify_failure(str(exc))
            raise PlaybackTransportError(f"TTS request failed: {exc}", retryable=retryable) from exc
        except VoiceChatError as exc:
            raise PlaybackTransportError(exc.message) from exc

        if response.status_code == 402:
            raise EntitlementRequired()
        if response.status_code >= 400:
            raise PlaybackTransportError(f"TTS request failed: {response.status_code} {error_detail(response)}")
        if not response.content:
            raise PlaybackTransportError("TTS response was empty")
        log.debug("tts.received", voice=voice, bytes=len(response.content))
        return response.content


def decode_audio(data: bytes) -> tuple[Any, int]:
    """Decode encoded audio into mono float32 samples and a sample rate."""
    if sf is None:
        raise PlaybackTransportError("soundfile is not installed")
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
    except Exception as exc:
        raise PlaybackTransportError(f"undecodable audio: {exc}") from exc
    if getattr(samples, "ndim", 1) == 2:
        samples = samples.mean(axis=1)
    return samples, int(sample_rate)
