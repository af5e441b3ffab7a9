"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
CAPTURE_FAILED = "CAPTURE_FAILED"
RECORDING_TOO_SHORT = "RECORDING_TOO_SHORT"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
PLAYBACK_TRANSPORT_ERROR = "PLAYBACK_TRANSPORT_ERROR"
ENTITLEMENT_REQUIRED = "ENTITLEMENT_REQUIRED"
SYNTHESIS_UNSUPPORTED = "SYNTHESIS_UNSUPPORTED"
CHAT_FAILED = "CHAT_FAILED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Could not access microphone. Please check permissions and try again.",
    CAPTURE_FAILED: "Could not start recording. Please try again.",
    RECORDING_TOO_SHORT: "Recording too short. Please try again.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "Not signed in or API token is invalid.",
    ASR_PROTOCOL_ERROR: "Failed to transcribe audio. Please try again or type your message.",
    PLAYBACK_TRANSPORT_ERROR: "There was an error playing the response. Using device voices instead.",
    ENTITLEMENT_REQUIRED: "Premium voices require a TrueNorth Pro subscription.",
    SYNTHESIS_UNSUPPORTED: "Speech synthesis is not supported on this device.",
    CHAT_FAILED: "Failed to get a response from the assistant.",
}


class VoiceChatError(Exception):
    code = ASR_PROTOCOL_ERROR

    def __init__(self, message: str = "", code: str | None = None, retryable: bool = False) -> None:
        if code is not None:
            self.code = code
        self.message = message or ERROR_MESSAGES.get(self.code, self.code)
        self.retryable = retryable
        super().__init__(self.message)


class PermissionDenied(VoiceChatError):
    code = PERMISSION_DENIED


class RecordingTooShort(VoiceChatError):
    code = RECORDING_TOO_SHORT


class TranscriptionError(VoiceChatError):
    code = ASR_PROTOCOL_ERROR


class PlaybackTransportError(VoiceChatError):
    code = PLAYBACK_TRANSPORT_ERROR


class EntitlementRequired(PlaybackTransportError):
    code = ENTITLEMENT_REQUIRED


class SynthesisUnsupported(VoiceChatError):
    code = SYNTHESIS_UNSUPPORTED


class ChatRelayError(VoiceChatError):
    code = CHAT_FAILED


def classify_failure(message: str, status_code: int | None = None) -> tuple[str, bool]:
    """Map an HTTP status or exception text to ``(code, retryable)``."""
    if status_code is not None:
        if status_code in (401, 403):
            return AUTH_FAILED, False
        if status_code == 402:
            return ENTITLEMENT_REQUIRED, False
        if status_code == 408 or status_code == 429 or status_code >= 500:
            return NETWORK_ERROR, True
        return ASR_PROTOCOL_ERROR, False
    low = message.lower()
    if "401" in low or "auth" in low or "token" in low:
        return AUTH_FAILED, False
    if "timeout" in low or "timed out" in low or "network" in low or "connection" in low:
        return NETWORK_ERROR, True
    return ASR_PROTOCOL_ERROR, True
