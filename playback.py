"""Assistant reply playback with remote-voice to on-device fallback."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from errors import ERROR_MESSAGES, ENTITLEMENT_REQUIRED, PlaybackTransportError, SynthesisUnsupported
from interfaces import AudioSink, LocalSpeechEngine, SpeechClient
from logging_setup import get_logger
from models import (
    LocalSynthesis,
    MediaEvent,
    PlaybackBackend,
    PlaybackState,
    PlaybackStatus,
    RemoteAudio,
    SynthesisOutcome,
    Unsupported,
    VoiceProfile,
    find_voice_profile,
)
from sound_effects import AudioSettings
from speech_client import decode_audio

log = get_logger(__name__)

StatusCallback = Callable[[PlaybackStatus, PlaybackStatus], None]
NoticeCallback = Callable[[str], None]

_TRANSITIONS: dict[tuple[PlaybackStatus, MediaEvent], PlaybackStatus] = {
    (PlaybackStatus.STOPPED, MediaEvent.PLAY): PlaybackStatus.PLAYING,
    (PlaybackStatus.PAUSED, MediaEvent.PLAY): PlaybackStatus.PLAYING,
    (PlaybackStatus.PLAYING, MediaEvent.PAUSE): PlaybackStatus.PAUSED,
    (PlaybackStatus.PLAYING, MediaEvent.ENDED): PlaybackStatus.STOPPED,
    (PlaybackStatus.PAUSED, MediaEvent.ENDED): PlaybackStatus.STOPPED,
    (PlaybackStatus.PLAYING, MediaEvent.ERROR): PlaybackStatus.STOPPED,
    (PlaybackStatus.PAUSED, MediaEvent.ERROR): PlaybackStatus.STOPPED,
}


@dataclass
class PlaybackResource:
    """The output devices owned by one PlaybackController."""

    audio: AudioSink
    speech: LocalSpeechEngine

    def close(self) -> None:
        self.audio.close()
        self.speech.cancel()


class PlaybackController:
    def __init__(
        self,
        resource: PlaybackResource,
        speech_client: SpeechClient,
        settings: Optional[AudioSettings] = None,
        voice: Optional[VoiceProfile] = None,
        on_status_change: Optional[StatusCallback] = None,
        on_notice: Optional[NoticeCallback] = None,
    ) -> None:
        self._resource = resource
        self._speech_client = speech_client
        self._settings = settings or AudioSettings()
        self._on_status_change = on_status_change
        self._on_notice = on_notice
        self._lock = threading.RLock()
        self._status = PlaybackStatus.STOPPED
        self._voice = voice or find_voice_profile("alloy")
        self._backend = PlaybackBackend.NONE
        self._generation = 0

    @property
    def state(self) -> PlaybackState:
        return PlaybackState(
            status=self._status,
            voice_profile=self._voice,
            volume=self._settings.volume,
            muted=self._settings.muted,
        )

    @property
    def backend(self) -> PlaybackBackend:
        return self._backend

    @property
    def settings(self) -> AudioSettings:
        return self._settings

    def play(self, text: str, voice: Optional[VoiceProfile] = None) -> Optional[SynthesisOutcome]:
        if not text or not text.strip():
            return None
        with self._lock:
            self._stop_backends()
            self._set_status(PlaybackStatus.STOPPED)
            self._generation += 1
            generation = self._generation
            profile = voice or self._voice

        outcome = self.synthesize(text, profile)

        with self._lock:
            if generation != self._generation:
                log.info("playback.superseded", voice=profile.id)
                return outcome
            if isinstance(outcome, RemoteAudio):
                try:
                    self._start_remote(generation, outcome)
                    return outcome
                except Exception as exc:
                    log.warning("playback.remote_device_failed", error=str(exc))
                    self._stop_backends()
                    outcome = self._fallback(text, str(exc), entitlement_required=False)
            if isinstance(outcome, LocalSynthesis):
                if outcome.entitlement_required:
                    self._notice(ERROR_MESSAGES[ENTITLEMENT_REQUIRED])
                self._start_local(generation, outcome.text)
                return outcome
            raise SynthesisUnsupported(ERROR_MESSAGES[SynthesisUnsupported.code] + f" ({outcome.reason})")

    def synthesize(self, text: str, voice: VoiceProfile) -> SynthesisOutcome:
        """Resolve how ``text`` will be voiced without starting playback."""
        try:
            audio_bytes = self._speech_client.synthesize(text, voice.id)
            samples, sample_rate = decode_audio(audio_bytes)
        except PlaybackTransportError as exc:
            entitlement = exc.code == ENTITLEMENT_REQUIRED
            log.info("playback.fallback", reason=exc.message, entitlement_required=entitlement)
            return self._fallback(text, exc.message, entitlement_required=entitlement)
        return RemoteAudio(audio_bytes=audio_bytes, samples=samples, sample_rate=sample_rate)

    def toggle(self, text: str) -> Optional[SynthesisOutcome]:
        with self._lock:
            status = self._status
        if status == PlaybackStatus.PLAYING:
            self.pause()
            return None
        if status == PlaybackStatus.PAUSED:
            self.resume()
            return None
        return self.play(text)

    def pause(self) -> None:
        with self._lock:
            if self._status != PlaybackStatus.PLAYING:
                return
            if self._backend == PlaybackBackend.REMOTE:
                self._resource.audio.pause()
            elif self._backend == PlaybackBackend.LOCAL:
                self._resource.speech.pause()

    def resume(self) -> None:
        with self._lock:
            if self._status != PlaybackStatus.PAUSED:
                return
            if self._backend == PlaybackBackend.REMOTE:
                self._resource.audio.resume()
            elif self._backend == PlaybackBackend.LOCAL:
                self._resource.speech.resume()

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            self._stop_backends()
            self._set_status(PlaybackStatus.STOPPED)

    def set_volume(self, volume: int) -> None:
        with self._lock:
            self._settings.volume = max(0, min(100, int(volume)))
            self._apply_gain()

    def set_muted(self, muted: bool) -> None:
        with self._lock:
            self._settings.muted = bool(muted)
            self._apply_gain()

    def set_voice(self, voice_id: str) -> VoiceProfile:
        profile = find_voice_profile(voice_id)
        with self._lock:
            self._voice = profile
        return profile

    def handle_media_event(self, event: MediaEvent) -> PlaybackStatus:
        """Apply one backend event to the playback state machine."""
        with self._lock:
            target = _TRANSITIONS.get((self._status, event))
            if target is None:
                return self._status
            self._set_status(target)
            if target == PlaybackStatus.STOPPED:
                self._backend = PlaybackBackend.NONE
            return target

    def close(self) -> None:
        self.stop()
        self._resource.close()

    def _start_remote(self, generation: int, outcome: RemoteAudio) -> None:
        audio = self._resource.audio
        audio.set_listener(lambda event: self._on_backend_event(generation, event))
        audio.load(outcome.samples, outcome.sample_rate)
        audio.set_volume(self._settings.gain)
        self._backend = PlaybackBackend.REMOTE
        audio.play()

    def _start_local(self, generation: int, text: str) -> None:
        speech = self._resource.speech
        speech.set_listener(lambda event: self._on_backend_event(generation, event))
        self._backend = PlaybackBackend.LOCAL
        speech.speak(text, self._settings.gain)

    def _fallback(self, text: str, reason: str, entitlement_required: bool) -> SynthesisOutcome:
        if self._resource.speech.is_supported():
            return LocalSynthesis(text=text, reason=reason, entitlement_required=entitlement_required)
        return Unsupported(reason=reason)

    def _on_backend_event(self, generation: int, event: MediaEvent) -> None:
        with self._lock:
            if generation != self._generation:
                return
        self.handle_media_event(event)

    def _stop_backends(self) -> None:
        if self._backend == PlaybackBackend.REMOTE:
            self._resource.audio.stop()
        elif self._backend == PlaybackBackend.LOCAL:
            self._resource.speech.cancel()
        self._backend = PlaybackBackend.NONE

    def _apply_gain(self) -> None:
        # On-device speech restarts the utterance at the new gain.
        gain = self._settings.gain
        if self._backend == PlaybackBackend.REMOTE:
            self._resource.audio.set_volume(gain)
        elif self._backend == PlaybackBackend.LOCAL:
            self._resource.speech.set_volume(gain)

    def _notice(self, message: str) -> None:
        if self._on_notice:
            self._on_notice(message)

    def _set_status(self, to_status: PlaybackStatus) -> None:
        from_status = self._status
        if from_status == to_status:
            return
        self._status = to_status
        if self._on_status_change:
            self._on_status_change(from_status, to_status)
