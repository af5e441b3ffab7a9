"""State-machine based voice chat orchestration."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional, Sequence

from errors import (
    ASR_PROTOCOL_ERROR,
    CAPTURE_FAILED,
    ERROR_MESSAGES,
    PLAYBACK_TRANSPORT_ERROR,
    PermissionDenied,
    RecordingTooShort,
    SynthesisUnsupported,
    VoiceChatError,
)
from interfaces import (
    ActivityDetector,
    CaptureSource,
    CaptureStream,
    Recorder,
    SoundPlayer,
    TimerFactory,
    TimerHandle,
    Transcriber,
)
from logging_setup import get_logger
from models import (
    AudioChunk,
    CaptureConstraints,
    FinalTranscript,
    RecordingSession,
    SessionState,
    SoundEffect,
)
from playback import PlaybackController
from timers import ThreadingTimerFactory
from visualizer import VisualizerFeed

log = get_logger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TextCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]
FeedbackCallback = Callable[[Optional[str]], None]
ElapsedCallback = Callable[[int], None]
LevelsCallback = Callable[[list[float]], None]


class VoiceChatOrchestrator:
    def __init__(
        self,
        capture: CaptureSource,
        vad: ActivityDetector,
        recorder: Recorder,
        transcriber: Transcriber,
        on_send_message: TextCallback,
        playback: Optional[PlaybackController] = None,
        sounds: Optional[SoundPlayer] = None,
        visualizer: Optional[VisualizerFeed] = None,
        timers: Optional[TimerFactory] = None,
        executor: Optional[Executor] = None,
        auto_stop_enabled: bool = True,
        auto_stop_delay_s: float = 1.0,
        min_partial_chunks: int = 3,
        constraints: Optional[CaptureConstraints] = None,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_feedback: Optional[FeedbackCallback] = None,
        on_elapsed: Optional[ElapsedCallback] = None,
        on_levels: Optional[LevelsCallback] = None,
    ) -> None:
        self._capture = capture
        self._vad = vad
        self._recorder = recorder
        self._transcriber = transcriber
        self._on_send_message = on_send_message
        self._playback = playback
        self._sounds = sounds
        self._visualizer = visualizer or VisualizerFeed()
        self._timers = timers or ThreadingTimerFactory()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=3, thread_name_prefix="voice-chat")
        self.auto_stop_enabled = auto_stop_enabled
        self.auto_stop_delay_s = auto_stop_delay_s
        self.min_partial_chunks = min_partial_chunks
        self._constraints = constraints or CaptureConstraints()
        self._on_state_change = on_state_change
        self._on_partial = on_partial
        self._on_error = on_error
        self._on_feedback = on_feedback
        self._on_elapsed = on_elapsed
        self._on_levels = on_levels

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session_id = 0
        self._session: Optional[RecordingSession] = None
        self._stream: Optional[CaptureStream] = None
        self._ticker: Optional[TimerHandle] = None
        self._auto_stop_timer: Optional[TimerHandle] = None
        self._transcript = ""
        self._partial_transcript = ""
        self._final: Optional[FinalTranscript] = None
        self._error: Optional[str] = None
        self._elapsed_seconds = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transcript(self) -> str:
        return self._transcript

    @property
    def partial_transcript(self) -> str:
        return self._partial_transcript

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed_seconds

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def last_final(self) -> Optional[FinalTranscript]:
        return self._final

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._state not in (SessionState.IDLE, SessionState.ERROR):
                return
            self._session_id += 1
            session_id = self._session_id
            self._transcript = ""
            self._partial_transcript = ""
            self._final = None
            self._error = None
            self._elapsed_seconds = 0
            self._feedback("Listening...")
            self._play_sound(SoundEffect.START)

            try:
                stream = self._capture.acquire(self._constraints)
            except PermissionDenied as exc:
                log.warning("session.permission_denied", error=str(exc))
                self._start_failed(PermissionDenied.code, ERROR_MESSAGES[PermissionDenied.code])
                return
            except Exception as exc:
                log.exception("session.capture_failed")
                self._start_failed(CAPTURE_FAILED, f"{ERROR_MESSAGES[CAPTURE_FAILED]} ({exc})")
                return

            self._stream = stream
            self._session = RecordingSession(session_id=session_id, started_at=time.time())
            try:
                self._vad.start(
                    stream,
                    on_speech_start=lambda: self._handle_speech_start(session_id),
                    on_speech_end=lambda: self._handle_speech_end(session_id),
                    on_noise_level=lambda level: self._handle_noise_level(session_id, level),
                )
                self._recorder.start(stream, on_chunk=lambda chunk, count: self._handle_chunk(session_id, count))
            except Exception as exc:
                log.exception("session.start_failed")
                self._teardown_capture()
                self._session = None
                self._start_failed(CAPTURE_FAILED, f"{ERROR_MESSAGES[CAPTURE_FAILED]} ({exc})")
                return

            self._ticker = self._timers.call_every(1.0, lambda: self._tick(session_id))
            self._transition(SessionState.RECORDING)
            log.info("session.started", session_id=session_id, auto_stop=self.auto_stop_enabled)

    def stop(self) -> None:
        with self._lock:
            if self._state != SessionState.RECORDING:
                return
            session = self._session
            session_id = self._session_id
            self._cancel_timers()
            self._vad.stop()
            chunks = self._recorder.finalize()
            self._release_stream()
            self._publish_levels(self._visualizer.reset())
            self._play_sound(SoundEffect.STOP)
            if chunks is None or session is None:
                log.warning("session.stopped_without_audio", session_id=session_id)
                self._session = None
                self._elapsed_seconds = 0
                self._transition(SessionState.IDLE)
                self._feedback(None)
                return
            session.audio_chunks = chunks
            session.status = SessionState.TRANSCRIBING
            self._partial_transcript = ""
            self._transition(SessionState.TRANSCRIBING)
            self._feedback("Transcribing your message...")
            self._play_sound(SoundEffect.PROCESSING)
            log.info("session.finalizing", session_id=session_id, chunks=len(chunks))
        self._executor.submit(self._run_final, session_id, chunks)

    def reset(self) -> None:
        with self._lock:
            self._session_id += 1
            self._cancel_timers()
            self._vad.stop()
            self._recorder.discard()
            self._release_stream()
            if self._playback is not None:
                self._playback.stop()
            self._session = None
            self._transcript = ""
            self._partial_transcript = ""
            self._final = None
            self._error = None
            self._elapsed_seconds = 0
            self._publish_levels(self._visualizer.reset())
            self._transition(SessionState.IDLE)
            self._feedback(None)

    def retry(self) -> None:
        with self._lock:
            if self._state != SessionState.ERROR:
                return
            self._error = None
            self._transition(SessionState.IDLE)
            self._feedback(None)

    def set_auto_stop(self, enabled: bool) -> None:
        with self._lock:
            self.auto_stop_enabled = enabled
            if not enabled:
                self._cancel_auto_stop()

    def play_response(self, text: str) -> None:
        if self._playback is None or not text:
            return
        self._executor.submit(self._run_playback, text, True)

    def speak_reply(self, text: str) -> None:
        """Synthesize and play a newly arrived reply, replacing any current playback."""
        if self._playback is None or not text:
            return
        self._executor.submit(self._run_playback, text, False)

    def close(self) -> None:
        self.reset()
        if self._playback is not None:
            self._playback.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Worker jobs
    # ------------------------------------------------------------------

    def _run_partial(self, session_id: int, chunks: Sequence[AudioChunk]) -> None:
        text: Optional[str] = None
        try:
            text = self._transcriber.transcribe_partial(chunks)
        except Exception as exc:
            log.warning("transcription.partial_failed", session_id=session_id, error=str(exc))
        with self._lock:
            if session_id != self._session_id or self._session is None:
                return
            self._session.partial_in_flight = False
            if not text or self._state != SessionState.RECORDING:
                return
            self._partial_transcript = text
            if self._on_partial:
                try:
                    self._on_partial(text)
                except Exception:
                    log.exception("session.partial_callback_failed", session_id=session_id)

    def _run_final(self, session_id: int, chunks: Sequence[AudioChunk]) -> None:
        try:
            text = self._transcriber.transcribe_final(chunks)
        except RecordingTooShort as exc:
            with self._lock:
                if not self._is_current(session_id, SessionState.TRANSCRIBING):
                    log.info("transcription.discarded", session_id=session_id)
                    return
                self._session = None
                self._error = exc.message
                self._emit_error(exc.code, exc.message)
                self._transition(SessionState.IDLE)
                self._feedback(None)
            return
        except Exception as exc:
            code = exc.code if isinstance(exc, VoiceChatError) else ASR_PROTOCOL_ERROR
            log.warning("transcription.final_failed", session_id=session_id, code=code, error=str(exc))
            with self._lock:
                if not self._is_current(session_id, SessionState.TRANSCRIBING):
                    log.info("transcription.discarded", session_id=session_id)
                    return
                self._session = None
                self._error = ERROR_MESSAGES.get(code, ERROR_MESSAGES[ASR_PROTOCOL_ERROR])
                self._play_sound(SoundEffect.ERROR)
                self._transition(SessionState.ERROR)
                self._emit_error(code, self._error)
                self._feedback(None)
            return

        with self._lock:
            if not self._is_current(session_id, SessionState.TRANSCRIBING):
                log.info("transcription.discarded", session_id=session_id)
                return
            self._final = FinalTranscript(text=text, session_id=session_id)
            self._transcript = text
            self._session = None
            self._elapsed_seconds = 0
            self._play_sound(SoundEffect.SEND)
            self._transition(SessionState.IDLE)
            self._feedback(None)
            try:
                self._on_send_message(text)
            except Exception:
                log.exception("session.send_message_failed", session_id=session_id)
            log.info("session.completed", session_id=session_id, chars=len(text))

    def _run_playback(self, text: str, toggle: bool) -> None:
        if self._playback is None:
            return
        try:
            if toggle:
                self._playback.toggle(text)
            else:
                self._playback.play(text)
        except SynthesisUnsupported as exc:
            self._emit_error(exc.code, exc.message)
        except Exception as exc:
            log.exception("playback.failed")
            self._emit_error(PLAYBACK_TRANSPORT_ERROR, str(exc))

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_chunk(self, session_id: int, buffered: int) -> None:
        with self._lock:
            session = self._session
            if not self._is_current(session_id, SessionState.RECORDING) or session is None:
                return
            if buffered < self.min_partial_chunks or session.partial_in_flight:
                return
            chunks = self._recorder.request_partial_flush(self.min_partial_chunks)
            if chunks is None:
                return
            session.partial_in_flight = True
        self._executor.submit(self._run_partial, session_id, chunks)

    def _handle_speech_start(self, session_id: int) -> None:
        with self._lock:
            if not self._is_current(session_id, SessionState.RECORDING):
                return
            self._cancel_auto_stop()
            self._feedback("I'm listening...")

    def _handle_speech_end(self, session_id: int) -> None:
        with self._lock:
            if not self._is_current(session_id, SessionState.RECORDING) or not self.auto_stop_enabled:
                return
            self._feedback("Speech ended, processing...")
            self._cancel_auto_stop()
            self._auto_stop_timer = self._timers.call_later(
                self.auto_stop_delay_s, lambda: self._auto_stop(session_id)
            )

    def _auto_stop(self, session_id: int) -> None:
        with self._lock:
            if not self._is_current(session_id, SessionState.RECORDING):
                return
            self._auto_stop_timer = None
            log.info("session.auto_stop", session_id=session_id)
        self.stop()

    def _handle_noise_level(self, session_id: int, level: float) -> None:
        with self._lock:
            if not self._is_current(session_id, SessionState.RECORDING):
                return
            levels = self._visualizer.update(level)
        self._publish_levels(levels)

    def _tick(self, session_id: int) -> None:
        with self._lock:
            if not self._is_current(session_id, SessionState.RECORDING) or self._session is None:
                return
            self._elapsed_seconds += 1
            self._session.elapsed_seconds = self._elapsed_seconds
            elapsed = self._elapsed_seconds
        if self._on_elapsed:
            self._on_elapsed(elapsed)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_current(self, session_id: int, state: SessionState) -> bool:
        return session_id == self._session_id and self._state == state

    def _start_failed(self, code: str, message: str) -> None:
        self._error = message
        self._play_sound(SoundEffect.ERROR)
        self._emit_error(code, message)
        self._feedback(None)

    def _cancel_auto_stop(self) -> None:
        if self._auto_stop_timer is not None:
            self._auto_stop_timer.cancel()
            self._auto_stop_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_auto_stop()
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _release_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.release()
            except Exception:
                log.exception("capture.release_failed")

    def _teardown_capture(self) -> None:
        self._vad.stop()
        self._recorder.discard()
        self._release_stream()

    def _play_sound(self, effect: SoundEffect) -> None:
        if self._sounds is not None:
            self._sounds.play(effect)

    def _publish_levels(self, levels: list[float]) -> None:
        if self._on_levels:
            self._on_levels(levels)

    def _feedback(self, message: Optional[str]) -> None:
        if self._on_feedback:
            self._on_feedback(message)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            try:
                self._on_error(code, message)
            except Exception:
                log.exception("session.error_callback_failed", code=code)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)


def format_elapsed(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"
