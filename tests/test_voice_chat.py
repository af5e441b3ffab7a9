from __future__ import annotations

from typing import Callable, Optional
from unittest.mock import patch

import numpy as np
import pytest

from errors import (
    ASR_PROTOCOL_ERROR,
    PERMISSION_DENIED,
    RECORDING_TOO_SHORT,
    PermissionDenied,
    RecordingTooShort,
    SynthesisUnsupported,
    TranscriptionError,
)
from models import AudioChunk, MediaEvent, PlaybackStatus, SessionState, SoundEffect
from playback import PlaybackController, PlaybackResource
from voice_chat import VoiceChatOrchestrator, format_elapsed


class FakeStream:
    def __init__(self) -> None:
        self.listeners: list = []
        self.release_calls = 0

    def add_listener(self, listener) -> None:  # noqa: ANN001
        self.listeners.append(listener)

    def remove_listener(self, listener) -> None:  # noqa: ANN001
        if listener in self.listeners:
            self.listeners.remove(listener)

    def release(self) -> None:
        self.release_calls += 1


class FakeCapture:
    def __init__(self, fail: Optional[Exception] = None) -> None:
        self.fail = fail
        self.streams: list[FakeStream] = []

    def acquire(self, constraints=None) -> FakeStream:  # noqa: ANN001
        if self.fail is not None:
            raise self.fail
        stream = FakeStream()
        self.streams.append(stream)
        return stream


class FakeVAD:
    def __init__(self) -> None:
        self.on_speech_start: Optional[Callable[[], None]] = None
        self.on_speech_end: Optional[Callable[[], None]] = None
        self.on_noise_level: Optional[Callable[[float], None]] = None
        self.start_calls = 0
        self.stop_calls = 0

    def start(self, stream, on_speech_start, on_speech_end, on_noise_level=None) -> None:  # noqa: ANN001
        self.start_calls += 1
        self.on_speech_start = on_speech_start
        self.on_speech_end = on_speech_end
        self.on_noise_level = on_noise_level

    def stop(self) -> None:
        self.stop_calls += 1

    def speech_start(self) -> None:
        assert self.on_speech_start is not None
        self.on_speech_start()

    def speech_end(self) -> None:
        assert self.on_speech_end is not None
        self.on_speech_end()


def _chunk(index: int, size: int = 32000) -> AudioChunk:
    return AudioChunk(index=index, pcm16_bytes=bytes([index % 256]) * size, timestamp_ms=index * 1000)


class FakeRecorder:
    def __init__(self) -> None:
        self.on_chunk = None
        self.chunks: list[AudioChunk] = []
        self.running = False
        self.finalize_calls = 0
        self.discard_calls = 0

    def start(self, stream, on_chunk=None) -> None:  # noqa: ANN001
        self.running = True
        self.chunks = []
        self.on_chunk = on_chunk

    def push(self, count: int = 1) -> None:
        for _ in range(count):
            chunk = _chunk(len(self.chunks))
            self.chunks.append(chunk)
            if self.on_chunk is not None:
                self.on_chunk(chunk, len(self.chunks))

    def request_partial_flush(self, min_chunks: int = 1) -> Optional[list[AudioChunk]]:
        if not self.running or len(self.chunks) < min_chunks:
            return None
        return list(self.chunks)

    def finalize(self) -> Optional[list[AudioChunk]]:
        self.finalize_calls += 1
        if not self.running:
            return None
        self.running = False
        return list(self.chunks)

    def discard(self) -> None:
        self.discard_calls += 1
        self.running = False
        self.chunks = []


class FakeTranscriber:
    def __init__(self, final_text: str = "hello there", partial_text: str = "hello") -> None:
        self.final_text = final_text
        self.partial_text = partial_text
        self.final_error: Optional[Exception] = None
        self.partial_error: Optional[Exception] = None
        self.final_calls: list[list[AudioChunk]] = []
        self.partial_calls: list[list[AudioChunk]] = []

    def transcribe_partial(self, chunks) -> Optional[str]:  # noqa: ANN001
        self.partial_calls.append(list(chunks))
        if self.partial_error is not None:
            raise self.partial_error
        return self.partial_text

    def transcribe_final(self, chunks) -> str:  # noqa: ANN001
        self.final_calls.append(list(chunks))
        if self.final_error is not None:
            raise self.final_error
        return self.final_text


class FakeTimer:
    def __init__(self, delay_s: float, callback: Callable[[], None], repeating: bool) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self.repeating = repeating
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeTimers:
    def __init__(self) -> None:
        self.created: list[FakeTimer] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay_s, callback, repeating=False)
        self.created.append(timer)
        return timer

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval_s, callback, repeating=True)
        self.created.append(timer)
        return timer

    def pending(self, repeating: bool = False) -> list[FakeTimer]:
        return [t for t in self.created if t.repeating == repeating and not t.cancelled]


class ManualExecutor:
    """Runs submitted jobs only when the test says so."""

    def __init__(self) -> None:
        self.jobs: list = []

    def submit(self, fn, *args):  # noqa: ANN001, ANN201
        self.jobs.append((fn, args))

    def run_all(self) -> None:
        while self.jobs:
            fn, args = self.jobs.pop(0)
            fn(*args)

    def shutdown(self, wait: bool = True) -> None:
        pass


class FakeSounds:
    def __init__(self) -> None:
        self.played: list[SoundEffect] = []

    def play(self, effect: SoundEffect) -> None:
        self.played.append(effect)


class FakePlayback:
    def __init__(self, toggle_error: Optional[Exception] = None) -> None:
        self.toggled: list[str] = []
        self.played: list[str] = []
        self.stop_calls = 0
        self.closed = False
        self.toggle_error = toggle_error

    def toggle(self, text: str) -> None:
        self.toggled.append(text)
        if self.toggle_error is not None:
            raise self.toggle_error

    def play(self, text: str) -> None:
        self.played.append(text)

    def stop(self) -> None:
        self.stop_calls += 1

    def close(self) -> None:
        self.closed = True


class Harness:
    def __init__(self, **kwargs) -> None:  # noqa: ANN003
        self.capture = kwargs.pop("capture", FakeCapture())
        self.vad = FakeVAD()
        self.recorder = FakeRecorder()
        self.transcriber = kwargs.pop("transcriber", FakeTranscriber())
        self.timers = FakeTimers()
        self.executor = ManualExecutor()
        self.sounds = FakeSounds()
        self.playback = kwargs.pop("playback", FakePlayback())
        self.sent: list[str] = []
        self.states: list[tuple[SessionState, SessionState]] = []
        self.partials: list[str] = []
        self.errors: list[tuple[str, str]] = []
        self.feedback: list[Optional[str]] = []
        self.elapsed: list[int] = []
        self.controller = VoiceChatOrchestrator(
            capture=self.capture,
            vad=self.vad,
            recorder=self.recorder,
            transcriber=self.transcriber,
            on_send_message=self.sent.append,
            playback=self.playback,
            sounds=self.sounds,
            timers=self.timers,
            executor=self.executor,
            on_state_change=lambda a, b: self.states.append((a, b)),
            on_partial=kwargs.pop("on_partial", self.partials.append),
            on_error=kwargs.pop("on_error", lambda code, msg: self.errors.append((code, msg))),
            on_feedback=self.feedback.append,
            on_elapsed=self.elapsed.append,
            **kwargs,
        )


def test_normal_flow_sends_final_transcript_once() -> None:
    h = Harness()
    c = h.controller

    c.start()
    assert c.state == SessionState.RECORDING
    h.vad.speech_start()
    h.recorder.push(4)
    c.stop()
    assert c.state == SessionState.TRANSCRIBING
    assert c.partial_transcript == ""

    # The partial submitted at chunk 3 and the final job are both queued.
    h.executor.run_all()

    assert len(h.transcriber.final_calls) == 1
    assert [chunk.index for chunk in h.transcriber.final_calls[0]] == [0, 1, 2, 3]
    assert h.sent == ["hello there"]
    assert c.transcript == "hello there"
    assert c.state == SessionState.IDLE
    assert c.last_final is not None and c.last_final.text == "hello there"
    assert h.capture.streams[0].release_calls == 1
    assert h.recorder.finalize_calls == 1


def test_start_while_recording_is_noop() -> None:
    h = Harness()
    h.controller.start()
    h.controller.start()

    assert len(h.capture.streams) == 1
    assert h.vad.start_calls == 1
    assert h.controller.state == SessionState.RECORDING


def test_second_stop_is_noop() -> None:
    h = Harness()
    h.controller.start()
    h.recorder.push(2)
    h.controller.stop()
    h.controller.stop()

    assert h.recorder.finalize_calls == 1
    assert len(h.executor.jobs) == 1


def test_auto_stop_after_speech_end_transitions_once() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.vad.speech_start()
    h.recorder.push(2)
    h.vad.speech_end()

    (grace,) = h.timers.pending()
    assert grace.delay_s == pytest.approx(1.0)
    grace.fire()
    grace.fire()

    transcribing = [s for s in h.states if s[1] == SessionState.TRANSCRIBING]
    assert len(transcribing) == 1
    assert c.state == SessionState.TRANSCRIBING
    assert h.recorder.finalize_calls == 1


def test_speech_start_cancels_auto_stop() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.vad.speech_start()
    h.vad.speech_end()
    (grace,) = h.timers.pending()

    h.vad.speech_start()
    assert grace.cancelled
    grace.fire()
    assert c.state == SessionState.RECORDING


def test_auto_stop_disabled_keeps_recording() -> None:
    h = Harness(auto_stop_enabled=False)
    h.controller.start()
    h.vad.speech_start()
    h.vad.speech_end()

    assert h.timers.pending() == []
    assert h.controller.state == SessionState.RECORDING


def test_disabling_auto_stop_cancels_pending_grace() -> None:
    h = Harness()
    h.controller.start()
    h.vad.speech_start()
    h.vad.speech_end()
    (grace,) = h.timers.pending()

    h.controller.set_auto_stop(False)
    assert grace.cancelled


def test_partial_requests_are_single_flight() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.recorder.push(2)
    assert h.executor.jobs == []

    h.recorder.push(1)
    assert len(h.executor.jobs) == 1
    h.recorder.push(2)
    assert len(h.executor.jobs) == 1

    h.executor.run_all()
    assert h.partials == ["hello"]
    assert c.partial_transcript == "hello"
    assert c.session is not None and not c.session.partial_in_flight

    h.recorder.push(1)
    assert len(h.executor.jobs) == 1


def test_partial_failure_keeps_recording_without_error() -> None:
    transcriber = FakeTranscriber()
    transcriber.partial_error = ConnectionError("network down")
    h = Harness(transcriber=transcriber)
    c = h.controller
    c.start()
    h.recorder.push(3)
    h.executor.run_all()

    assert c.state == SessionState.RECORDING
    assert h.errors == []
    assert c.error is None
    assert c.partial_transcript == ""


def test_partial_is_never_merged_into_final() -> None:
    h = Harness()
    h.controller.start()
    h.recorder.push(3)
    h.controller.stop()
    h.executor.run_all()

    assert h.sent == ["hello there"]
    assert h.partials == []


def test_late_final_after_reset_is_discarded() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.recorder.push(2)
    c.stop()
    c.reset()
    h.executor.run_all()

    assert h.sent == []
    assert c.transcript == ""
    assert c.state == SessionState.IDLE


def test_reset_is_idempotent() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.recorder.push(1)

    c.reset()
    first = (c.state, c.transcript, c.partial_transcript, c.error, c.elapsed_seconds)
    c.reset()
    second = (c.state, c.transcript, c.partial_transcript, c.error, c.elapsed_seconds)

    assert first == second == (SessionState.IDLE, "", "", None, 0)
    assert h.timers.pending() == []
    assert h.timers.pending(repeating=True) == []
    assert h.capture.streams[0].release_calls == 1
    assert h.playback.stop_calls == 2


def test_reset_from_idle_never_raises() -> None:
    h = Harness()
    h.controller.reset()
    h.controller.reset()
    assert h.controller.state == SessionState.IDLE


def test_permission_denied_reports_error_and_stays_idle() -> None:
    h = Harness(capture=FakeCapture(fail=PermissionDenied("denied")))
    h.controller.start()

    assert h.controller.state == SessionState.IDLE
    assert h.errors and h.errors[0][0] == PERMISSION_DENIED
    assert h.controller.error is not None
    assert SoundEffect.ERROR in h.sounds.played
    assert h.vad.start_calls == 0


def test_recording_too_short_returns_to_idle() -> None:
    transcriber = FakeTranscriber()
    transcriber.final_error = RecordingTooShort()
    h = Harness(transcriber=transcriber)
    h.controller.start()
    h.controller.stop()
    h.executor.run_all()

    assert h.controller.state == SessionState.IDLE
    assert h.errors[0][0] == RECORDING_TOO_SHORT
    assert h.sent == []


def test_final_failure_moves_to_error_and_retry_returns_to_idle() -> None:
    transcriber = FakeTranscriber()
    transcriber.final_error = TranscriptionError("bad payload")
    h = Harness(transcriber=transcriber)
    c = h.controller
    c.start()
    h.recorder.push(2)
    c.stop()
    h.executor.run_all()

    assert c.state == SessionState.ERROR
    assert h.errors[-1][0] == ASR_PROTOCOL_ERROR
    assert c.error
    assert h.sent == []

    c.retry()
    assert c.state == SessionState.IDLE
    assert c.error is None


def test_start_from_error_begins_new_session() -> None:
    transcriber = FakeTranscriber()
    transcriber.final_error = TranscriptionError()
    h = Harness(transcriber=transcriber)
    c = h.controller
    c.start()
    c.stop()
    h.executor.run_all()
    assert c.state == SessionState.ERROR

    c.start()
    assert c.state == SessionState.RECORDING
    assert c.error is None
    assert len(h.capture.streams) == 2


def test_elapsed_ticker_counts_seconds_and_stops() -> None:
    h = Harness()
    c = h.controller
    c.start()
    (ticker,) = h.timers.pending(repeating=True)
    ticker.fire()
    ticker.fire()

    assert c.elapsed_seconds == 2
    assert h.elapsed == [1, 2]

    c.stop()
    assert ticker.cancelled


def test_feedback_and_sound_cues_follow_the_session() -> None:
    h = Harness()
    c = h.controller
    c.start()
    h.vad.speech_start()
    h.vad.speech_end()
    h.timers.pending()[0].fire()
    h.executor.run_all()

    assert h.feedback[:4] == [
        "Listening...",
        "I'm listening...",
        "Speech ended, processing...",
        "Transcribing your message...",
    ]
    assert h.sounds.played == [
        SoundEffect.START,
        SoundEffect.STOP,
        SoundEffect.PROCESSING,
        SoundEffect.SEND,
    ]


def test_play_response_toggles_playback_on_worker() -> None:
    h = Harness()
    h.controller.play_response("Test reply")
    assert h.playback.toggled == []

    h.executor.run_all()
    assert h.playback.toggled == ["Test reply"]


def test_play_response_reports_unsupported_synthesis() -> None:
    h = Harness(playback=FakePlayback(toggle_error=SynthesisUnsupported()))
    h.controller.play_response("Test reply")
    h.executor.run_all()

    assert h.errors and h.errors[0][0] == SynthesisUnsupported.code


class ReplySpeechClient:
    def __init__(self) -> None:
        self.texts: list[str] = []

    def synthesize(self, text: str, voice: str) -> bytes:
        self.texts.append(text)
        return b"RIFF-reply"


class ReplySink:
    def __init__(self) -> None:
        self.listener = None
        self.calls: list[str] = []

    def set_listener(self, listener) -> None:  # noqa: ANN001
        self.listener = listener

    def load(self, samples, sample_rate: int) -> None:  # noqa: ANN001
        pass

    def play(self) -> None:
        self.calls.append("play")
        self.listener(MediaEvent.PLAY)

    def pause(self) -> None:
        self.calls.append("pause")
        self.listener(MediaEvent.PAUSE)

    def resume(self) -> None:
        self.calls.append("resume")
        self.listener(MediaEvent.PLAY)

    def stop(self) -> None:
        self.calls.append("stop")

    def set_volume(self, gain: float) -> None:
        pass

    def close(self) -> None:
        pass


class NoDeviceVoice:
    def is_supported(self) -> bool:
        return False

    def set_listener(self, listener) -> None:  # noqa: ANN001
        pass

    def cancel(self) -> None:
        pass


def _reply_harness() -> tuple[Harness, PlaybackController, ReplySpeechClient, ReplySink]:
    client = ReplySpeechClient()
    sink = ReplySink()
    playback = PlaybackController(PlaybackResource(audio=sink, speech=NoDeviceVoice()), client)
    return Harness(playback=playback), playback, client, sink


@patch("playback.decode_audio", return_value=(np.zeros(240, dtype=np.float32), 24000))
def test_new_reply_replaces_playing_reply(_decode) -> None:  # noqa: ANN001
    h, playback, client, sink = _reply_harness()

    h.controller.speak_reply("first reply")
    h.executor.run_all()
    assert playback.state.status == PlaybackStatus.PLAYING

    h.controller.speak_reply("second reply")
    h.executor.run_all()

    assert client.texts == ["first reply", "second reply"]
    assert sink.calls == ["play", "stop", "play"]
    assert playback.state.status == PlaybackStatus.PLAYING


@patch("playback.decode_audio", return_value=(np.zeros(240, dtype=np.float32), 24000))
def test_new_reply_replaces_paused_reply(_decode) -> None:  # noqa: ANN001
    h, playback, client, sink = _reply_harness()
    h.controller.speak_reply("first reply")
    h.executor.run_all()
    h.controller.play_response("first reply")
    h.executor.run_all()
    assert playback.state.status == PlaybackStatus.PAUSED

    h.controller.speak_reply("second reply")
    h.executor.run_all()

    assert client.texts == ["first reply", "second reply"]
    assert "resume" not in sink.calls
    assert playback.state.status == PlaybackStatus.PLAYING


def test_speak_reply_plays_without_toggling() -> None:
    h = Harness()
    h.controller.speak_reply("Test reply")
    h.controller.speak_reply("")
    h.executor.run_all()

    assert h.playback.played == ["Test reply"]
    assert h.playback.toggled == []


def test_stop_without_audio_returns_to_idle() -> None:
    h = Harness()
    h.controller.start()
    h.recorder.running = False
    h.controller.stop()

    assert h.controller.state == SessionState.IDLE
    assert h.controller.session is None
    assert h.executor.jobs == []
    assert h.capture.streams[0].release_calls == 1

    h.controller.start()
    assert h.controller.state == SessionState.RECORDING


def test_failing_partial_callback_is_contained() -> None:
    def broken(text: str) -> None:
        raise RuntimeError("overlay gone")

    h = Harness(on_partial=broken)
    h.controller.start()
    h.recorder.push(3)
    h.executor.run_all()

    assert h.controller.partial_transcript == "hello"
    assert h.controller.session is not None
    assert not h.controller.session.partial_in_flight
    assert h.controller.state == SessionState.RECORDING


def test_failing_error_callback_still_moves_to_error() -> None:
    def broken(code: str, message: str) -> None:
        raise RuntimeError("overlay gone")

    transcriber = FakeTranscriber()
    transcriber.final_error = TranscriptionError("server exploded")
    h = Harness(transcriber=transcriber, on_error=broken)
    h.controller.start()
    h.recorder.push(2)
    h.controller.stop()
    h.executor.run_all()

    assert h.controller.state == SessionState.ERROR
    assert h.controller.error


def test_close_resets_and_closes_playback() -> None:
    h = Harness()
    h.controller.start()
    h.controller.close()

    assert h.controller.state == SessionState.IDLE
    assert h.playback.closed


def test_format_elapsed() -> None:
    assert format_elapsed(0) == "00:00"
    assert format_elapsed(65) == "01:05"
    assert format_elapsed(600) == "10:00"
