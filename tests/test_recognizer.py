"""Tests for DashscopeSpeechEngine."""

from __future__ import annotations

import base64
import threading
import time
from queue import Queue
from unittest.mock import MagicMock, patch

from errors import CLIENT, NETWORK, NETWORK_TIMEOUT, NO_MATCH, RECOGNIZER_BUSY, SPEECH_TIMEOUT
from models import AudioFrame, EngineEvent, EngineEventKind, RecognitionConfig, SilenceTimeouts
from recognizer import DashscopeSpeechEngine, _asr_language, _pcm_to_wav_base64


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

class FakeRecorder:
    def __init__(self, frames: list[AudioFrame] | None = None) -> None:
        self.frames = frames or []
        self.starts = 0
        self.stops = 0
        self.queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        self.starts += 1
        self.queue = audio_queue
        for frame in self.frames:
            audio_queue.put_nowait(frame)

    def stop(self) -> None:
        self.stops += 1


def _speech(n: int = 3) -> list[AudioFrame]:
    return [AudioFrame(pcm16_bytes=b"\x10\x00" * 1600, rms=1000.0) for _ in range(n)]


def _make_engine(recorder: FakeRecorder, api_key: str = "test-key", **kwargs) -> DashscopeSpeechEngine:  # noqa: ANN003
    options = {"no_speech_timeout_s": 0.3, "end_silence_ms": 100}
    options.update(kwargs)
    return DashscopeSpeechEngine(api_key=api_key, recorder_factory=lambda: recorder, **options)


def _wait_for_terminal(events: list[EngineEvent], *, timeout: float = 3.0) -> None:
    terminal = (EngineEventKind.FINAL.value, EngineEventKind.ERROR.value)
    deadline = time.time() + timeout
    while time.time() < deadline:
        if any(e.kind in terminal for e in events):
            return
        time.sleep(0.02)


def _kinds(events: list[EngineEvent]) -> list[str]:
    return [e.kind for e in events]


def _fake_streaming_response():  # noqa: ANN202
    yield {"output": {"choices": [{"message": {"content": [{"text": "你"}]}}]}}
    yield {"output": {"choices": [{"message": {"content": [{"text": "你好"}]}}]}}
    yield {"output": {"choices": [{"message": {"content": [{"text": "你好世界"}]}}]}}


def _errors(events: list[EngineEvent]) -> list[str]:
    return [e.code for e in events if e.kind == EngineEventKind.ERROR.value]


# ---------------------------------------------------------------
# Helpers under test
# ---------------------------------------------------------------

def test_pcm_to_wav_base64_produces_valid_base64() -> None:
    pcm = b"\x00\x00" * 1600
    result = _pcm_to_wav_base64(pcm, sample_rate=16000, channels=1)
    decoded = base64.b64decode(result)
    assert decoded[:4] == b"RIFF"


def test_asr_language_strips_region() -> None:
    assert _asr_language("zh-CN") == "zh"
    assert _asr_language("en-US") == "en"


# ---------------------------------------------------------------
# Full capture cycle
# ---------------------------------------------------------------

@patch("recognizer.dashscope")
def test_utterance_emits_lifecycle_partials_and_final(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _fake_streaming_response()
    recorder = FakeRecorder(_speech())
    engine = _make_engine(recorder)
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(language_tag="zh-CN"), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _kinds(events) == [
        EngineEventKind.READY.value,
        EngineEventKind.BEGINNING_OF_SPEECH.value,
        EngineEventKind.END_OF_SPEECH.value,
        EngineEventKind.PARTIAL.value,
        EngineEventKind.PARTIAL.value,
        EngineEventKind.PARTIAL.value,
        EngineEventKind.FINAL.value,
    ]
    assert events[-1].text == "你好世界"
    assert recorder.stops >= 1
    call_kwargs = mock_ds.MultiModalConversation.call.call_args.kwargs
    assert call_kwargs["asr_options"]["language"] == "zh"
    assert call_kwargs["stream"] is True


@patch("recognizer.dashscope")
def test_partials_are_suppressed_when_not_wanted(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _fake_streaming_response()
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(want_partial_results=False), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert EngineEventKind.PARTIAL.value not in _kinds(events)
    assert events[-1].text == "你好世界"


@patch("recognizer.dashscope")
def test_no_speech_emits_speech_timeout(mock_ds: MagicMock) -> None:
    recorder = FakeRecorder()
    engine = _make_engine(recorder)
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [SPEECH_TIMEOUT]
    assert EngineEventKind.BEGINNING_OF_SPEECH.value not in _kinds(events)
    mock_ds.MultiModalConversation.call.assert_not_called()


@patch("recognizer.dashscope")
def test_empty_recognition_emits_no_match(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = iter(
        [{"output": {"choices": [{"message": {"content": []}}]}}]
    )
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [NO_MATCH]


# ---------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------

@patch("recognizer.dashscope", MagicMock())
@patch.dict("os.environ", {"DASHSCOPE_API_KEY": ""}, clear=False)
def test_missing_api_key_emits_client_error() -> None:
    engine = _make_engine(FakeRecorder(_speech()), api_key="")
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [CLIENT]


@patch("recognizer.dashscope", None)
def test_dashscope_not_installed_emits_client_error() -> None:
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [CLIENT]


@patch("recognizer.dashscope")
def test_connection_error_maps_to_network(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = ConnectionError("connection refused")
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [NETWORK]


@patch("recognizer.dashscope")
def test_timeout_maps_to_network_timeout(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = ConnectionError("network timeout")
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [NETWORK_TIMEOUT]


@patch("recognizer.dashscope")
def test_auth_error_maps_to_client(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.side_effect = Exception("401 Unauthorized: invalid api key")
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [CLIENT]


@patch("recognizer.dashscope")
def test_throttled_response_maps_to_busy(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = iter([{"status_code": 429, "output": None}])
    engine = _make_engine(FakeRecorder(_speech()))
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert _errors(events) == [RECOGNIZER_BUSY]


# ---------------------------------------------------------------
# Cancellation and overlap
# ---------------------------------------------------------------

@patch("recognizer.dashscope")
def test_stop_capture_cancels_without_recognition(mock_ds: MagicMock) -> None:
    recorder = FakeRecorder()
    engine = _make_engine(recorder, no_speech_timeout_s=5.0)
    events: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), events.append)
    time.sleep(0.1)
    engine.stop_capture()
    time.sleep(0.3)
    engine.destroy()

    assert _kinds(events) == [EngineEventKind.READY.value]
    assert recorder.stops >= 1
    mock_ds.MultiModalConversation.call.assert_not_called()


@patch("recognizer.dashscope")
def test_restart_does_not_wait_for_a_cancelled_request(mock_ds: MagicMock) -> None:
    release = threading.Event()

    def _slow_call(**kwargs):  # noqa: ANN003, ANN202
        release.wait(timeout=2.0)
        return _fake_streaming_response()

    mock_ds.MultiModalConversation.call.side_effect = _slow_call
    recorders = [FakeRecorder(_speech()), FakeRecorder(_speech())]
    engine = DashscopeSpeechEngine(
        api_key="test-key",
        recorder_factory=iter(recorders).__next__,
        no_speech_timeout_s=0.3,
        end_silence_ms=100,
    )
    first: list[EngineEvent] = []
    second: list[EngineEvent] = []

    engine.start_capture(RecognitionConfig(), first.append)
    deadline = time.time() + 2.0
    while not mock_ds.MultiModalConversation.call.called and time.time() < deadline:
        time.sleep(0.02)
    engine.stop_capture()

    engine.start_capture(RecognitionConfig(), second.append)
    release.set()
    _wait_for_terminal(second)
    time.sleep(0.1)
    engine.destroy()

    assert _errors(second) == []
    assert second[-1].kind == EngineEventKind.FINAL.value
    assert EngineEventKind.FINAL.value not in _kinds(first)
    assert recorders[0].starts == 1
    assert recorders[1].starts == 1


@patch("recognizer.dashscope")
def test_zero_complete_silence_is_honoured(mock_ds: MagicMock) -> None:
    mock_ds.MultiModalConversation.call.return_value = _fake_streaming_response()
    engine = _make_engine(FakeRecorder(_speech()), end_silence_ms=10_000)
    events: list[EngineEvent] = []

    config = RecognitionConfig(silence=SilenceTimeouts(complete_ms=0))
    engine.start_capture(config, events.append)
    _wait_for_terminal(events)
    engine.destroy()

    assert events[-1].kind == EngineEventKind.FINAL.value
