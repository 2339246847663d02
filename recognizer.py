"""Single-shot speech engine using DashScope qwen3-asr-flash.

The qwen3-asr-flash model accepts complete audio (file path, URL, or base64)
and streams back recognition results via ``stream=True``. Each capture cycle
records one utterance, ends it on silence, sends it as base64 WAV and reports
partial and final results through ``on_event``. The engine never restarts
itself; after a final result or an error the cycle is over.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import time
import wave
from queue import Empty, Queue
from typing import Callable, Optional

from errors import (
    CLIENT,
    NETWORK,
    NETWORK_TIMEOUT,
    NO_MATCH,
    RECOGNIZER_BUSY,
    SERVER,
    SPEECH_TIMEOUT,
)
from interfaces import EngineEventCallback, Recorder
from models import AudioFrame, EngineEvent, EngineEventKind, RecognitionConfig
from recorder import SoundDeviceRecorder

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

log = logging.getLogger(__name__)


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    wav_bytes = buf.getvalue()
    return base64.b64encode(wav_bytes).decode("ascii")


def _asr_language(tag: str) -> str:
    """``zh-CN`` -> ``zh``; qwen3-asr-flash takes bare language codes."""
    return tag.split("-", 1)[0].lower()


def _error_code_for_exception(exc: Exception) -> str:
    low = str(exc).lower()
    if "401" in low or "403" in low or "auth" in low or "api key" in low:
        return CLIENT
    if isinstance(exc, TimeoutError) or "timeout" in low or "timed out" in low:
        return NETWORK_TIMEOUT
    if isinstance(exc, ConnectionError) or "network" in low or "connection" in low:
        return NETWORK
    return SERVER


def _error_code_for_status(status_code: int) -> str:
    if status_code in (401, 403):
        return CLIENT
    if status_code == 429:
        return RECOGNIZER_BUSY
    if status_code >= 500:
        return SERVER
    return CLIENT


def _safe_stop(recorder: Recorder) -> None:
    try:
        recorder.stop()
    except Exception:
        log.exception("Recorder failed to stop")


class DashscopeSpeechEngine:
    """Speech engine that recognises one utterance per ``start_capture``.

    ``silence.complete_ms`` and ``silence.minimum_length_ms`` from the
    config control end-of-utterance detection; ``possibly_complete_ms`` has
    no equivalent here and is ignored. ``max_alternatives`` is ignored too,
    the model returns a single hypothesis.
    """

    def __init__(
        self,
        api_key: str,
        recorder_factory: Optional[Callable[[], Recorder]] = None,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        speech_threshold: float = 500.0,
        no_speech_timeout_s: float = 5.0,
        end_silence_ms: int = 800,
        queue_maxsize: int = 200,
    ) -> None:
        self._api_key = api_key
        self._recorder_factory = recorder_factory or SoundDeviceRecorder
        self._recorder: Optional[Recorder] = None
        self._model = model
        self._request_timeout_s = request_timeout_s
        self._speech_threshold = speech_threshold
        self._no_speech_timeout_s = no_speech_timeout_s
        self._end_silence_ms = end_silence_ms
        self._queue_maxsize = queue_maxsize
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start_capture(self, config: RecognitionConfig, on_event: EngineEventCallback) -> None:
        if self._thread and self._thread.is_alive():
            # A cancelled cycle may still be waiting on the service. It owns
            # its recorder and queue and reports nothing once stopped.
            log.debug("Previous capture still finishing, starting a new one")
            self.stop_capture()
        recorder = self._recorder_factory()
        stop_event = threading.Event()
        audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
        recorder.start(audio_queue)
        self._recorder = recorder
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._worker,
            args=(recorder, audio_queue, stop_event, config, on_event),
            daemon=True,
        )
        self._thread.start()

    def stop_capture(self) -> None:
        self._stop_event.set()
        if self._recorder is not None:
            _safe_stop(self._recorder)

    def destroy(self) -> None:
        self.stop_capture()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=0.5)
        self._thread = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _worker(
        self,
        recorder: Recorder,
        audio_queue: Queue[AudioFrame | None],
        stop_event: threading.Event,
        config: RecognitionConfig,
        on_event: EngineEventCallback,
    ) -> None:
        """Capture until end of utterance, then recognise."""

        def emit(kind: EngineEventKind, text: str = "", code: str = "") -> None:
            # Nothing is reported for a cancelled cycle.
            if not stop_event.is_set():
                on_event(EngineEvent(kind=kind.value, text=text, code=code))

        silence = config.silence
        end_silence_ms = self._end_silence_ms if silence.complete_ms is None else silence.complete_ms
        min_length_ms = 0 if silence.minimum_length_ms is None else silence.minimum_length_ms
        end_silence_s = end_silence_ms / 1000.0
        min_length_s = min_length_ms / 1000.0

        pcm = bytearray()
        sample_rate = 16000
        channels = 1
        started_at = time.monotonic()
        speech_at: Optional[float] = None
        last_voice_at = 0.0

        emit(EngineEventKind.READY)
        while not stop_event.is_set():
            try:
                frame = audio_queue.get(timeout=0.1)
            except Empty:
                frame = AudioFrame(pcm16_bytes=b"")
            if frame is None:  # Sentinel
                break
            now = time.monotonic()
            if frame.pcm16_bytes:
                pcm.extend(frame.pcm16_bytes)
                sample_rate = frame.sample_rate
                channels = frame.channels
                if frame.rms >= self._speech_threshold:
                    if speech_at is None:
                        speech_at = now
                        emit(EngineEventKind.BEGINNING_OF_SPEECH)
                    last_voice_at = now

            if speech_at is None:
                if now - started_at >= self._no_speech_timeout_s:
                    _safe_stop(recorder)
                    emit(EngineEventKind.ERROR, code=SPEECH_TIMEOUT)
                    return
                continue
            if now - last_voice_at >= end_silence_s and now - speech_at >= min_length_s:
                break

        if stop_event.is_set():
            return
        _safe_stop(recorder)
        emit(EngineEventKind.END_OF_SPEECH)

        if speech_at is None or not pcm:
            emit(EngineEventKind.ERROR, code=NO_MATCH)
            return

        wav_b64 = _pcm_to_wav_base64(bytes(pcm), sample_rate, channels)
        self._recognize_stream(wav_b64, config, emit, stop_event)

    def _recognize_stream(  # noqa: C901
        self,
        wav_base64: str,
        config: RecognitionConfig,
        emit: Callable[..., None],
        stop_event: threading.Event,
    ) -> None:
        """Send audio to dashscope and stream partial/final results."""
        if dashscope is None:
            log.error("dashscope is not installed")
            emit(EngineEventKind.ERROR, code=CLIENT)
            return

        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            log.error("No DashScope API key configured")
            emit(EngineEventKind.ERROR, code=CLIENT)
            return

        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_base64}]},
                ],
                result_format="message",
                asr_options={
                    "enable_itn": False,
                    "language": _asr_language(config.language_tag),
                },
                stream=True,
                timeout=self._request_timeout_s,
            )
        except Exception as exc:
            log.warning("Recognition request failed: %s", exc)
            emit(EngineEventKind.ERROR, code=_error_code_for_exception(exc))
            return

        latest_text = ""
        try:
            for chunk in response:
                if stop_event.is_set():
                    return
                status_code = self._extract_status(chunk)
                if status_code is not None and status_code != 200:
                    log.warning("Recognition returned HTTP %s", status_code)
                    emit(EngineEventKind.ERROR, code=_error_code_for_status(status_code))
                    return
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
                    if config.want_partial_results:
                        emit(EngineEventKind.PARTIAL, text=text)
        except Exception as exc:
            log.warning("Recognition stream failed: %s", exc)
            emit(EngineEventKind.ERROR, code=_error_code_for_exception(exc))
            return

        if not latest_text.strip():
            emit(EngineEventKind.ERROR, code=NO_MATCH)
            return
        emit(EngineEventKind.FINAL, text=latest_text)

    def _extract_status(self, chunk: object) -> Optional[int]:
        if isinstance(chunk, dict) and chunk.get("status_code") is not None:
            try:
                return int(chunk["status_code"])
            except (TypeError, ValueError):
                return None
        return None

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            output = chunk.get("output") or {}
            choices = output.get("choices", [])
            if not choices:
                return ""
            message = choices[0].get("message", {})
            content = message.get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""
