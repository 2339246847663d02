"""Microphone recorder adapter and permission probe."""

from __future__ import annotations

import logging
import threading
import time
from queue import Full, Queue
from typing import Any

from models import AudioFrame

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

log = logging.getLogger(__name__)


def frame_rms(pcm16: Any) -> float:
    """Root-mean-square level of int16 samples."""
    if np is None:
        return 0.0
    samples = np.asarray(pcm16, dtype=np.int16).astype(np.float32)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            if np is None:
                raise RuntimeError("numpy is not installed")
            self._audio_queue = audio_queue
            self.dropped_chunks = 0
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            if self.dropped_chunks:
                log.warning("Dropped %d audio chunks", self.dropped_chunks)
            self._emit_sentinel()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._audio_queue is None:
            return
        if status:
            log.debug("Input stream status: %s", status)
        samples = np.asarray(indata, dtype=np.int16)
        frame = AudioFrame(
            pcm16_bytes=samples.tobytes(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
            rms=frame_rms(samples),
        )
        try:
            self._audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            pass


class MicrophonePermission:
    """Checks that a usable input device can be opened."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.channels = channels

    def check(self) -> bool:
        if sd is None:
            log.warning("sounddevice is not installed, microphone unavailable")
            return False
        try:
            sd.check_input_settings(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
            )
        except Exception as exc:
            log.warning("Microphone unavailable: %s", exc)
            return False
        return True
