"""Protocol interfaces used by SessionController and its adapters."""

from __future__ import annotations

from queue import Queue
from typing import Callable, Protocol

from models import AudioFrame, CopyResult, EngineEvent, RecognitionConfig, SessionTuning

EngineEventCallback = Callable[[EngineEvent], None]


class SpeechEngine(Protocol):
    def start_capture(self, config: RecognitionConfig, on_event: EngineEventCallback) -> None: ...

    def stop_capture(self) -> None: ...

    def destroy(self) -> None: ...


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerBackend(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class ClipboardService(Protocol):
    def copy_text(self, text: str) -> CopyResult: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_language(self) -> str: ...

    def set_language(self, tag: str) -> None: ...

    def get_tuning(self) -> SessionTuning: ...
