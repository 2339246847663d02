"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

DEFAULT_LANGUAGE = "en-US"
SUPPORTED_LANGUAGES = {
    "en-US": "English",
    "zh-CN": "Chinese",
}


class SessionState(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    AWAITING_RESTART = "AWAITING_RESTART"
    STOPPING = "STOPPING"


class EngineEventKind(str, Enum):
    READY = "ready"
    BEGINNING_OF_SPEECH = "beginning_of_speech"
    PARTIAL = "partial"
    FINAL = "final"
    END_OF_SPEECH = "end_of_speech"
    ERROR = "error"


class RestartReason(str, Enum):
    NATURAL_END = "natural_end"
    RETRYABLE_ERROR = "retryable_error"
    TRANSIENT_NO_MATCH = "transient_no_match"


class DecisionKind(str, Enum):
    IGNORE = "ignore"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0
    rms: float = 0.0


@dataclass
class EngineEvent:
    kind: str
    text: str = ""
    code: str = ""


@dataclass(frozen=True)
class RestartRequest:
    request_id: int
    reason: RestartReason
    delay_ms: int = 0

    def __post_init__(self) -> None:
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")


@dataclass(frozen=True)
class ErrorDecision:
    kind: DecisionKind
    delay_ms: int = 0
    reason: Optional[RestartReason] = None
    message: str = ""


@dataclass(frozen=True)
class SilenceTimeouts:
    """Engine silence tunables in milliseconds; ``None`` keeps the engine default."""

    complete_ms: Optional[int] = None
    possibly_complete_ms: Optional[int] = None
    minimum_length_ms: Optional[int] = None


@dataclass(frozen=True)
class RecognitionConfig:
    language_tag: str = DEFAULT_LANGUAGE
    want_partial_results: bool = True
    max_alternatives: int = 3
    silence: SilenceTimeouts = field(default_factory=SilenceTimeouts)


@dataclass(frozen=True)
class SessionTuning:
    natural_restart_delay_ms: int = 0
    retry_delay_ms: int = 100
    loop_threshold: int = 3
    max_alternatives: int = 3
    silence: SilenceTimeouts = field(default_factory=SilenceTimeouts)


@dataclass(frozen=True)
class ViewState:
    display_text: str = ""
    is_listening: bool = False
    selected_language: str = DEFAULT_LANGUAGE
    status_message: str = ""


@dataclass
class CopyResult:
    success: bool
    reason: str
