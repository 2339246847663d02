"""Maps engine error codes to ignore / retry / fatal decisions."""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional, Sequence

from errors import (
    ENGINE_ERROR_CODES,
    RECOGNIZER_BUSY,
    NETWORK_TIMEOUT,
    SILENCE_CODES,
    TRANSIENT_CODES,
    UNKNOWN,
    message_for,
)
from models import DecisionKind, ErrorDecision, RestartReason, SessionTuning

# Pushed after every final result so that errors on either side of a
# successful utterance never count as consecutive.
SUCCESS_MARKER = None


class ErrorHistory:
    """Bounded ring of the most recent error codes."""

    def __init__(self, capacity: int = 3) -> None:
        self._entries: Deque[Optional[str]] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def record(self, code: str) -> None:
        self._entries.append(code)

    def record_success(self) -> None:
        self._entries.append(SUCCESS_MARKER)

    def reset(self) -> None:
        self._entries.clear()

    def snapshot(self) -> List[Optional[str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class ErrorClassifier:
    def __init__(self, tuning: Optional[SessionTuning] = None) -> None:
        self._tuning = tuning or SessionTuning()

    def classify(
        self,
        code: str,
        history: Sequence[Optional[str]],
        awaiting_first_utterance: bool,
        cycle_completed: bool = False,
    ) -> ErrorDecision:
        """Decide what to do about ``code``.

        ``history`` is the ring contents before this error. The loop-breaker
        looks at the last ``loop_threshold`` entries including ``code``.
        """
        if code not in ENGINE_ERROR_CODES:
            code = UNKNOWN

        if code not in TRANSIENT_CODES:
            return ErrorDecision(kind=DecisionKind.FATAL, message=message_for(code))

        if cycle_completed:
            return ErrorDecision(kind=DecisionKind.IGNORE)

        if code in SILENCE_CODES:
            if awaiting_first_utterance and self._is_looping(code, history):
                return self._loop_fatal(code)
            return self._retry(RestartReason.TRANSIENT_NO_MATCH)

        if code in (RECOGNIZER_BUSY, NETWORK_TIMEOUT) and self._is_looping(code, history):
            return self._loop_fatal(code)
        return self._retry(RestartReason.RETRYABLE_ERROR)

    def _retry(self, reason: RestartReason) -> ErrorDecision:
        return ErrorDecision(
            kind=DecisionKind.RETRY,
            delay_ms=self._tuning.retry_delay_ms,
            reason=reason,
        )

    def _is_looping(self, code: str, history: Sequence[Optional[str]]) -> bool:
        threshold = self._tuning.loop_threshold
        recent = [*history, code][-threshold:]
        return len(recent) == threshold and all(entry == code for entry in recent)

    def _loop_fatal(self, code: str) -> ErrorDecision:
        message = (
            f"{message_for(code)} after {self._tuning.loop_threshold} attempts, "
            "listening stopped"
        )
        return ErrorDecision(kind=DecisionKind.FATAL, message=message)
