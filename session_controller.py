"""State-machine based session orchestration.

The speech engine recognises one utterance per capture cycle. The controller
re-arms it after every final result or transient error so the user sees a
single continuous listening session until they stop it or a fatal error
occurs. All methods must be called from the same event loop thread.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from error_classifier import ErrorClassifier, ErrorHistory
from errors import PERMISSION_DENIED, START_FAILED, message_for
from interfaces import SpeechEngine
from models import (
    DEFAULT_LANGUAGE,
    SUPPORTED_LANGUAGES,
    DecisionKind,
    EngineEvent,
    EngineEventKind,
    RecognitionConfig,
    RestartReason,
    RestartRequest,
    SessionState,
    SessionTuning,
    ViewState,
)
from restart_scheduler import RestartScheduler
from transcript_buffer import TranscriptBuffer

log = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
ViewCallback = Callable[[ViewState], None]
ErrorCallback = Callable[[str, str], None]

_ACTIVE_STATES = (SessionState.STARTING, SessionState.LISTENING, SessionState.AWAITING_RESTART)
_CAPTURING_STATES = (SessionState.STARTING, SessionState.LISTENING)
# States in which a language change is held until the engine has answered.
_DEFERRING_STATES = (SessionState.STARTING, SessionState.STOPPING)


class SessionController:
    def __init__(
        self,
        engine: SpeechEngine,
        scheduler: RestartScheduler,
        classifier: Optional[ErrorClassifier] = None,
        tuning: Optional[SessionTuning] = None,
        language: str = DEFAULT_LANGUAGE,
        on_state_change: Optional[StateCallback] = None,
        on_view_change: Optional[ViewCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        _check_language(language)
        self._engine = engine
        self._scheduler = scheduler
        self._tuning = tuning or SessionTuning()
        self._classifier = classifier or ErrorClassifier(self._tuning)
        self._on_state_change = on_state_change
        self._on_view_change = on_view_change
        self._on_error = on_error

        self._state = SessionState.IDLE
        self._buffer = TranscriptBuffer()
        self._history = ErrorHistory(capacity=self._tuning.loop_threshold)
        self._language = language
        self._deferred_language: Optional[str] = None
        self._speech_observed = False
        self._cycle_completed = False
        self._cycle_error_recorded = False
        self._restart_seq = 0
        self._status_message = ""

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def language(self) -> str:
        return self._language

    @property
    def transcript(self) -> TranscriptBuffer:
        return self._buffer

    @property
    def view(self) -> ViewState:
        return ViewState(
            display_text=self._buffer.display(),
            is_listening=self._state in _ACTIVE_STATES,
            selected_language=self._deferred_language or self._language,
            status_message=self._status_message,
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if self._state != SessionState.IDLE:
            log.debug("start() ignored in %s", self._state.value)
            return False
        self._buffer.clear()
        self._history.reset()
        self._speech_observed = False
        self._status_message = ""
        self._transition(SessionState.STARTING)
        self._start_engine()
        self._publish()
        return self._state != SessionState.IDLE

    def stop(self) -> None:
        if self._state == SessionState.IDLE:
            return
        self._transition(SessionState.STOPPING)
        self._buffer.commit_pending()
        self._scheduler.cancel()
        self._safe_stop_engine()
        self._transition(SessionState.IDLE)
        self._publish()

    def clear(self) -> None:
        self._buffer.clear()
        self._publish()

    def set_language(self, tag: str) -> None:
        _check_language(tag)
        if self._state in _DEFERRING_STATES:
            log.debug("Language change to %s deferred while %s", tag, self._state.value)
            self._deferred_language = tag
        else:
            self._deferred_language = None
            self._language = tag
            log.info("Language set to %s", tag)
        self._publish()

    def on_permission_result(self, granted: bool) -> None:
        if granted:
            self.start()
            return
        self._report(PERMISSION_DENIED, message_for(PERMISSION_DENIED))
        self._publish()

    def destroy(self) -> None:
        self.stop()
        self._scheduler.cancel()
        try:
            self._engine.destroy()
        except Exception:
            log.exception("Speech engine failed to release")

    # ------------------------------------------------------------------
    # Engine events
    # ------------------------------------------------------------------

    def on_engine_event(self, event: EngineEvent) -> None:
        state = self._state
        kind = event.kind
        if state in (SessionState.IDLE, SessionState.STOPPING):
            log.debug("Discarding %s event in %s", kind, state.value)
            return

        if kind == EngineEventKind.ERROR.value:
            self._handle_error(event.code)
            return

        if state not in _CAPTURING_STATES:
            log.debug("Discarding stale %s event in %s", kind, state.value)
            return

        if kind == EngineEventKind.READY.value:
            self._transition(SessionState.LISTENING)
        elif kind == EngineEventKind.BEGINNING_OF_SPEECH.value:
            self._speech_observed = True
            self._transition(SessionState.LISTENING)
        elif kind == EngineEventKind.PARTIAL.value:
            self._buffer.set_pending(event.text)
            self._transition(SessionState.LISTENING)
            self._publish()
        elif kind == EngineEventKind.FINAL.value:
            if event.text.strip():
                self._buffer.commit(event.text)
            else:
                self._buffer.commit_pending()
            self._history.record_success()
            self._cycle_completed = True
            self._schedule_restart(RestartReason.NATURAL_END, self._tuning.natural_restart_delay_ms)
            self._publish()
        elif kind == EngineEventKind.END_OF_SPEECH.value:
            log.debug("End of speech, waiting for result")
        else:
            log.warning("Unknown engine event kind %r", kind)

    def _handle_error(self, code: str) -> None:
        history = self._history.snapshot()
        if self._cycle_error_recorded:
            # Only the first error of a capture cycle counts as an attempt.
            history = history[:-1]
        decision = self._classifier.classify(
            code,
            history,
            awaiting_first_utterance=not self._speech_observed,
            cycle_completed=self._cycle_completed,
        )
        log.info("Engine error %s -> %s", code, decision.kind.value)

        if decision.kind == DecisionKind.IGNORE:
            self._schedule_restart(RestartReason.NATURAL_END, self._tuning.natural_restart_delay_ms)
            return

        if not self._cycle_error_recorded:
            self._history.record(code)
            self._cycle_error_recorded = True
        if decision.kind == DecisionKind.RETRY:
            reason = decision.reason or RestartReason.RETRYABLE_ERROR
            self._schedule_restart(reason, decision.delay_ms)
            self._publish()
            return

        self._fail(code, decision.message)

    # ------------------------------------------------------------------
    # Restarts
    # ------------------------------------------------------------------

    def _schedule_restart(self, reason: RestartReason, delay_ms: int) -> None:
        self._restart_seq += 1
        request = RestartRequest(request_id=self._restart_seq, reason=reason, delay_ms=delay_ms)
        self._transition(SessionState.AWAITING_RESTART)
        self._scheduler.schedule(request, self._on_restart_due)

    def _on_restart_due(self, request: RestartRequest) -> None:
        if self._state != SessionState.AWAITING_RESTART or request.request_id != self._restart_seq:
            log.debug("Stale restart #%d dropped in %s", request.request_id, self._state.value)
            return
        log.debug("Restarting capture (%s)", request.reason.value)
        self._transition(SessionState.STARTING)
        self._start_engine()
        self._publish()

    def _start_engine(self) -> None:
        self._cycle_completed = False
        self._cycle_error_recorded = False
        config = self._build_config()
        try:
            self._engine.start_capture(config, self.on_engine_event)
        except Exception as exc:
            log.exception("Speech engine failed to start")
            self._fail(START_FAILED, f"{message_for(START_FAILED)}: {exc}")
            return
        log.debug("Capture started with language %s", config.language_tag)

    def _build_config(self) -> RecognitionConfig:
        return RecognitionConfig(
            language_tag=self._language,
            want_partial_results=True,
            max_alternatives=self._tuning.max_alternatives,
            silence=self._tuning.silence,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fail(self, code: str, message: str) -> None:
        self._buffer.commit_pending()
        self._scheduler.cancel()
        self._safe_stop_engine()
        self._transition(SessionState.IDLE)
        self._report(code, message)
        self._publish()

    def _report(self, code: str, message: str) -> None:
        log.warning("Session error %s: %s", code, message)
        self._status_message = message
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_engine(self) -> None:
        try:
            self._engine.stop_capture()
        except Exception:
            log.exception("Speech engine failed to stop")

    def _publish(self) -> None:
        if self._on_view_change:
            self._on_view_change(self.view)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        log.debug("%s -> %s", from_state.value, to_state.value)
        if to_state not in _DEFERRING_STATES and self._deferred_language:
            self._language = self._deferred_language
            self._deferred_language = None
            log.info("Language set to %s", self._language)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)


def _check_language(tag: str) -> None:
    if tag not in SUPPORTED_LANGUAGES:
        raise ValueError(f"unsupported language {tag!r}")
