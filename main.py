"""Application entrypoint."""

from __future__ import annotations

import logging
import os
import sys

from clipboard import PyperclipClipboardService
from config import JsonConfigStore
from hotkey import ToggleHotkeyAdapter
from interfaces import EngineEventCallback, SpeechEngine
from models import EngineEvent, RecognitionConfig
from recognizer import DashscopeSpeechEngine
from recorder import MicrophonePermission
from restart_scheduler import QtTimerBackend, RestartScheduler
from session_controller import SessionController
from transcript_window import TranscriptWindow

try:
    from PySide6.QtCore import QObject, Qt, Signal
    from PySide6.QtWidgets import QApplication
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

log = logging.getLogger(__name__)


class UIBridge(QObject):
    engine_event_signal = Signal(object)
    toggle_signal = Signal()


class MainThreadEngine:
    """Delivers engine events on the Qt main thread.

    The DashScope engine reports from its worker thread; the controller
    must only ever run on the event loop, so every event is queued.
    """

    def __init__(self, engine: SpeechEngine, bridge: UIBridge) -> None:
        self._engine = engine
        self._on_event: EngineEventCallback | None = None
        bridge.engine_event_signal.connect(self._deliver, Qt.QueuedConnection)
        self._emit = bridge.engine_event_signal.emit

    def start_capture(self, config: RecognitionConfig, on_event: EngineEventCallback) -> None:
        self._on_event = on_event
        self._engine.start_capture(config, self._emit)

    def stop_capture(self) -> None:
        self._engine.stop_capture()

    def destroy(self) -> None:
        self._engine.destroy()

    def _deliver(self, event: EngineEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.config_store = JsonConfigStore()
        self.clipboard = PyperclipClipboardService()
        self.permission = MicrophonePermission()
        self.window = TranscriptWindow()
        self.ui = UIBridge()
        self.ui.toggle_signal.connect(self._toggle, Qt.QueuedConnection)

        engine = MainThreadEngine(
            DashscopeSpeechEngine(api_key=self.config_store.get_api_key()),
            self.ui,
        )
        self.controller = SessionController(
            engine=engine,
            scheduler=RestartScheduler(QtTimerBackend()),
            tuning=self.config_store.get_tuning(),
            language=self.config_store.get_language(),
            on_view_change=self.window.render,
            on_error=self._on_error,
        )
        self.hotkey = ToggleHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())

        self.window.start_requested.connect(self._start)
        self.window.stop_requested.connect(self.controller.stop)
        self.window.clear_requested.connect(self.controller.clear)
        self.window.copy_requested.connect(self._copy)
        self.window.language_selected.connect(self._select_language)
        self.window.render(self.controller.view)
        self.app.aboutToQuit.connect(self._shutdown)

    # ------------------------------------------------------------------
    # Intents (Qt main thread)
    # ------------------------------------------------------------------

    def _start(self) -> None:
        self.controller.on_permission_result(self.permission.check())

    def _toggle(self) -> None:
        if self.controller.view.is_listening:
            self.controller.stop()
        else:
            self._start()

    def _select_language(self, tag: str) -> None:
        self.controller.set_language(tag)
        self.config_store.set_language(tag)

    def _copy(self) -> None:
        result = self.clipboard.copy_text(self.controller.view.display_text)
        if result.success:
            self.window.show_info("Transcript copied")
        else:
            self.window.show_error(f"Copy failed: {result.reason}")

    # ------------------------------------------------------------------
    # Controller callbacks
    # ------------------------------------------------------------------

    def _on_error(self, code: str, message: str) -> None:
        self.window.show_error(message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            # pynput calls back on its own thread; hop to the event loop.
            self.hotkey.start(on_toggle=self.ui.toggle_signal.emit)
        except Exception as exc:
            log.warning("Hotkey disabled: %s", exc)
            self.window.show_error(f"Hotkey disabled: {exc}")
        self.window.show()
        return self.app.exec()

    def _shutdown(self) -> None:
        self.hotkey.stop()
        self.controller.destroy()


def configure_logging() -> None:
    level = os.environ.get("LIVE_DICTATION_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    configure_logging()
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
