"""Main window: transcript, language choice and session controls."""

from __future__ import annotations

from models import SUPPORTED_LANGUAGES, ViewState

try:
    from PySide6.QtCore import Qt, QTimer, Signal
    from PySide6.QtWidgets import (
        QButtonGroup,
        QHBoxLayout,
        QLabel,
        QPushButton,
        QRadioButton,
        QTextEdit,
        QVBoxLayout,
        QWidget,
    )
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    Signal = lambda *args: None  # type: ignore  # noqa: E731
    QButtonGroup = object  # type: ignore
    QHBoxLayout = object  # type: ignore
    QLabel = object  # type: ignore
    QPushButton = object  # type: ignore
    QRadioButton = object  # type: ignore
    QTextEdit = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

PLACEHOLDER = "Press Start and speak"
STATUS_STYLE = "color: #FF6B6B; font-size: 13px;"
INFO_STYLE = "color: #888888; font-size: 13px;"


class TranscriptWindow(QWidget):
    start_requested = Signal()
    stop_requested = Signal()
    clear_requested = Signal()
    copy_requested = Signal()
    language_selected = Signal(str)

    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowTitle("Speech Recognizer")
        self.resize(520, 640)

        title = QLabel("Speech Recognizer")
        title.setAlignment(Qt.AlignCenter)
        title.setStyleSheet("font-size: 22px; padding-bottom: 12px;")

        self._text = QTextEdit()
        self._text.setReadOnly(True)
        self._text.setPlaceholderText(PLACEHOLDER)
        self._text.setStyleSheet("font-size: 16px; padding: 8px;")

        self._languages = QButtonGroup(self)
        language_row = QHBoxLayout()
        language_row.addStretch(1)
        self._language_buttons: dict[str, QRadioButton] = {}
        for tag, label in SUPPORTED_LANGUAGES.items():
            button = QRadioButton(label)
            button.toggled.connect(
                lambda checked, tag=tag: checked and self.language_selected.emit(tag)
            )
            self._languages.addButton(button)
            self._language_buttons[tag] = button
            language_row.addWidget(button)
        language_row.addStretch(1)

        self._toggle_button = QPushButton("Start Listening")
        self._toggle_button.clicked.connect(self._on_toggle_clicked)
        self._clear_button = QPushButton("Clear Text")
        self._clear_button.clicked.connect(lambda: self.clear_requested.emit())
        self._copy_button = QPushButton("Copy")
        self._copy_button.clicked.connect(lambda: self.copy_requested.emit())

        button_row = QHBoxLayout()
        button_row.addWidget(self._toggle_button)
        button_row.addWidget(self._clear_button)
        button_row.addWidget(self._copy_button)

        self._status = QLabel("")
        self._status.setWordWrap(True)
        self._status.setAlignment(Qt.AlignCenter)

        layout = QVBoxLayout()
        layout.setContentsMargins(16, 16, 16, 16)
        layout.addWidget(title)
        layout.addWidget(self._text, 1)
        layout.addLayout(language_row)
        layout.addLayout(button_row)
        layout.addWidget(self._status)
        self.setLayout(layout)

        self._is_listening = False
        self._status_timer: QTimer | None = None
        self.render(ViewState())

    def render(self, view: ViewState) -> None:
        """Repaint from the controller's observable state."""
        self._is_listening = view.is_listening
        if self._text.toPlainText() != view.display_text:
            self._text.setPlainText(view.display_text)
            scrollbar = self._text.verticalScrollBar()
            scrollbar.setValue(scrollbar.maximum())

        button = self._language_buttons.get(view.selected_language)
        if button is not None and not button.isChecked():
            button.blockSignals(True)
            button.setChecked(True)
            button.blockSignals(False)

        self._toggle_button.setText("Stop" if view.is_listening else "Start Listening")
        has_text = bool(view.display_text)
        self._clear_button.setVisible(has_text)
        self._copy_button.setEnabled(has_text)

    def show_error(self, text: str, hide_after_ms: int = 4000) -> None:
        """Show an error message and auto-hide after given ms."""
        self._show_status(f"⚠️ {text}", STATUS_STYLE, hide_after_ms)

    def show_info(self, text: str, hide_after_ms: int = 2000) -> None:
        self._show_status(text, INFO_STYLE, hide_after_ms)

    def _show_status(self, text: str, style: str, hide_after_ms: int) -> None:
        self._cancel_status_timer()
        self._status.setStyleSheet(style)
        self._status.setText(text)
        self._status_timer = QTimer()
        self._status_timer.setSingleShot(True)
        self._status_timer.timeout.connect(lambda: self._status.setText(""))
        self._status_timer.start(hide_after_ms)

    def _cancel_status_timer(self) -> None:
        if self._status_timer is not None:
            self._status_timer.stop()
            self._status_timer = None

    def _on_toggle_clicked(self) -> None:
        if self._is_listening:
            self.stop_requested.emit()
        else:
            self.start_requested.emit()
