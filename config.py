"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

from models import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES, SessionTuning, SilenceTimeouts

log = logging.getLogger(__name__)

DEFAULT_HOTKEY = "Key.f8"


def _non_negative_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return default
    return value


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        log.warning("Ignoring malformed %r section in config", key)
        return {}
    return value


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "live_dictation" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        data = self._read_all()
        data["api_key"] = key
        self._write_all(data)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", DEFAULT_HOTKEY))

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def get_language(self) -> str:
        data = self._read_all()
        language = data.get("language", DEFAULT_LANGUAGE)
        if language not in SUPPORTED_LANGUAGES:
            log.warning("Unsupported language %r in config, using %s", language, DEFAULT_LANGUAGE)
            return DEFAULT_LANGUAGE
        return language

    def set_language(self, tag: str) -> None:
        if tag not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language {tag!r}")
        data = self._read_all()
        data["language"] = tag
        self._write_all(data)

    def get_tuning(self) -> SessionTuning:
        """Restart and silence tunables; invalid entries fall back to defaults."""
        data = self._read_all()
        restart = _section(data, "restart")
        recognition = _section(data, "recognition")
        silence = _section(recognition, "silence")

        defaults = SessionTuning()
        loop_threshold = _non_negative_int(restart.get("loop_threshold"), defaults.loop_threshold)
        max_alternatives = _non_negative_int(
            recognition.get("max_alternatives"), defaults.max_alternatives
        )
        return SessionTuning(
            natural_restart_delay_ms=_non_negative_int(
                restart.get("natural_delay_ms"), defaults.natural_restart_delay_ms
            ),
            retry_delay_ms=_non_negative_int(restart.get("retry_delay_ms"), defaults.retry_delay_ms),
            loop_threshold=loop_threshold if loop_threshold else defaults.loop_threshold,
            max_alternatives=max_alternatives if max_alternatives else defaults.max_alternatives,
            silence=SilenceTimeouts(
                complete_ms=_non_negative_int(silence.get("complete_ms"), None),
                possibly_complete_ms=_non_negative_int(silence.get("possibly_complete_ms"), None),
                minimum_length_ms=_non_negative_int(silence.get("minimum_length_ms"), None),
            ),
        )

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
