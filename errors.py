"""Shared error codes and user-facing messages."""

from __future__ import annotations

# Codes reported by the speech engine.
AUDIO = "audio"
CLIENT = "client"
INSUFFICIENT_PERMISSIONS = "insufficient-permissions"
NETWORK = "network"
NETWORK_TIMEOUT = "network-timeout"
NO_MATCH = "no-match"
RECOGNIZER_BUSY = "recognizer-busy"
SERVER = "server"
SPEECH_TIMEOUT = "speech-timeout"
UNKNOWN = "unknown"

# Codes raised by the app itself.
PERMISSION_DENIED = "permission-denied"
START_FAILED = "start-failed"

ENGINE_ERROR_CODES = (
    AUDIO,
    CLIENT,
    INSUFFICIENT_PERMISSIONS,
    NETWORK,
    NETWORK_TIMEOUT,
    NO_MATCH,
    RECOGNIZER_BUSY,
    SERVER,
    SPEECH_TIMEOUT,
    UNKNOWN,
)

SILENCE_CODES = frozenset({NO_MATCH, SPEECH_TIMEOUT})
TRANSIENT_CODES = frozenset({NO_MATCH, SPEECH_TIMEOUT, RECOGNIZER_BUSY, NETWORK_TIMEOUT})

ERROR_MESSAGES = {
    AUDIO: "Audio recording error",
    CLIENT: "Client side error",
    INSUFFICIENT_PERMISSIONS: "Insufficient permissions",
    NETWORK: "Network error",
    NETWORK_TIMEOUT: "Network timeout",
    NO_MATCH: "No speech was recognized",
    RECOGNIZER_BUSY: "Recognition service is busy",
    SERVER: "Error from the recognition server",
    SPEECH_TIMEOUT: "No speech input",
    UNKNOWN: "Unknown recognition error",
    PERMISSION_DENIED: "Microphone permission is required",
    START_FAILED: "Could not start speech recognition",
}


def message_for(code: str) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[UNKNOWN])
