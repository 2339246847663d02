"""Committed transcript plus the in-flight partial fragment."""

from __future__ import annotations


def _join(left: str, right: str) -> str:
    if left and right:
        return f"{left} {right}"
    return left or right


class TranscriptBuffer:
    """Accumulates final results and tracks the latest partial.

    Engines resend the whole partial for the current utterance on every
    update, so ``set_pending`` replaces rather than appends.
    """

    def __init__(self) -> None:
        self._committed = ""
        self._pending = ""

    @property
    def committed(self) -> str:
        return self._committed

    @property
    def pending(self) -> str:
        return self._pending

    def set_pending(self, text: str) -> None:
        self._pending = text.strip()

    def commit(self, text: str) -> None:
        """Append a final result and drop the partial it supersedes."""
        self._committed = _join(self._committed, text.strip())
        self._pending = ""

    def commit_pending(self) -> None:
        """Keep in-progress speech when a cycle ends without a final result."""
        self.commit(self._pending)

    def clear(self) -> None:
        self._committed = ""
        self._pending = ""

    def display(self) -> str:
        return _join(self._committed, self._pending)
