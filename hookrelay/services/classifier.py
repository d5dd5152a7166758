"""Relevance classification for captured WebView content.

Kept apart from capture and emit code so the marker list can change
without touching any interception logic.
"""

from collections.abc import Iterable


class RelevanceClassifier:
    """Case-insensitive substring predicate over captured text."""

    def __init__(self, markers: Iterable[str]):
        normalized: list[str] = []
        for marker in markers:
            marker = marker.strip().casefold()
            if marker and marker not in normalized:
                normalized.append(marker)
        self.markers: tuple[str, ...] = tuple(normalized)

    def matches(self, text: str | None) -> list[str]:
        """Return the markers found in ``text``, in configured order."""
        if not text:
            return []
        folded = text.casefold()
        return [marker for marker in self.markers if marker in folded]

    def is_relevant(self, text: str | None) -> bool:
        if not text:
            return False
        folded = text.casefold()
        return any(marker in folded for marker in self.markers)
