"""Pluggable checks run over agent text: early-conclusion and confidence-label extraction."""

import re
from typing import Protocol

from boardroom.metadata import DEFAULT_CONFIDENCE_LABEL

CONCLUSION_KEYWORDS: tuple[str, ...] = ("recommend", "propose", "suggest", "decision")

_CONFIDENCE_RE = re.compile(r"\*\*CONFIDENCE LEVEL:\*\*\s*\[?(High|Medium|Low)\b", re.IGNORECASE)


class ConclusionHeuristic(Protocol):
    def concluded(self, responses: list[str]) -> bool:
        """True if the latest round's texts amount to a conclusion."""
        ...


class KeywordConclusionHeuristic:
    """Concluded when any response mentions one of the keywords, case-insensitively."""

    def __init__(self, keywords: tuple[str, ...] = CONCLUSION_KEYWORDS) -> None:
        self.keywords = tuple(k.lower() for k in keywords)

    def concluded(self, responses: list[str]) -> bool:
        for text in responses:
            lowered = text.lower()
            if any(k in lowered for k in self.keywords):
                return True
        return False


def extract_confidence_label(text: str) -> str:
    """Read the ``**CONFIDENCE LEVEL:** High`` marker from synthesis text; Medium if absent."""
    match = _CONFIDENCE_RE.search(text)
    if match is None:
        return DEFAULT_CONFIDENCE_LABEL
    return match.group(1).capitalize()
