"""Rule-based extraction of teacher facts from chat messages.

Purely pattern driven: the same text always yields the same candidates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from memory.models import MemoryCandidate, MemoryType


@dataclass(frozen=True)
class ExtractionResult:
    """Candidates found in one message plus the session they came from."""

    candidates: list[MemoryCandidate] = field(default_factory=list)
    source_session_id: Optional[str] = None


def _word_pattern(phrase: str) -> re.Pattern:
    words = (re.escape(word) for word in phrase.split())
    return re.compile(r"\b" + r"\s+".join(words) + r"\b", re.IGNORECASE)


def _phrase_pattern(phrase: str) -> re.Pattern:
    # Substring match, so "peer" also hits "peers"
    words = (re.escape(word) for word in phrase.split())
    return re.compile(r"\s+".join(words), re.IGNORECASE)


class TeacherFactExtractor:
    """Scans one message for preferences, grades, subjects, style and experience."""

    SUBJECTS = (
        "math",
        "mathematics",
        "science",
        "english",
        "literature",
        "reading",
        "history",
        "social studies",
        "art",
        "music",
        "physical education",
        "pe",
        "spanish",
        "french",
        "biology",
        "chemistry",
        "physics",
    )

    # Checked in this order; first family with a hit wins
    TEACHING_STYLES = (
        ("structured", ("structured", "organized", "systematic", "step by step")),
        ("collaborative", ("collaborative", "group work", "teamwork", "peer")),
        ("flexible", ("flexible", "adaptable", "different approaches", "varied")),
    )

    _PREFERENCE = re.compile(r"\bi\s+(?:prefer|like\s+to)\s+(.+?)(?:[.,;!?\n]|$)", re.IGNORECASE)
    _GRADE = re.compile(
        r"\b(\d{1,2})(?:st|nd|rd|th)?\s*grade\b|\bgrade\s*(\d{1,2})\b",
        re.IGNORECASE,
    )
    _EXPERIENCE = re.compile(
        r"\b(\d{1,2})\s*\+?\s*years?\s+(?:of\s+)?(?:[a-z]+\s+){0,2}?(?:experience|teaching)\b",
        re.IGNORECASE,
    )

    def __init__(self):
        self._subject_patterns = [(name, _word_pattern(name)) for name in self.SUBJECTS]
        self._style_patterns = [
            (style, [_phrase_pattern(keyword) for keyword in keywords])
            for style, keywords in self.TEACHING_STYLES
        ]

    def extract(self, text: str) -> list[MemoryCandidate]:
        """Return candidate facts for one message; never raises."""
        try:
            return self._extract(text or "")
        except Exception as exc:
            logger.warning(f"Memory extraction failed: {exc}")
            return []

    def extract_from_message(self, message: dict) -> ExtractionResult:
        """Extract from a chat message dict (``content`` plus optional ``session_id``)."""
        content = message.get("content") or ""
        if not isinstance(content, str):
            content = str(content)
        return ExtractionResult(
            candidates=self.extract(content),
            source_session_id=message.get("session_id"),
        )

    def _extract(self, text: str) -> list[MemoryCandidate]:
        out: list[MemoryCandidate] = []

        preference = self._extract_preference(text)
        if preference:
            out.append(
                MemoryCandidate("teaching_preference", preference, MemoryType.PREFERENCE, 0.7)
            )

        grades = self._extract_grades(text)
        if grades:
            out.append(MemoryCandidate("grade_levels", grades, MemoryType.CONTEXT, 0.9))

        subjects = self._extract_subjects(text)
        if subjects:
            out.append(MemoryCandidate("subjects", subjects, MemoryType.CONTEXT, 0.8))

        style = self._extract_style(text)
        if style:
            out.append(MemoryCandidate("teaching_style", style, MemoryType.PREFERENCE, 0.6))

        years = self._extract_years(text)
        if years is not None:
            out.append(MemoryCandidate("years_experience", years, MemoryType.CONTEXT, 0.9))

        return out

    def _extract_preference(self, text: str) -> str | None:
        match = self._PREFERENCE.search(text)
        if not match:
            return None
        clause = " ".join(match.group(1).split()).lower()
        return clause or None

    def _extract_grades(self, text: str) -> list[int]:
        grades: list[int] = []
        for match in self._GRADE.finditer(text):
            grade = int(match.group(1) or match.group(2))
            if grade not in grades:
                grades.append(grade)
        return grades

    def _extract_subjects(self, text: str) -> list[str]:
        hits: list[tuple[int, str]] = []
        for name, pattern in self._subject_patterns:
            match = pattern.search(text)
            if match:
                hits.append((match.start(), name))
        hits.sort()
        return [name for _, name in hits]

    def _extract_style(self, text: str) -> str | None:
        for style, patterns in self._style_patterns:
            if any(pattern.search(text) for pattern in patterns):
                return style
        return None

    def _extract_years(self, text: str) -> int | None:
        match = self._EXPERIENCE.search(text)
        return int(match.group(1)) if match else None
