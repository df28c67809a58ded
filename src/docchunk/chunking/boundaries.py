"""
Boundary detection: heading sections, paragraph units and sentences.

Detection is regex based. ``SectionDetector`` and
``SentenceSplitter`` hold their compiled patterns so a stricter
implementation can be passed to the chunkers instead.
"""

import bisect
import re
from typing import Iterator, List, NamedTuple, Optional, Pattern, Tuple

from ..core.models import DocumentSection, SemanticUnit
from .tokens import TokenCounter

# One or more blank lines (lines holding only whitespace count as blank)
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Lookahead rejecting "- item", "* item", "+ item" and "1. item" lines
NOT_LIST_ITEM = r"(?![ \t]*(?:[-*+]|\d+\.)[ \t])"


class Sentence(NamedTuple):
    """A sentence-like fragment with absolute character offsets."""

    text: str
    start_char: int
    end_char: int


class SectionDetector:
    """Finds ATX (``## Title``) and Setext (underlined) headings."""

    atx_pattern: Pattern[str] = re.compile(
        r"^(#{1,6})[ \t]+(\S[^\n]*)$", re.MULTILINE
    )
    setext_pattern: Pattern[str] = re.compile(
        r"^" + NOT_LIST_ITEM + r"([^\n]*\S[^\n]*)\n(={2,}|-{2,})[ \t\r]*$",
        re.MULTILINE,
    )
    heading_unit_pattern: Pattern[str] = re.compile(
        r"^#{1,6}\s|^" + NOT_LIST_ITEM + r"[^\n]+\n[=-]{2,}\s*$"
    )

    def detect(self, text: str) -> List[DocumentSection]:
        found: dict = {}

        for match in self.atx_pattern.finditer(text):
            found[match.start()] = (match.group(2).strip(), len(match.group(1)))

        for match in self.setext_pattern.finditer(text):
            title = match.group(1).strip()
            if match.start() in found or self.atx_pattern.match(title):
                continue
            level = 1 if match.group(2).startswith("=") else 2
            found[match.start()] = (title, level)

        starts = sorted(found)
        sections = []
        for i, start in enumerate(starts):
            title, level = found[start]
            end = starts[i + 1] if i + 1 < len(starts) else len(text)
            sections.append(
                DocumentSection(
                    title=title, level=level, start_char=start, end_char=end
                )
            )
        return sections

    def is_heading(self, unit_text: str) -> bool:
        return bool(self.heading_unit_pattern.search(unit_text))


class SentenceSplitter:
    """Splits text after terminal punctuation followed by whitespace."""

    boundary_pattern: Pattern[str] = re.compile(r"(?<=[.!?])\s+")

    def split(self, text: str, offset: int = 0) -> List[Sentence]:
        sentences = [
            Sentence(text[start:end], offset + start, offset + end)
            for start, end in _trimmed_spans(text, self.boundary_pattern)
        ]
        if not sentences:
            stripped = text.strip()
            start = text.find(stripped) if stripped else 0
            return [Sentence(stripped, offset + start, offset + start + len(stripped))]
        return sentences


_default_detector = SectionDetector()
_default_splitter = SentenceSplitter()


def detect_sections(
    text: str, detector: Optional[SectionDetector] = None
) -> List[DocumentSection]:
    """Ordered, contiguous heading sections running to the end of text."""
    return (detector or _default_detector).detect(text)


def find_section(
    position: int, sections: List[DocumentSection]
) -> Optional[DocumentSection]:
    """Return the last section starting at or before position."""
    starts = [section.start_char for section in sections]
    index = bisect.bisect_right(starts, position) - 1
    return sections[index] if index >= 0 else None


def split_into_units(
    text: str,
    counter: TokenCounter,
    detector: Optional[SectionDetector] = None,
) -> List[SemanticUnit]:
    """Split text into trimmed paragraph units with absolute offsets."""
    detector = detector or _default_detector
    units = []
    for start, end in _trimmed_spans(text, PARAGRAPH_BREAK):
        unit_text = text[start:end]
        units.append(
            SemanticUnit(
                text=unit_text,
                token_count=counter.count(unit_text),
                start_char=start,
                end_char=end,
                is_heading=detector.is_heading(unit_text),
            )
        )
    return units


def split_into_sentences(
    text: str, offset: int = 0, splitter: Optional[SentenceSplitter] = None
) -> List[Sentence]:
    return (splitter or _default_splitter).split(text, offset)


def count_words(text: str) -> int:
    return len(text.split())


def _trimmed_spans(text: str, separator: Pattern[str]) -> Iterator[Tuple[int, int]]:
    """Yield (start, end) of the non-blank pieces between separators.

    Scans forward only, so repeated substrings keep their own offsets.
    """
    position = 0
    for match in separator.finditer(text):
        span = _trim(text, position, match.start())
        if span:
            yield span
        position = match.end()
    span = _trim(text, position, len(text))
    if span:
        yield span


def _trim(text: str, start: int, end: int) -> Optional[Tuple[int, int]]:
    piece = text[start:end]
    stripped = piece.strip()
    if not stripped:
        return None
    leading = len(piece) - len(piece.lstrip())
    return start + leading, start + leading + len(stripped)
