"""
Greedy chunk packing shared by the semantic and hybrid strategies.

Units are appended to the chunk being built while the rendered chunk,
including any leading overlap, stays within ``max_tokens``. On overflow the
chunk is flushed and the next one is seeded with the decoded tail of the
flushed chunk's own content. Units larger than the ceiling are broken into
sentences and packed by the same rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple

from ..core.models import SemanticUnit
from .boundaries import SentenceSplitter, split_into_sentences
from .tokens import TokenCounter

UNIT_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "


class Fragment(NamedTuple):
    """A packable piece of text: a whole unit or a sentence of one."""

    text: str
    token_count: int
    start_char: int
    end_char: int
    is_heading: bool = False
    # Index of the unit a sentence was cut from; -1 for whole units
    parent: int = -1


@dataclass
class ChunkDraft:
    """A packed chunk before ids, indices and section titles are attached."""

    content: str
    token_count: int
    fragments: List[Fragment]
    overlap_tokens: int = 0
    oversized: bool = False

    @property
    def start_char(self) -> int:
        return self.fragments[0].start_char

    @property
    def end_char(self) -> int:
        return self.fragments[-1].end_char


@dataclass
class _Accumulator:
    fragments: List[Fragment] = field(default_factory=list)
    overlap: List[int] = field(default_factory=list)
    overlap_text: str = ""
    overlap_parent: int = -1
    seeded: bool = False


class ChunkAssembler:
    """Packs units into chunks. Create one per chunking call."""

    def __init__(
        self,
        counter: TokenCounter,
        max_tokens: int,
        overlap_tokens: int,
        sentence_splitter: Optional[SentenceSplitter] = None,
        overlap_within_split: bool = False,
        keep_headings_with_body: bool = False,
        enforce_hard_cap: bool = False,
    ):
        self.counter = counter
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.sentence_splitter = sentence_splitter
        self.overlap_within_split = overlap_within_split
        self.keep_headings_with_body = keep_headings_with_body
        self.enforce_hard_cap = enforce_hard_cap

        self._drafts: List[ChunkDraft] = []
        self._acc = _Accumulator()
        # (body text, parent) of the last flushed chunk, source of overlap
        self._previous: Optional[Tuple[str, int]] = None

    def assemble(self, units: Sequence[SemanticUnit]) -> List[ChunkDraft]:
        self._drafts = []
        self._acc = _Accumulator()
        self._previous = None

        for index, unit in enumerate(units):
            if unit.token_count > self.max_tokens:
                self._add_oversized_unit(unit, index)
            else:
                self._add(
                    Fragment(
                        text=unit.text,
                        token_count=unit.token_count,
                        start_char=unit.start_char,
                        end_char=unit.end_char,
                        is_heading=unit.is_heading,
                    )
                )
        self._flush()
        return self._drafts

    # -- packing -------------------------------------------------------

    def _add(self, fragment: Fragment) -> None:
        while True:
            if not self._acc.seeded:
                self._seed_overlap(fragment)

            if self._fits(fragment):
                self._acc.fragments.append(fragment)
                return

            if not self._acc.fragments:
                self._shrink_overlap(fragment)
                self._acc.fragments.append(fragment)
                return

            carried = self._detach_trailing_heading(fragment)
            self._flush()
            for heading in carried:
                self._add(heading)

    def _add_oversized_unit(self, unit: SemanticUnit, index: int) -> None:
        # A heading right before a long paragraph stays with its first part
        sentences = list(self._sentences(unit, index))
        carried = self._detach_trailing_heading(sentences[0], allow_single=True)
        self._flush()
        for heading in carried:
            self._add(heading)

        for sentence in sentences:
            if sentence.token_count <= self.max_tokens:
                self._add(sentence)
            elif self.enforce_hard_cap:
                for piece in self._token_windows(sentence):
                    self._add(piece)
            else:
                self._emit_verbatim(sentence)

    def _sentences(self, unit: SemanticUnit, index: int) -> Iterator[Fragment]:
        for sentence in split_into_sentences(
            unit.text, unit.start_char, self.sentence_splitter
        ):
            yield Fragment(
                text=sentence.text,
                token_count=self.counter.count(sentence.text),
                start_char=sentence.start_char,
                end_char=sentence.end_char,
                parent=index,
            )

    def _token_windows(self, sentence: Fragment) -> Iterator[Fragment]:
        """Last-resort cut of an oversized sentence on token boundaries."""
        tokens = self.counter.encode(sentence.text)
        start = 0
        while start < len(tokens):
            end = min(start + self.max_tokens, len(tokens))
            text = self.counter.decode(tokens[start:end]).strip()
            # Decoding can merge differently; back off until it fits
            while end - start > 1 and self.counter.count(text) > self.max_tokens:
                end -= 1
                text = self.counter.decode(tokens[start:end]).strip()
            if text:
                yield sentence._replace(
                    text=text, token_count=self.counter.count(text)
                )
            start = end

    def _emit_verbatim(self, sentence: Fragment) -> None:
        """Emit a sentence above the ceiling unmodified as its own chunk."""
        self._flush()
        self._drafts.append(
            ChunkDraft(
                content=sentence.text,
                token_count=sentence.token_count,
                fragments=[sentence],
                oversized=True,
            )
        )
        self._previous = (sentence.text, sentence.parent)

    # -- overlap -------------------------------------------------------

    def _carries_overlap(self, fragment: Fragment) -> bool:
        if self.overlap_tokens <= 0 or self._previous is None:
            return False
        _, previous_parent = self._previous
        if (
            not self.overlap_within_split
            and previous_parent >= 0
            and previous_parent == fragment.parent
        ):
            return False
        return True

    def _seed_overlap(self, fragment: Fragment) -> None:
        self._acc.seeded = True
        if not self._carries_overlap(fragment):
            return
        body, parent = self._previous  # type: ignore[misc]
        tail = self.counter.encode(body)[-self.overlap_tokens :]
        self._set_overlap(tail, parent)

    def _shrink_overlap(self, fragment: Fragment) -> None:
        """Drop overlap tokens from the front until fragment fits after it."""
        acc = self._acc
        if not acc.overlap:
            return
        body_tokens = self.counter.count(self._render("", -1, [fragment]))
        keep = max(0, min(len(acc.overlap), self.max_tokens - body_tokens))
        tail = acc.overlap[len(acc.overlap) - keep :]
        while tail:
            text = self.counter.decode(tail).strip()
            candidate = self._render(text, acc.overlap_parent, [fragment])
            if self.counter.count(candidate) <= self.max_tokens:
                break
            tail = tail[1:]
        self._set_overlap(tail, acc.overlap_parent)

    def _set_overlap(self, tail: List[int], parent: int) -> None:
        text = self.counter.decode(tail).strip() if tail else ""
        self._acc.overlap = tail if text else []
        self._acc.overlap_text = text
        self._acc.overlap_parent = parent

    # -- helpers -------------------------------------------------------

    def _fits(self, fragment: Fragment) -> bool:
        acc = self._acc
        candidate = self._render(
            acc.overlap_text, acc.overlap_parent, acc.fragments + [fragment]
        )
        return self.counter.count(candidate) <= self.max_tokens

    def _detach_trailing_heading(
        self, incoming: Fragment, allow_single: bool = False
    ) -> List[Fragment]:
        fragments = self._acc.fragments
        minimum = 1 if allow_single else 2
        if not (
            self.keep_headings_with_body
            and len(fragments) >= minimum
            and fragments[-1].is_heading
        ):
            return []
        if len(fragments) > 1 and not self._heading_fits_with(
            fragments[-1], fragments[:-1], incoming
        ):
            return []
        return [fragments.pop()]

    def _heading_fits_with(
        self, heading: Fragment, remaining: List[Fragment], incoming: Fragment
    ) -> bool:
        """Whether the next chunk could open with heading and incoming.

        The next chunk's overlap comes from ``remaining``, the body the
        current chunk would be flushed with.
        """
        overlap_text, overlap_parent = "", -1
        if self.overlap_tokens > 0:
            tail = self.counter.encode(self._join(remaining))[-self.overlap_tokens :]
            overlap_text = self.counter.decode(tail).strip()
            overlap_parent = remaining[-1].parent
        candidate = self._render(overlap_text, overlap_parent, [heading, incoming])
        return self.counter.count(candidate) <= self.max_tokens

    def _flush(self) -> None:
        acc = self._acc
        if not acc.fragments:
            return
        content = self._render(acc.overlap_text, acc.overlap_parent, acc.fragments)
        self._drafts.append(
            ChunkDraft(
                content=content,
                token_count=self.counter.count(content),
                fragments=list(acc.fragments),
                overlap_tokens=len(acc.overlap),
            )
        )
        self._previous = (self._join(acc.fragments), acc.fragments[-1].parent)
        self._acc = _Accumulator()

    @staticmethod
    def _join(fragments: Sequence[Fragment]) -> str:
        parts = [fragments[0].text]
        for previous, fragment in zip(fragments, fragments[1:]):
            parts.append(_separator(previous.parent, fragment.parent))
            parts.append(fragment.text)
        return "".join(parts)

    def _render(
        self, overlap_text: str, overlap_parent: int, fragments: Sequence[Fragment]
    ) -> str:
        body = self._join(fragments)
        if not overlap_text:
            return body
        return overlap_text + _separator(overlap_parent, fragments[0].parent) + body


def _separator(previous_parent: int, parent: int) -> str:
    if parent >= 0 and parent == previous_parent:
        return SENTENCE_SEPARATOR
    return UNIT_SEPARATOR
