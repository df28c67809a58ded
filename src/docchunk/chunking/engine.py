"""
Chunking strategies (fixed, semantic, hybrid) and their shared entry points.

Every strategy exposes ``chunk(text, object_id, options)`` and never raises:
blank input, invalid options, tokenizer failures and unexpected errors all
come back as a failed ``ChunkingResult`` with no partial chunks.
"""

from __future__ import annotations

import concurrent.futures
import time
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..core.logging import log
from ..core.models import (
    DEFAULT_CHUNKING_OPTIONS,
    Chunk,
    ChunkingErrorCode,
    ChunkingOptions,
    ChunkingResult,
    ChunkingStrategy,
    ChunkMetadata,
    DocumentSection,
)
from ..obs.events import emit_event
from .assembler import ChunkAssembler, ChunkDraft
from .boundaries import (
    SectionDetector,
    SentenceSplitter,
    count_words,
    detect_sections,
    find_section,
    split_into_units,
)
from .tokens import (
    GuardedCounter,
    TokenCounter,
    TokenizationError,
    default_token_counter,
)

OptionsLike = Union[ChunkingOptions, Mapping[str, Any], None]


def resolve_options(
    options: OptionsLike = None, strategy: Optional[ChunkingStrategy] = None
) -> ChunkingOptions:
    """Merge partial options over the defaults, forcing strategy if given."""
    if options is None:
        overrides: Dict[str, Any] = {}
    elif isinstance(options, ChunkingOptions):
        overrides = options.model_dump()
    else:
        overrides = dict(options)

    merged = {**DEFAULT_CHUNKING_OPTIONS.model_dump(), **overrides}
    if strategy is not None:
        merged["strategy"] = strategy
    return ChunkingOptions(**merged)


def _failure(
    code: ChunkingErrorCode, message: str, started: float
) -> ChunkingResult:
    return ChunkingResult(
        success=False,
        chunks=[],
        total_tokens=0,
        error=message,
        error_code=code,
        processing_duration_ms=int((time.perf_counter() - started) * 1000),
    )


class BaseChunker:
    """Validation, error mapping and chunk materialization for a strategy."""

    strategy: ChunkingStrategy

    def __init__(
        self,
        counter: Optional[TokenCounter] = None,
        section_detector: Optional[SectionDetector] = None,
        sentence_splitter: Optional[SentenceSplitter] = None,
    ):
        self.counter = counter
        self.section_detector = section_detector
        self.sentence_splitter = sentence_splitter

    def chunk(
        self, text: str, object_id: str, options: OptionsLike = None
    ) -> ChunkingResult:
        started = time.perf_counter()

        if not text or not text.strip():
            return _failure(
                ChunkingErrorCode.EMPTY_TEXT, "Empty text provided", started
            )

        try:
            opts = resolve_options(options, self.strategy)
        except (TypeError, ValueError) as e:
            return _failure(ChunkingErrorCode.INVALID_OPTIONS, str(e), started)

        try:
            counter = GuardedCounter(self.counter or default_token_counter())
            chunks, total_tokens = self._chunk(text, str(object_id), opts, counter)
        except TokenizationError as e:
            log.warning(
                "chunk.tokenization_failed",
                object_id=str(object_id),
                strategy=self.strategy.value,
                error=str(e),
            )
            emit_event("chunk.fail", doc_id=str(object_id), reason=str(e))
            return _failure(ChunkingErrorCode.TOKENIZATION_FAILED, str(e), started)
        except Exception as e:
            log.exception(
                "chunk.unexpected_error",
                object_id=str(object_id),
                strategy=self.strategy.value,
            )
            emit_event("chunk.fail", doc_id=str(object_id), reason=str(e))
            return _failure(
                ChunkingErrorCode.UNKNOWN_ERROR, str(e) or type(e).__name__, started
            )

        duration_ms = int((time.perf_counter() - started) * 1000)
        for chunk in chunks:
            if chunk.metadata.oversized:
                emit_event(
                    "chunk.oversized",
                    doc_id=chunk.object_id,
                    chunk_id=chunk.id,
                    tokens=chunk.token_count,
                )
        emit_event(
            "chunk.complete",
            doc_id=str(object_id),
            strategy=self.strategy.value,
            chunks=len(chunks),
            tokens=total_tokens,
            duration_ms=duration_ms,
        )
        return ChunkingResult(
            success=True,
            chunks=chunks,
            total_tokens=total_tokens,
            processing_duration_ms=duration_ms,
        )

    def _chunk(
        self,
        text: str,
        object_id: str,
        opts: ChunkingOptions,
        counter: TokenCounter,
    ) -> Tuple[List[Chunk], int]:
        total_tokens = counter.count(text)
        if total_tokens < opts.min_tokens or total_tokens == 0:
            return [self._whole_document_chunk(text, object_id, total_tokens)], total_tokens
        return self._split(text, object_id, opts, counter)

    def _split(
        self,
        text: str,
        object_id: str,
        opts: ChunkingOptions,
        counter: TokenCounter,
    ) -> Tuple[List[Chunk], int]:
        raise NotImplementedError

    def _section_title_at_start(self, text: str) -> Optional[str]:
        return None

    def _whole_document_chunk(
        self, text: str, object_id: str, token_count: int
    ) -> Chunk:
        return Chunk(
            id=str(uuid.uuid4()),
            object_id=object_id,
            chunk_index=0,
            content=text,
            token_count=token_count,
            section_title=self._section_title_at_start(text),
            chunking_strategy=self.strategy,
            metadata=ChunkMetadata(
                has_overlap_before=False,
                has_overlap_after=False,
                word_count=count_words(text),
                start_char=0,
                end_char=len(text),
            ),
        )


class FixedChunker(BaseChunker):
    """Sliding token windows that ignore document structure."""

    strategy = ChunkingStrategy.FIXED

    def _split(self, text, object_id, opts, counter):
        tokens = counter.encode(text)
        total_tokens = len(tokens)
        step = max(1, opts.max_tokens - opts.overlap_tokens)
        overlapping = step < opts.max_tokens

        chunks: List[Chunk] = []
        start = 0
        while True:
            end = min(start + opts.max_tokens, total_tokens)
            window = tokens[start:end]
            content = counter.decode(window)
            is_first = start == 0
            is_last = end >= total_tokens

            chunks.append(
                Chunk(
                    id=str(uuid.uuid4()),
                    object_id=object_id,
                    chunk_index=len(chunks),
                    content=content,
                    token_count=len(window),
                    chunking_strategy=self.strategy,
                    metadata=ChunkMetadata(
                        has_overlap_before=overlapping and not is_first,
                        has_overlap_after=overlapping and not is_last,
                        word_count=count_words(content),
                        overlap_tokens=(
                            opts.max_tokens - step
                            if overlapping and not is_first
                            else 0
                        ),
                        start_token_index=start,
                        end_token_index=end,
                    ),
                )
            )

            if is_last:
                break
            start += step

        return chunks, total_tokens


class SemanticChunker(BaseChunker):
    """Packs paragraphs; splits oversized ones on sentences.

    Overlap is carried across chunk boundaries between units, but not
    between the sentence-level pieces of a single oversized paragraph.
    """

    strategy = ChunkingStrategy.SEMANTIC
    overlap_within_split = False
    keep_headings_with_body = False

    def _split(self, text, object_id, opts, counter):
        sections = detect_sections(text, self.section_detector)
        units = split_into_units(text, counter, self.section_detector)

        assembler = ChunkAssembler(
            counter,
            max_tokens=opts.max_tokens,
            overlap_tokens=opts.overlap_tokens,
            sentence_splitter=self.sentence_splitter,
            overlap_within_split=self.overlap_within_split,
            keep_headings_with_body=self.keep_headings_with_body,
            enforce_hard_cap=opts.enforce_hard_cap,
        )
        drafts = assembler.assemble(units)

        total_tokens = sum(unit.token_count for unit in units)
        return self._materialize(drafts, object_id, sections), total_tokens

    def _section_title_at_start(self, text: str) -> Optional[str]:
        sections = detect_sections(text, self.section_detector)
        first_visible = len(text) - len(text.lstrip())
        section = find_section(first_visible, sections)
        return section.title if section else None

    def _materialize(
        self,
        drafts: List[ChunkDraft],
        object_id: str,
        sections: List[DocumentSection],
    ) -> List[Chunk]:
        chunks = []
        for index, draft in enumerate(drafts):
            section = find_section(draft.start_char, sections)
            next_draft = drafts[index + 1] if index + 1 < len(drafts) else None
            chunks.append(
                Chunk(
                    id=str(uuid.uuid4()),
                    object_id=object_id,
                    chunk_index=index,
                    content=draft.content,
                    token_count=draft.token_count,
                    section_title=section.title if section else None,
                    chunking_strategy=self.strategy,
                    metadata=ChunkMetadata(
                        has_overlap_before=draft.overlap_tokens > 0,
                        has_overlap_after=(
                            next_draft is not None and next_draft.overlap_tokens > 0
                        ),
                        word_count=count_words(draft.content),
                        unit_count=len(draft.fragments),
                        overlap_tokens=draft.overlap_tokens,
                        start_char=draft.start_char,
                        end_char=draft.end_char,
                        oversized=draft.oversized,
                    ),
                )
            )
        return chunks


class HybridChunker(SemanticChunker):
    """Semantic packing with overlap kept inside split paragraphs.

    Headings that would close a chunk are moved to the start of the next
    one so they stay with the text they introduce.
    """

    strategy = ChunkingStrategy.HYBRID
    overlap_within_split = True
    keep_headings_with_body = True


CHUNKERS = {
    ChunkingStrategy.FIXED: FixedChunker,
    ChunkingStrategy.SEMANTIC: SemanticChunker,
    ChunkingStrategy.HYBRID: HybridChunker,
}


def get_chunker(
    strategy: Union[ChunkingStrategy, str],
    counter: Optional[TokenCounter] = None,
) -> BaseChunker:
    """Return a chunker instance for the named strategy."""
    return CHUNKERS[ChunkingStrategy(strategy)](counter)


def chunk_document(
    text: str,
    object_id: str,
    options: OptionsLike = None,
    counter: Optional[TokenCounter] = None,
) -> ChunkingResult:
    """Chunk a document with the strategy named in options (default hybrid)."""
    started = time.perf_counter()
    if not text or not text.strip():
        return _failure(ChunkingErrorCode.EMPTY_TEXT, "Empty text provided", started)
    try:
        opts = resolve_options(options)
    except (TypeError, ValueError) as e:
        return _failure(ChunkingErrorCode.INVALID_OPTIONS, str(e), started)
    return get_chunker(opts.strategy, counter).chunk(text, object_id, opts)


def chunk_many(
    documents: Iterable[Tuple[str, str]],
    options: OptionsLike = None,
    workers: int = 4,
    counter: Optional[TokenCounter] = None,
) -> List[ChunkingResult]:
    """Chunk (object_id, text) pairs in parallel; results keep input order."""
    documents = list(documents)
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        futures = [
            executor.submit(chunk_document, text, object_id, options, counter)
            for object_id, text in documents
        ]
        return [future.result() for future in futures]
