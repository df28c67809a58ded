"""Token-bounded document chunking (fixed, semantic and hybrid strategies)."""

from ..core.models import (
    DEFAULT_CHUNKING_OPTIONS,
    Chunk,
    ChunkingErrorCode,
    ChunkingOptions,
    ChunkingResult,
    ChunkingStrategy,
    ChunkMetadata,
    DocumentSection,
    SemanticUnit,
)
from .assembler import ChunkAssembler, ChunkDraft
from .boundaries import (
    SectionDetector,
    SentenceSplitter,
    detect_sections,
    find_section,
    split_into_sentences,
    split_into_units,
)
from .engine import (
    FixedChunker,
    HybridChunker,
    SemanticChunker,
    chunk_document,
    chunk_many,
    get_chunker,
    resolve_options,
)
from .tokens import (
    GuardedCounter,
    TiktokenCounter,
    TokenCounter,
    TokenizationError,
    count_tokens,
    default_token_counter,
    truncate_to_tokens,
)
from .verify import calculate_coverage, verify_chunk_file, verify_result

__all__ = [
    "DEFAULT_CHUNKING_OPTIONS",
    "Chunk",
    "ChunkAssembler",
    "ChunkDraft",
    "ChunkMetadata",
    "ChunkingErrorCode",
    "ChunkingOptions",
    "ChunkingResult",
    "ChunkingStrategy",
    "DocumentSection",
    "FixedChunker",
    "GuardedCounter",
    "HybridChunker",
    "SectionDetector",
    "SemanticChunker",
    "SemanticUnit",
    "SentenceSplitter",
    "TiktokenCounter",
    "TokenCounter",
    "TokenizationError",
    "calculate_coverage",
    "chunk_document",
    "chunk_many",
    "count_tokens",
    "default_token_counter",
    "detect_sections",
    "find_section",
    "get_chunker",
    "resolve_options",
    "split_into_sentences",
    "split_into_units",
    "truncate_to_tokens",
    "verify_chunk_file",
    "verify_result",
]
