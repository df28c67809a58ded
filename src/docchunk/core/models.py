from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkingStrategy(str, Enum):
    FIXED = "fixed"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class ChunkingErrorCode(str, Enum):
    EMPTY_TEXT = "EMPTY_TEXT"
    TEXT_TOO_SHORT = "TEXT_TOO_SHORT"
    TOKENIZATION_FAILED = "TOKENIZATION_FAILED"
    INVALID_OPTIONS = "INVALID_OPTIONS"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ChunkingOptions(BaseModel):
    """Token budget and policy for one chunking call."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    strategy: ChunkingStrategy = ChunkingStrategy.HYBRID
    max_tokens: int = Field(512, ge=1, description="Hard ceiling per chunk")
    min_tokens: int = Field(
        50, ge=0, description="Documents below this become one chunk"
    )
    overlap_tokens: int = Field(
        50, ge=0, description="Tokens repeated at the start of the next chunk"
    )
    enforce_hard_cap: bool = Field(
        False,
        description="Cut sentences still above max_tokens on token windows",
    )

    @model_validator(mode="after")
    def _overlap_below_ceiling(self) -> "ChunkingOptions":
        if self.overlap_tokens >= self.max_tokens:
            raise ValueError(
                f"overlap_tokens ({self.overlap_tokens}) must be smaller "
                f"than max_tokens ({self.max_tokens})"
            )
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> "ChunkingOptions":
        return cls(
            strategy=settings.CHUNK_STRATEGY,
            max_tokens=settings.CHUNK_MAX_TOKENS,
            min_tokens=settings.CHUNK_MIN_TOKENS,
            overlap_tokens=settings.CHUNK_OVERLAP_TOKENS,
            enforce_hard_cap=settings.CHUNK_ENFORCE_HARD_CAP,
        )


DEFAULT_CHUNKING_OPTIONS = ChunkingOptions()


class DocumentSection(BaseModel):
    title: str
    level: int
    start_char: int
    end_char: int


class SemanticUnit(BaseModel):
    text: str
    token_count: int
    start_char: int
    end_char: int
    is_heading: bool = False


class ChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_overlap_before: bool = False
    has_overlap_after: bool = False
    word_count: int = 0
    unit_count: int | None = None
    overlap_tokens: int | None = None
    start_char: int | None = None
    end_char: int | None = None
    start_token_index: int | None = None
    end_token_index: int | None = None
    oversized: bool = False


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    object_id: str
    chunk_index: int
    content: str
    token_count: int
    section_title: str | None = None
    chunking_strategy: ChunkingStrategy
    metadata: ChunkMetadata = ChunkMetadata()
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_row(self) -> dict[str, Any]:
        """Row shape expected by the chunk storage table."""
        return {
            "id": self.id,
            "object_id": self.object_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "token_count": self.token_count,
            "section_title": self.section_title,
            "chunking_strategy": self.chunking_strategy.value,
            "metadata": self.metadata.model_dump(exclude_none=True),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Chunk":
        return cls(
            id=row["id"],
            object_id=row["object_id"],
            chunk_index=row["chunk_index"],
            content=row["content"],
            token_count=row["token_count"],
            section_title=row.get("section_title"),
            chunking_strategy=row["chunking_strategy"],
            metadata=ChunkMetadata(**(row.get("metadata") or {})),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )


class ChunkingResult(BaseModel):
    success: bool
    chunks: list[Chunk] = []
    total_tokens: int = 0
    error: str | None = None
    error_code: ChunkingErrorCode | None = None
    processing_duration_ms: int = 0
