"""Tests for the fixed, semantic and hybrid chunking strategies."""

import pytest

from docchunk.chunking.engine import (
    FixedChunker,
    HybridChunker,
    SemanticChunker,
    chunk_document,
    chunk_many,
    get_chunker,
    resolve_options,
)
from docchunk.core.models import (
    ChunkingErrorCode,
    ChunkingOptions,
    ChunkingStrategy,
)


def _words(prefix, n):
    return " ".join(f"{prefix}{i}" for i in range(n))


def _sentences(prefix, n, length=10):
    return " ".join(_words(f"{prefix}{i}w", length) + "." for i in range(n))


def _normalized(text):
    return " ".join(text.split())


DOC = "\n\n".join(
    [
        "# Overview",
        _words("o", 40),
        "## Install",
        _words("i", 70),
        _sentences("s", 20),
        "## Usage",
        _words("u", 30),
    ]
)

ALL_CHUNKERS = [FixedChunker, SemanticChunker, HybridChunker]


class TestFixedStrategy:
    """Test sliding token windows."""

    def test_windows_with_overlap(self, counter):
        """250 tokens, max 100, overlap 20 gives three windows."""
        text = _words("w", 250)
        result = FixedChunker(counter).chunk(
            text, "doc", {"max_tokens": 100, "overlap_tokens": 20, "min_tokens": 0}
        )

        assert result.success
        assert result.total_tokens == 250
        spans = [
            (c.metadata.start_token_index, c.metadata.end_token_index)
            for c in result.chunks
        ]
        assert spans == [(0, 100), (80, 180), (160, 250)]
        assert [c.token_count for c in result.chunks] == [100, 100, 90]
        assert result.chunks[1].content.startswith("w80 w81")

        first, middle, last = result.chunks
        assert (first.metadata.has_overlap_before, first.metadata.has_overlap_after) == (False, True)
        assert (middle.metadata.has_overlap_before, middle.metadata.has_overlap_after) == (True, True)
        assert (last.metadata.has_overlap_before, last.metadata.has_overlap_after) == (True, False)
        assert all(c.section_title is None for c in result.chunks)

    def test_windows_without_overlap(self, counter):
        """With zero overlap windows are disjoint and carry no flags."""
        result = FixedChunker(counter).chunk(
            _words("w", 250), "doc", {"max_tokens": 100, "overlap_tokens": 0, "min_tokens": 0}
        )

        assert [c.token_count for c in result.chunks] == [100, 100, 50]
        assert not any(
            c.metadata.has_overlap_before or c.metadata.has_overlap_after
            for c in result.chunks
        )

    def test_text_ending_on_window_boundary(self, counter):
        """No empty trailing window when the text fills the last one exactly."""
        result = FixedChunker(counter).chunk(
            _words("w", 200), "doc", {"max_tokens": 100, "overlap_tokens": 0, "min_tokens": 0}
        )
        assert [c.token_count for c in result.chunks] == [100, 100]

    def test_strategy_is_forced(self, counter):
        """A chunker ignores a different strategy in the options."""
        result = FixedChunker(counter).chunk(
            _words("w", 10), "doc", {"strategy": "hybrid", "min_tokens": 0}
        )
        assert result.chunks[0].chunking_strategy == ChunkingStrategy.FIXED


class TestSemanticStrategy:
    """Test paragraph packing."""

    def test_two_paragraphs_in_one_chunk(self, counter):
        """40 + 50 token paragraphs fit in one 90 token chunk."""
        text = _words("a", 40) + "\n\n" + _words("b", 50)
        result = SemanticChunker(counter).chunk(
            text, "doc", {"max_tokens": 100, "overlap_tokens": 10, "min_tokens": 0}
        )

        assert len(result.chunks) == 1
        chunk = result.chunks[0]
        assert chunk.token_count == 90
        assert chunk.metadata.unit_count == 2
        assert not chunk.metadata.has_overlap_before
        assert not chunk.metadata.has_overlap_after

    def test_long_paragraph_split_on_sentences(self, counter):
        """A 500 token paragraph splits into sentence-aligned chunks."""
        result = SemanticChunker(counter).chunk(
            _sentences("s", 50), "doc", {"max_tokens": 100, "overlap_tokens": 20, "min_tokens": 0}
        )

        assert len(result.chunks) == 5
        assert all(c.token_count <= 100 for c in result.chunks)
        assert all(c.content.endswith(".") for c in result.chunks)
        assert not any(c.metadata.has_overlap_before for c in result.chunks)

    def test_overlap_flags_are_consistent(self, counter):
        """has_overlap_after mirrors the next chunk's has_overlap_before."""
        text = _words("a", 60) + "\n\n" + _words("b", 60) + "\n\n" + _words("c", 60)
        result = SemanticChunker(counter).chunk(
            text, "doc", {"max_tokens": 100, "overlap_tokens": 10, "min_tokens": 0}
        )

        chunks = result.chunks
        assert len(chunks) == 3
        for current, following in zip(chunks, chunks[1:]):
            assert current.metadata.has_overlap_after == following.metadata.has_overlap_before
        assert chunks[1].metadata.overlap_tokens == 10
        assert not chunks[-1].metadata.has_overlap_after

    def test_section_titles(self, counter):
        """Each chunk is labelled with the section of its first unit."""
        result = SemanticChunker(counter).chunk(
            DOC, "doc", {"max_tokens": 80, "overlap_tokens": 0, "min_tokens": 0}
        )

        titles = [c.section_title for c in result.chunks]
        assert titles[0] == "Overview"
        assert "Install" in titles
        assert titles[-1] in ("Install", "Usage")

    def test_oversized_sentence_is_flagged(self, counter):
        """A single sentence above the ceiling is kept whole and flagged."""
        result = SemanticChunker(counter).chunk(
            _words("x", 150), "doc", {"max_tokens": 100, "overlap_tokens": 0, "min_tokens": 0}
        )

        (chunk,) = result.chunks
        assert chunk.metadata.oversized
        assert chunk.token_count == 150

    def test_hard_cap_option(self, counter):
        """enforce_hard_cap keeps every chunk under the ceiling."""
        result = SemanticChunker(counter).chunk(
            _words("x", 150),
            "doc",
            {"max_tokens": 100, "overlap_tokens": 0, "min_tokens": 0, "enforce_hard_cap": True},
        )
        assert [c.token_count for c in result.chunks] == [100, 50]


class TestHybridStrategy:
    """Test hybrid packing."""

    def test_overlap_between_sentence_pieces(self, counter):
        """Pieces of a split paragraph overlap each other."""
        result = HybridChunker(counter).chunk(
            _sentences("s", 50), "doc", {"max_tokens": 100, "overlap_tokens": 20, "min_tokens": 0}
        )

        assert len(result.chunks) == 6
        assert all(c.token_count <= 100 for c in result.chunks)
        assert all(c.metadata.has_overlap_before for c in result.chunks[1:])

    def test_headings_start_chunks(self, counter):
        """Headings are kept with the body they introduce."""
        text = "# Intro\n\n" + _words("a", 8) + "\n\n## Details\n\n" + _words("b", 8)
        result = HybridChunker(counter).chunk(
            text, "doc", {"max_tokens": 12, "overlap_tokens": 0, "min_tokens": 0}
        )

        assert [c.section_title for c in result.chunks] == ["Intro", "Details"]
        assert result.chunks[1].content.startswith("## Details")


@pytest.mark.parametrize("chunker_cls", ALL_CHUNKERS)
class TestCommonProperties:
    """Properties every strategy guarantees."""

    OPTIONS = {"max_tokens": 60, "overlap_tokens": 10, "min_tokens": 0}

    def test_token_ceiling(self, chunker_cls, counter):
        """No chunk exceeds max_tokens unless flagged oversized."""
        result = chunker_cls(counter).chunk(DOC, "doc", self.OPTIONS)

        assert result.success
        for chunk in result.chunks:
            assert counter.count(chunk.content) == chunk.token_count
            assert chunk.token_count <= 60 or chunk.metadata.oversized

    def test_indices_are_contiguous(self, chunker_cls, counter):
        """chunk_index runs 0..n-1 and object_id is propagated."""
        result = chunker_cls(counter).chunk(DOC, "doc-42", self.OPTIONS)

        assert [c.chunk_index for c in result.chunks] == list(range(len(result.chunks)))
        assert {c.object_id for c in result.chunks} == {"doc-42"}
        assert len({c.id for c in result.chunks}) == len(result.chunks)

    def test_round_trip_without_overlap(self, chunker_cls, counter):
        """Concatenated chunks reproduce the text up to whitespace."""
        options = {"max_tokens": 60, "overlap_tokens": 0, "min_tokens": 0}
        result = chunker_cls(counter).chunk(DOC, "doc", options)

        joined = " ".join(c.content for c in result.chunks)
        assert _normalized(joined) == _normalized(DOC)

    def test_round_trip_with_overlap(self, chunker_cls, counter):
        """Dropping each chunk's overlap words leaves no duplicated text."""
        result = chunker_cls(counter).chunk(DOC, "doc", self.OPTIONS)

        assert any(c.metadata.overlap_tokens for c in result.chunks)
        words = [
            word
            for c in result.chunks
            for word in c.content.split()[(c.metadata.overlap_tokens or 0) :]
        ]
        assert words == DOC.split()

    def test_overlap_bound(self, chunker_cls, counter):
        """Overlap never exceeds overlap_tokens."""
        result = chunker_cls(counter).chunk(DOC, "doc", self.OPTIONS)
        for chunk in result.chunks:
            assert (chunk.metadata.overlap_tokens or 0) <= 10
        assert not result.chunks[-1].metadata.has_overlap_after

    def test_deterministic(self, chunker_cls, counter):
        """Same input gives the same contents and counts."""
        first = chunker_cls(counter).chunk(DOC, "doc", self.OPTIONS)
        second = chunker_cls(counter).chunk(DOC, "doc", self.OPTIONS)

        assert [c.content for c in first.chunks] == [c.content for c in second.chunks]
        assert [c.token_count for c in first.chunks] == [c.token_count for c in second.chunks]

    def test_short_document_is_one_chunk(self, chunker_cls, counter):
        """Below min_tokens the whole text becomes a single chunk."""
        text = "\n# Title\n\n" + _words("w", 20) + "\n"
        result = chunker_cls(counter).chunk(text, "doc", {"min_tokens": 50})

        (chunk,) = result.chunks
        assert chunk.content == text
        assert result.total_tokens == 22
        assert chunk.token_count == 22
        assert not chunk.metadata.has_overlap_before
        assert not chunk.metadata.has_overlap_after

    def test_empty_text(self, chunker_cls, counter):
        """Blank input fails with EMPTY_TEXT and no chunks."""
        for text in ["", "   \n\t "]:
            result = chunker_cls(counter).chunk(text, "doc")
            assert not result.success
            assert result.error_code == ChunkingErrorCode.EMPTY_TEXT
            assert result.chunks == []

    def test_empty_text_wins_over_invalid_options(self, chunker_cls, counter):
        """Blank input is EMPTY_TEXT even when the options are invalid."""
        result = chunker_cls(counter).chunk("  ", "doc", {"max_tokens": 0})

        assert result.error_code == ChunkingErrorCode.EMPTY_TEXT

    def test_tokenizer_failure(self, chunker_cls, failing_counter):
        """A failing counter yields TOKENIZATION_FAILED, never an exception."""
        result = chunker_cls(failing_counter).chunk("some text here", "doc")

        assert not result.success
        assert result.error_code == ChunkingErrorCode.TOKENIZATION_FAILED
        assert "tokenizer unavailable" in result.error
        assert result.chunks == []

    def test_invalid_options(self, chunker_cls, counter):
        """overlap >= max is rejected as INVALID_OPTIONS."""
        result = chunker_cls(counter).chunk(
            "text", "doc", {"max_tokens": 10, "overlap_tokens": 10}
        )
        assert result.error_code == ChunkingErrorCode.INVALID_OPTIONS


class TestErrorHandling:
    """Test unexpected failures and timing."""

    def test_unexpected_error_is_caught(self, counter, monkeypatch, captured_logs):
        """Unexpected errors become UNKNOWN_ERROR and are logged."""

        def boom(*args, **kwargs):
            raise KeyError("broken")

        monkeypatch.setattr(SemanticChunker, "_split", boom)
        result = SemanticChunker(counter).chunk(_words("w", 100), "doc", {"min_tokens": 0})

        assert not result.success
        assert result.error_code == ChunkingErrorCode.UNKNOWN_ERROR
        assert any(e["event"] == "chunk.unexpected_error" for e in captured_logs)

    def test_duration_is_recorded(self, counter):
        """processing_duration_ms is set on success and failure."""
        ok = SemanticChunker(counter).chunk(_words("w", 10), "doc")
        failed = SemanticChunker(counter).chunk("", "doc")

        assert ok.processing_duration_ms >= 0
        assert failed.processing_duration_ms >= 0


class TestEntryPoints:
    """Test option resolution and dispatch helpers."""

    def test_resolve_options_merges_partial_mapping(self):
        """Missing fields fall back to defaults."""
        options = resolve_options({"max_tokens": 256})

        assert options.max_tokens == 256
        assert options.min_tokens == 50
        assert options.overlap_tokens == 50
        assert options.strategy == ChunkingStrategy.HYBRID

    def test_resolve_options_forces_strategy(self):
        """An explicit strategy overrides the options."""
        options = resolve_options(
            ChunkingOptions(strategy=ChunkingStrategy.FIXED), ChunkingStrategy.SEMANTIC
        )
        assert options.strategy == ChunkingStrategy.SEMANTIC

    def test_get_chunker(self, counter):
        """Strategies resolve to their chunker classes."""
        assert isinstance(get_chunker("fixed", counter), FixedChunker)
        assert isinstance(get_chunker(ChunkingStrategy.SEMANTIC), SemanticChunker)
        assert isinstance(get_chunker("hybrid"), HybridChunker)

    def test_chunk_document_dispatches_on_strategy(self, counter):
        """chunk_document uses the strategy named in the options."""
        result = chunk_document(
            _words("w", 120), "doc", {"strategy": "fixed", "max_tokens": 50, "overlap_tokens": 0}, counter
        )
        assert [c.chunking_strategy for c in result.chunks] == [ChunkingStrategy.FIXED] * 3

    def test_chunk_document_invalid_options(self, counter):
        """Invalid options never raise."""
        result = chunk_document("text", "doc", {"max_tokens": 0}, counter)
        assert result.error_code == ChunkingErrorCode.INVALID_OPTIONS

    def test_chunk_document_blank_text_before_options(self, counter):
        """Blank text reports EMPTY_TEXT whatever the options."""
        result = chunk_document("", "doc", {"max_tokens": 0}, counter)
        assert result.error_code == ChunkingErrorCode.EMPTY_TEXT

    def test_chunk_many_keeps_input_order(self, counter):
        """Results line up with the input documents."""
        documents = [(f"doc-{i}", _words(f"d{i}x", 30 + i * 40)) for i in range(6)]
        results = chunk_many(
            documents, {"max_tokens": 50, "overlap_tokens": 5, "min_tokens": 0}, workers=3, counter=counter
        )

        assert len(results) == 6
        for (object_id, _), result in zip(documents, results):
            assert result.success
            assert {c.object_id for c in result.chunks} == {object_id}
