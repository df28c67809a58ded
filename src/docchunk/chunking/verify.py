"""
Chunk verification utilities.

Re-tokenizes chunk content and checks the guarantees every strategy makes:
contiguous indices, the token ceiling, the overlap bound and coverage of the
source text.
"""

import json
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.logging import log
from ..core.models import Chunk, ChunkingOptions, ChunkingResult
from .engine import OptionsLike, resolve_options
from .tokens import TokenCounter, default_token_counter


def calculate_coverage(
    spans: Sequence[Tuple[int, int]], original_text_length: int
) -> Tuple[float, List[Tuple[int, int]]]:
    """
    Calculate text coverage from character spans and identify gaps.

    Args:
        spans: (start, end) ranges covered by chunks, in any order
        original_text_length: Length of the original document text

    Returns:
        Tuple of (coverage_percentage, list_of_gaps)
        where gaps are (start, end) tuples of uncovered ranges
    """
    if original_text_length == 0:
        return 100.0, []

    covered_ranges = sorted((s, e) for s, e in spans if s < e)
    if not covered_ranges:
        return 0.0, [(0, original_text_length)]

    merged_ranges = []
    current_start, current_end = covered_ranges[0]
    for start, end in covered_ranges[1:]:
        if start <= current_end:  # Overlapping or adjacent
            current_end = max(current_end, end)
        else:
            merged_ranges.append((current_start, current_end))
            current_start, current_end = start, end
    merged_ranges.append((current_start, current_end))

    gaps = []
    position = 0
    for start, end in merged_ranges:
        if start > position:
            gaps.append((position, start))
        position = max(position, end)
    if position < original_text_length:
        gaps.append((position, original_text_length))

    covered = sum(end - start for start, end in merged_ranges)
    return (covered / original_text_length) * 100.0, gaps


def _check_indices(chunks: Sequence[Chunk]) -> List[Dict]:
    return [
        {"chunk_id": chunk.id, "expected": expected, "actual": chunk.chunk_index}
        for expected, chunk in enumerate(chunks)
        if chunk.chunk_index != expected
    ]


def _check_ceiling(
    chunks: Sequence[Chunk], max_tokens: int, counter: TokenCounter
) -> Tuple[List[Dict], List[Dict]]:
    """Return (breaches, flagged oversized chunks)."""
    breaches = []
    oversized = []
    for chunk in chunks:
        actual = counter.count(chunk.content)
        if actual <= max_tokens:
            continue
        entry = {
            "chunk_id": chunk.id,
            "object_id": chunk.object_id,
            "chunk_index": chunk.chunk_index,
            "token_count": actual,
            "reported_token_count": chunk.token_count,
        }
        (oversized if chunk.metadata.oversized else breaches).append(entry)
    return breaches, oversized


def _token_gaps(chunks: Sequence[Chunk], total_tokens: int) -> List[Tuple[int, int]]:
    """Uncovered token ranges for fixed-window chunks."""
    gaps = []
    position = 0
    for chunk in chunks:
        start = chunk.metadata.start_token_index or 0
        end = chunk.metadata.end_token_index or 0
        if start > position:
            gaps.append((position, start))
        position = max(position, end)
    if position < total_tokens:
        gaps.append((position, total_tokens))
    return gaps


def verify_result(
    result: ChunkingResult,
    text: str,
    options: OptionsLike = None,
    counter: Optional[TokenCounter] = None,
) -> Dict:
    """
    Verify one chunking result against the text it was produced from.

    Whitespace between units is never part of a chunk, so only gaps holding
    visible characters count as coverage violations.

    Returns:
        Report dictionary with a ``status`` of PASS or FAIL
    """
    counter = counter or default_token_counter()
    opts: ChunkingOptions = resolve_options(options)
    chunks = result.chunks

    if not result.success:
        return {
            "status": "FAIL",
            "error": result.error,
            "error_code": result.error_code.value if result.error_code else None,
        }

    index_errors = _check_indices(chunks)
    breaches, oversized = _check_ceiling(chunks, opts.max_tokens, counter)
    overlap_violations = [
        {"chunk_id": chunk.id, "overlap_tokens": chunk.metadata.overlap_tokens}
        for chunk in chunks
        if (chunk.metadata.overlap_tokens or 0) > opts.overlap_tokens
    ]

    token_windows = bool(chunks) and chunks[0].metadata.start_token_index is not None
    if token_windows:
        gaps = _token_gaps(chunks, result.total_tokens)
        missing = sum(end - start for start, end in gaps)
        coverage_pct = 100.0 * (1 - missing / max(1, result.total_tokens))
    else:
        coverage_pct, raw_gaps = calculate_coverage(
            [
                (chunk.metadata.start_char or 0, chunk.metadata.end_char or 0)
                for chunk in chunks
            ],
            len(text),
        )
        gaps = [(start, end) for start, end in raw_gaps if text[start:end].strip()]

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "parameters": opts.model_dump(mode="json"),
        "statistics": {
            "total_chunks": len(chunks),
            "total_tokens": result.total_tokens,
            "coverage_pct": coverage_pct,
        },
        "violations": {
            "index_errors": index_errors,
            "oversize_chunks": breaches,
            "overlap_violations": overlap_violations,
            "gaps": gaps[:10],
            "gaps_count": len(gaps),
        },
        "oversized_sentences": oversized,
        "status": (
            "PASS"
            if not (index_errors or breaches or overlap_violations or gaps)
            else "FAIL"
        ),
    }
    return report


def verify_chunk_file(
    path: str,
    max_tokens: int,
    counter: Optional[TokenCounter] = None,
) -> Dict:
    """
    Verify an NDJSON file of chunk rows (as written by ``Chunk.to_row``).

    Chunks are grouped by ``object_id``; indices are checked per document
    and every chunk is re-tokenized against ``max_tokens``.
    """
    counter = counter or default_token_counter()
    chunks_file = Path(path)

    chunks_by_doc: Dict[str, List[Chunk]] = defaultdict(list)
    malformed = []
    with open(chunks_file, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                chunk = Chunk.from_row(json.loads(line))
            except (ValueError, KeyError, TypeError) as e:
                log.warning(
                    "verify.malformed_row", path=str(chunks_file), line=line_number
                )
                malformed.append({"line": line_number, "error": str(e)})
                continue
            chunks_by_doc[chunk.object_id].append(chunk)

    index_errors: List[Dict] = []
    breaches: List[Dict] = []
    oversized: List[Dict] = []
    total_chunks = 0
    for object_id, doc_chunks in chunks_by_doc.items():
        doc_chunks.sort(key=lambda c: c.chunk_index)
        total_chunks += len(doc_chunks)
        for error in _check_indices(doc_chunks):
            index_errors.append({"object_id": object_id, **error})
        doc_breaches, doc_oversized = _check_ceiling(doc_chunks, max_tokens, counter)
        breaches.extend(doc_breaches)
        oversized.extend(doc_oversized)

    status = "PASS" if not (index_errors or breaches or malformed) else "FAIL"
    log.info(
        "verify.complete",
        path=str(chunks_file),
        documents=len(chunks_by_doc),
        chunks=total_chunks,
        status=status,
    )
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "parameters": {"path": str(chunks_file), "max_tokens": max_tokens},
        "statistics": {
            "total_documents": len(chunks_by_doc),
            "total_chunks": total_chunks,
        },
        "violations": {
            "index_errors": index_errors,
            "oversize_chunks": breaches,
            "malformed_rows": malformed,
        },
        "oversized_sentences": oversized,
        "status": status,
    }
