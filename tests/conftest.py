"""Global test configuration for docchunk tests."""

import threading
from typing import Dict, List, Sequence

import pytest
from structlog.testing import capture_logs


class WhitespaceTokenCounter:
    """Deterministic counter: one token per whitespace-separated word."""

    def __init__(self):
        self._ids: Dict[str, int] = {}
        self._words: List[str] = []
        self._lock = threading.Lock()

    def count(self, text: str) -> int:
        return len(text.split())

    def encode(self, text: str) -> List[int]:
        ids = []
        with self._lock:
            for word in text.split():
                if word not in self._ids:
                    self._ids[word] = len(self._words)
                    self._words.append(word)
                ids.append(self._ids[word])
        return ids

    def decode(self, tokens: Sequence[int]) -> str:
        return " ".join(self._words[t] for t in tokens)


class FailingTokenCounter:
    """Counter whose every call raises, standing in for a broken tokenizer."""

    def count(self, text: str) -> int:
        raise RuntimeError("tokenizer unavailable")

    def encode(self, text: str) -> List[int]:
        raise RuntimeError("tokenizer unavailable")

    def decode(self, tokens: Sequence[int]) -> str:
        raise RuntimeError("tokenizer unavailable")


@pytest.fixture
def counter():
    return WhitespaceTokenCounter()


@pytest.fixture
def failing_counter():
    return FailingTokenCounter()


@pytest.fixture
def tiktoken_counter():
    """Real tiktoken counter; skipped when the encoding cannot be loaded."""
    from docchunk.chunking.tokens import TiktokenCounter

    counter = TiktokenCounter("cl100k_base")
    try:
        counter.count("warm up")
    except Exception as e:
        pytest.skip(f"tiktoken encoding unavailable: {e}")
    return counter


@pytest.fixture(autouse=True)
def captured_logs():
    """Keep structlog output out of captured stdout and expose it to tests."""
    with capture_logs() as logs:
        yield logs
