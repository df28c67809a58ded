"""
Token counting capability used by every chunking strategy.

The engine only talks to the ``TokenCounter`` protocol; ``TiktokenCounter``
is the default implementation.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import tiktoken


class TokenizationError(RuntimeError):
    """Raised when the injected token counter fails."""


@runtime_checkable
class TokenCounter(Protocol):
    def count(self, text: str) -> int: ...

    def encode(self, text: str) -> List[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenCounter:
    """Token counter backed by a tiktoken encoding.

    The encoding is loaded on first use (it may need to fetch BPE ranks) and
    is safe to share between threads afterwards.
    """

    def __init__(self, encoding_name: str = "cl100k_base"):
        self.encoding_name = encoding_name
        self._encoding: Optional[tiktoken.Encoding] = None
        self._lock = threading.Lock()

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            with self._lock:
                if self._encoding is None:
                    self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count(self, text: str) -> int:
        return len(self.encoding.encode(text, disallowed_special=()))

    def encode(self, text: str) -> List[int]:
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self.encoding.decode(list(tokens))


class GuardedCounter:
    """Wraps a counter so that any failure surfaces as TokenizationError."""

    def __init__(self, inner: TokenCounter):
        self.inner = inner

    def count(self, text: str) -> int:
        try:
            return self.inner.count(text)
        except Exception as e:
            raise TokenizationError(f"count failed: {e}") from e

    def encode(self, text: str) -> List[int]:
        try:
            return list(self.inner.encode(text))
        except Exception as e:
            raise TokenizationError(f"encode failed: {e}") from e

    def decode(self, tokens: Sequence[int]) -> str:
        try:
            return self.inner.decode(tokens)
        except Exception as e:
            raise TokenizationError(f"decode failed: {e}") from e


_default_counter: Optional[TiktokenCounter] = None
_default_lock = threading.Lock()


def default_token_counter() -> TiktokenCounter:
    """Process-wide tiktoken counter using the configured encoding."""
    global _default_counter
    if _default_counter is None:
        with _default_lock:
            if _default_counter is None:
                from ..core.config import SETTINGS

                _default_counter = TiktokenCounter(SETTINGS.TOKENIZER_ENCODING)
    return _default_counter


def count_tokens(text: str, counter: Optional[TokenCounter] = None) -> int:
    """Count tokens in text."""
    return (counter or default_token_counter()).count(text)


def truncate_to_tokens(
    text: str, max_tokens: int, counter: Optional[TokenCounter] = None
) -> str:
    """Cut text down to at most max_tokens tokens."""
    counter = counter or default_token_counter()
    tokens = counter.encode(text)
    if len(tokens) <= max_tokens:
        return text
    return counter.decode(tokens[:max_tokens])
