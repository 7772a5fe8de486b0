"""Length-based batching utilities for embedding backends."""

from collections.abc import Sequence
from typing import TypeVar

T = TypeVar('T')

# Rough characters-per-token ratio for source code and English text
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count for a text."""
    return max(1, len(text) // CHARS_PER_TOKEN)


def truncate_text(text: str, max_tokens: int) -> str:
    """Cut text to the model's token budget using the length heuristic.

    Deterministic: the same text and budget always give the same prefix.
    """
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text
    return text[:max_chars]


def split_into_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most batch_size."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]
