"""Interfaces package for mgrep-local - abstract protocols for provider implementations."""

from .embedding_provider import Embedder
from .vector_store import VectorStore

__all__ = [
    "Embedder",
    "VectorStore",
]
