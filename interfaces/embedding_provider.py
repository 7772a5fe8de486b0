"""Embedder protocol for mgrep-local - abstract interface for embedding backends."""

from typing import Any, Protocol

from core.models import ModelInfo
from core.types import EmbedderBackend, EmbedderState


class Embedder(Protocol):
    """Abstract protocol for embedding backends.

    Defines the interface that the CPU, GPU-server and remote API backends
    implement. Indexers and searchers depend only on this protocol.
    """

    @property
    def backend(self) -> EmbedderBackend:
        """Backend variant serving this embedder."""
        ...

    @property
    def name(self) -> str:
        """Embedder name (e.g., 'cpu/all-MiniLM-L6-v2', 'openai/text-embedding-3-small')."""
        ...

    @property
    def dimensions(self) -> int:
        """Embedding dimensions."""
        ...

    @property
    def state(self) -> EmbedderState:
        """Current lifecycle state."""
        ...

    async def initialize(self) -> None:
        """Load the model or connect to the backend.

        Idempotent: concurrent callers share a single in-flight initialization.

        Raises:
            InitializationError: If the backend is unavailable or fails to load
        """
        ...

    async def embed(self, text: str) -> list[float]:
        """Generate the embedding for one text.

        Raises:
            InitializationError: If lazy initialization fails
            EmbeddingError: If inference fails
        """
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for many texts, one vector per input, in order.

        Raises:
            InitializationError: If lazy initialization fails
            EmbeddingError: If inference fails
        """
        ...

    def get_model_info(self) -> ModelInfo:
        """Return model name, dimensions and token budget."""
        ...

    async def dispose(self) -> None:
        """Release the model or backend connection."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Report backend status."""
        ...
