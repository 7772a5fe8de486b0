"""Mgrep Embedding Domain Models - Model descriptions and load progress."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..types import ModelLoadStatus
from ..exceptions import ValidationError


@dataclass(frozen=True)
class ModelInfo:
    """Description of the model behind an embedder."""

    name: str
    dimensions: int
    max_tokens: int

    def __post_init__(self):
        if not self.name:
            raise ValidationError("name", self.name, "Model name cannot be empty")
        if self.dimensions <= 0:
            raise ValidationError("dimensions", self.dimensions, "Dimensions must be positive")
        if self.max_tokens <= 0:
            raise ValidationError("max_tokens", self.max_tokens, "Max tokens must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "dimensions": self.dimensions, "max_tokens": self.max_tokens}


@dataclass(frozen=True)
class ModelLoadProgress:
    """Progress report emitted while an embedder prepares its model."""

    status: ModelLoadStatus
    model: str
    progress: Optional[float] = None
