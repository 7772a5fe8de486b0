"""Mgrep Chunk Domain Model - A bounded slice of a file plus its source location.

Chunks are produced by the Chunker from one file's content. They are never
persisted on their own; the vector store keeps their content and metadata
alongside the embedding.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any

from ..types import LineNumber
from ..exceptions import ValidationError


@dataclass(frozen=True)
class ChunkMetadata:
    """Source-location metadata attached to a chunk.

    Attributes:
        start_line: Starting line number (1-based)
        end_line: Ending line number (1-based, inclusive)
        language: Language tag of the source file
        function_name: Function or class name the chunk starts with, if any
        class_scope: Enclosing class name, if known
        is_docstring: True when the chunk is a documentation block
    """

    start_line: LineNumber
    end_line: LineNumber
    language: str
    function_name: Optional[str] = None
    class_scope: Optional[str] = None
    is_docstring: bool = False

    def __post_init__(self):
        """Validate metadata after initialization."""
        self._validate()

    def _validate(self) -> None:
        if self.start_line < 1:
            raise ValidationError("start_line", self.start_line, "Start line must be positive")

        if self.end_line < self.start_line:
            raise ValidationError(
                "line_range",
                f"{self.start_line}-{self.end_line}",
                "Start line cannot be greater than end line"
            )

        if not self.language:
            raise ValidationError("language", self.language, "Language cannot be empty")

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_line": self.start_line,
            "end_line": self.end_line,
            "language": self.language,
            "function_name": self.function_name,
            "class_scope": self.class_scope,
            "is_docstring": self.is_docstring,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkMetadata":
        """Create metadata from a dictionary or a storage row mapping.

        Raises:
            ValidationError: If required fields are missing or invalid
        """
        start_line = data.get("start_line")
        if start_line is None:
            raise ValidationError("start_line", start_line, "Start line is required")

        end_line = data.get("end_line")
        if end_line is None:
            raise ValidationError("end_line", end_line, "End line is required")

        return cls(
            start_line=LineNumber(int(start_line)),
            end_line=LineNumber(int(end_line)),
            language=data.get("language") or "unknown",
            function_name=data.get("function_name"),
            class_scope=data.get("class_scope"),
            is_docstring=bool(data.get("is_docstring", False)),
        )


@dataclass(frozen=True)
class Chunk:
    """Domain model representing one chunk of a file.

    Attributes:
        content: Chunk text (never empty)
        metadata: Source-location metadata
    """

    content: str
    metadata: ChunkMetadata

    def __post_init__(self):
        """Validate chunk model after initialization."""
        if not self.content:
            raise ValidationError("content", self.content, "Chunk content cannot be empty")

    @property
    def language(self) -> str:
        return self.metadata.language

    @property
    def char_count(self) -> int:
        return len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "metadata": self.metadata.to_dict()}

    def __str__(self) -> str:
        name = self.metadata.function_name or "chunk"
        return f"{name} (lines {self.metadata.start_line}-{self.metadata.end_line}, {self.metadata.language})"
