"""Mgrep File Event Domain Model - Change notifications delivered to the indexer."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..types import FileEventType, FilePath
from ..exceptions import ValidationError


@dataclass(frozen=True)
class FileChangeEvent:
    """A debounced file change.

    Attributes:
        file_path: Changed file
        event_type: Added, modified or deleted
        timestamp: Unix time the change was observed
        content: New content when already known; read from disk when None
    """

    file_path: FilePath
    event_type: FileEventType
    timestamp: float = field(default_factory=time.time)
    content: Optional[str] = None

    def __post_init__(self):
        if not self.file_path:
            raise ValidationError("file_path", self.file_path, "File path cannot be empty")

    @property
    def is_deletion(self) -> bool:
        return self.event_type is FileEventType.DELETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "has_content": self.content is not None,
        }
