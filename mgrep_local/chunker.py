"""Chunker module for mgrep-local - splits file content into bounded chunks.

Chunks prefer to start on function/class boundaries found with per-language
regular expressions. Content without recognizable boundaries falls back to a
line-based sliding window with a small character overlap between chunks.
"""

import re
from bisect import bisect_right
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Union

from loguru import logger

from core.models import Chunk, ChunkMetadata
from core.types import Language, LineNumber

DEFAULT_MAX_CHUNK_SIZE = 500
DEFAULT_OVERLAP_SIZE = 50


def _multiline(pattern: str) -> Pattern[str]:
    return re.compile(pattern, re.MULTILINE)


# Start-of-definition patterns, anchored at line start
BOUNDARY_PATTERNS: Dict[str, Pattern[str]] = {
    "typescript": _multiline(
        r"^(?:export\s+)?(?:async\s+)?(?:function|class|interface|type|enum|const|let|var)\s+\w+"
    ),
    "javascript": _multiline(r"^(?:export\s+)?(?:async\s+)?(?:function|class|const|let|var)\s+\w+"),
    "python": _multiline(r"^(?:async\s+)?(?:def|class)\s+\w+"),
    "ruby": _multiline(r"^(?:def|class|module)\s+\w+"),
    "go": _multiline(r"^(?:func|type)\s+\w+"),
    "rust": _multiline(r"^(?:pub\s+)?(?:fn|struct|enum|impl|trait|mod)\s+\w+"),
    "java": _multiline(
        r"^[ \t]*(?:(?:public|private|protected)\s+)?(?:static\s+)?(?:class|interface|enum|void|int|String)\s+\w+"
    ),
    "kotlin": _multiline(r"^(?:fun|class|interface|object|data class)\s+\w+"),
    "swift": _multiline(r"^(?:func|class|struct|enum|protocol)\s+\w+"),
    "c": _multiline(r"^(?:static\s+)?(?:void|int|char|float|double|struct)\s+\w+\s*\("),
    "cpp": _multiline(r"^(?:class|struct|void|int|auto)\s+\w+"),
    "csharp": _multiline(
        r"^[ \t]*(?:(?:public|private|protected|internal)\s+)?(?:static\s+)?(?:class|interface|struct|enum|void)\s+\w+"
    ),
    "php": _multiline(r"^(?:function|class|interface|trait)\s+\w+"),
}

# Name capture patterns; the name is in group 1 or group 2
FUNCTION_NAME_PATTERNS: Dict[str, Pattern[str]] = {
    "typescript": re.compile(r"(?:function|class|interface|type|enum|const|let|var)\s+(\w+)"),
    "javascript": re.compile(r"(?:function|class|const|let|var)\s+(\w+)"),
    "python": re.compile(r"(?:def|class)\s+(\w+)"),
    "ruby": re.compile(r"(?:def|class|module)\s+(\w+)"),
    "go": re.compile(r"(?:func|type)\s+(\w+)"),
    "rust": re.compile(r"(?:fn|struct|enum|impl|trait|mod)\s+(\w+)"),
    "java": re.compile(r"(?:class|interface|enum)\s+(\w+)|(\w+)\s*\("),
    "kotlin": re.compile(r"(?:fun|class|interface|object)\s+(\w+)"),
    "swift": re.compile(r"(?:func|class|struct|enum|protocol)\s+(\w+)"),
    "c": re.compile(r"(\w+)\s*\("),
    "cpp": re.compile(r"(?:class|struct)\s+(\w+)|(\w+)\s*\("),
    "csharp": re.compile(r"(?:class|interface|struct|enum)\s+(\w+)|(\w+)\s*\("),
    "php": re.compile(r"(?:function|class|interface|trait)\s+(\w+)"),
}

_CLASS_PATTERN = re.compile(r"\b(?:class|struct|interface|trait|impl|module|object)\s+(\w+)")


class Chunker:
    """Splits source text into chunks with source-location metadata."""

    def __init__(
        self,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        overlap_size: int = DEFAULT_OVERLAP_SIZE,
        respect_boundaries: bool = True,
    ):
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be positive")
        if overlap_size < 0 or overlap_size >= max_chunk_size:
            raise ValueError("overlap_size must be in [0, max_chunk_size)")

        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size
        self.respect_boundaries = respect_boundaries

    @staticmethod
    def supported_extensions() -> List[str]:
        """File extensions with a known language tag."""
        return sorted(Language.extension_map())

    @staticmethod
    def detect_language(
        file_path: Optional[Union[str, Path]] = None, content: Optional[str] = None
    ) -> str:
        """Map a file extension (or, failing that, the content) to a language tag."""
        if file_path:
            language = Language.from_file_extension(file_path)
            if language is not Language.UNKNOWN:
                return language.value
        return Language.from_content(content).value

    def chunk(self, content: str, file_path: Optional[Union[str, Path]] = None) -> List[Chunk]:
        """Split content into chunks.

        Args:
            content: Raw file text
            file_path: Optional path used for language detection

        Returns:
            Chunks in file order; empty for empty or whitespace-only content
        """
        if not content or not content.strip():
            return []

        language = self.detect_language(file_path, content)

        if self.respect_boundaries:
            pattern = BOUNDARY_PATTERNS.get(language)
            if pattern is not None:
                chunks = self._chunk_by_boundaries(content, language, pattern)
                if chunks:
                    logger.debug(f"Chunked {file_path or '<content>'} into {len(chunks)} structural chunks")
                    return chunks

        chunks = self._chunk_sliding_window(content, language)
        logger.debug(f"Chunked {file_path or '<content>'} into {len(chunks)} window chunks")
        return chunks

    def _chunk_by_boundaries(self, content: str, language: str, pattern: Pattern[str]) -> List[Chunk]:
        starts = [match.start() for match in pattern.finditer(content)]
        if not starts:
            return []

        # Imports and module headers before the first definition
        if starts[0] > 0 and content[:starts[0]].strip():
            starts.insert(0, 0)

        line_starts = [0] + [m.end() for m in re.finditer("\n", content)]

        def line_at(index: int) -> int:
            return bisect_right(line_starts, index)

        chunks: List[Chunk] = []
        for i, start in enumerate(starts):
            end = starts[i + 1] if i + 1 < len(starts) else len(content)
            raw = content[start:end]
            text = raw.strip()
            if not text:
                continue

            text_start = start + (len(raw) - len(raw.lstrip()))
            start_line = line_at(text_start)
            end_line = line_at(text_start + len(text) - 1)
            function_name = self._extract_function_name(text, language)

            if len(text) > self.max_chunk_size:
                class_match = _CLASS_PATTERN.search(text.split("\n", 1)[0])
                chunks.extend(
                    self._split_large_chunk(
                        text,
                        start_line,
                        language,
                        function_name,
                        class_match.group(1) if class_match else None,
                    )
                )
                continue

            chunks.append(
                Chunk(
                    content=text,
                    metadata=ChunkMetadata(
                        start_line=LineNumber(start_line),
                        end_line=LineNumber(end_line),
                        language=language,
                        function_name=function_name,
                        is_docstring=self._is_docstring(text, language),
                    ),
                )
            )

        return chunks

    def _split_large_chunk(
        self,
        text: str,
        start_line: int,
        language: str,
        function_name: Optional[str],
        class_scope: Optional[str],
    ) -> List[Chunk]:
        """Split an oversized structural chunk by lines, without overlap."""
        pieces: List[Chunk] = []
        current: List[str] = []
        current_len = 0
        piece_start = start_line

        def emit(end_line: int) -> None:
            piece = "\n".join(current)
            if piece.strip():
                pieces.append(
                    Chunk(
                        content=piece,
                        metadata=ChunkMetadata(
                            start_line=LineNumber(piece_start),
                            end_line=LineNumber(max(piece_start, end_line)),
                            language=language,
                            function_name=function_name,
                            class_scope=class_scope,
                            is_docstring=self._is_docstring(piece, language),
                        ),
                    )
                )

        for offset, line in enumerate(text.split("\n")):
            added = len(line) + (1 if current else 0)
            if current and current_len + added > self.max_chunk_size:
                emit(start_line + offset - 1)
                current = []
                current_len = 0
                piece_start = start_line + offset
                added = len(line)
            current.append(line)
            current_len += added

        if current:
            emit(piece_start + len(current) - 1)

        return pieces

    def _chunk_sliding_window(self, content: str, language: str) -> List[Chunk]:
        lines = content.split("\n")
        chunks: List[Chunk] = []
        current = ""
        chunk_start = 1

        def emit(text: str, first: int, last: int) -> None:
            stripped = text.strip()
            if stripped:
                chunks.append(
                    Chunk(
                        content=stripped,
                        metadata=ChunkMetadata(
                            start_line=LineNumber(first),
                            end_line=LineNumber(max(first, last)),
                            language=language,
                            is_docstring=self._is_docstring(stripped, language),
                        ),
                    )
                )

        for index, line in enumerate(lines):
            line_number = index + 1
            potential = f"{current}\n{line}" if current else line

            if len(potential) > self.max_chunk_size and current:
                emit(current, chunk_start, line_number - 1)
                overlap = self._overlap_text(current)
                if overlap:
                    current = f"{overlap}\n{line}"
                    chunk_start = max(1, line_number - len(overlap.split("\n")))
                else:
                    current = line
                    chunk_start = line_number
            else:
                current = potential

        if current:
            emit(current, chunk_start, len(lines))

        return chunks

    def _overlap_text(self, text: str) -> str:
        """Tail of a chunk carried into the next one, cut to a line start when cheap."""
        if self.overlap_size == 0:
            return ""
        tail = text[-self.overlap_size:]
        newline = tail.find("\n")
        if 0 <= newline < self.overlap_size // 2:
            tail = tail[newline + 1:]
        return tail

    @staticmethod
    def _extract_function_name(text: str, language: str) -> Optional[str]:
        pattern = FUNCTION_NAME_PATTERNS.get(language)
        if pattern is None:
            return None
        match = pattern.search(text.split("\n", 1)[0])
        if not match:
            return None
        return next((group for group in match.groups() if group), None)

    @staticmethod
    def _is_docstring(text: str, language: str) -> bool:
        if language == "python":
            return text.startswith('"""') or text.startswith("'''")
        if language in ("typescript", "javascript"):
            return text.startswith("/**")
        return text.startswith("/*") and "\n" not in text
