"""mgrep-local - Local, offline-first semantic code search."""

__version__ = "0.1.0"
__description__ = "Local, offline-first semantic code search with sharded DuckDB vector stores"

# Import modules only when needed to keep worker processes and config loading light
__all__ = [
    "Chunker",
    "FileWatcher",
    "MgrepConfig",
    "setup_logging",
]


def __getattr__(name: str):
    """Lazy import of the public entry points."""
    if name == "Chunker":
        from .chunker import Chunker
        return Chunker
    elif name == "FileWatcher":
        from .file_watcher import FileWatcher
        return FileWatcher
    elif name == "MgrepConfig":
        from .core.config import MgrepConfig
        return MgrepConfig
    elif name == "setup_logging":
        from .log_setup import setup_logging
        return setup_logging
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
