"""
File watcher for mgrep-local.

A watchdog Observer thread reports filesystem events; the handler filters
them and hands them to the asyncio loop, where a per-path debounce collapses
bursts of changes into one FileChangeEvent per file.
"""

import asyncio
import inspect
import time
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from core.models import FileChangeEvent
from core.types import FileEventType, FilePath
from mgrep_local.chunker import Chunker
from services.indexer import DEFAULT_IGNORE_PATTERNS, matches_patterns

DEFAULT_DEBOUNCE_MS = 500

ChangeHandler = Callable[[FileChangeEvent], Union[None, Awaitable[None]]]


class ChangeDebouncer:
    """Delays events per path; a newer event for the same path replaces the pending one."""

    def __init__(self, on_change: ChangeHandler, debounce_ms: int = DEFAULT_DEBOUNCE_MS,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._on_change = on_change
        self._delay = debounce_ms / 1000
        self._loop = loop
        self._pending: Dict[str, FileChangeEvent] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def push(self, event: FileChangeEvent) -> None:
        """Schedule an event. Must be called on the loop thread."""
        loop = self._loop or asyncio.get_running_loop()
        timer = self._timers.pop(event.file_path, None)
        if timer is not None:
            timer.cancel()
        self._pending[event.file_path] = event
        self._timers[event.file_path] = loop.call_later(self._delay, self._fire, event.file_path)

    def _fire(self, file_path: str) -> None:
        self._timers.pop(file_path, None)
        event = self._pending.pop(file_path, None)
        if event is None:
            return
        task = asyncio.ensure_future(self._deliver(event))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _deliver(self, event: FileChangeEvent) -> None:
        try:
            outcome = self._on_change(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"File change handler failed for {event.file_path}: {e}")

    async def flush(self) -> None:
        """Deliver every pending event now and wait for in-flight handlers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        pending = list(self._pending.values())
        self._pending.clear()
        for event in pending:
            await self._deliver(event)
        if self._running:
            await asyncio.gather(*self._running)

    def cancel(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending.clear()


class MgrepEventHandler(FileSystemEventHandler):
    """Filesystem event handler that forwards accepted events to the loop thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, debouncer: ChangeDebouncer,
                 roots: List[Path], include_extensions: Set[str], exclude_patterns: List[str]):
        super().__init__()
        self._loop = loop
        self._debouncer = debouncer
        self._roots = roots
        self._include_extensions = include_extensions
        self._exclude_patterns = exclude_patterns

    def _should_process_file(self, file_path: Path) -> bool:
        """Check extension and ignore patterns; deleted files no longer exist, so only the path is used."""
        if file_path.suffix.lower() not in self._include_extensions:
            return False
        for root in self._roots:
            try:
                relative = file_path.relative_to(root).as_posix()
            except ValueError:
                continue
            return not matches_patterns(relative, self._exclude_patterns)
        return not matches_patterns(file_path.as_posix(), self._exclude_patterns)

    def _queue_event(self, path: Union[str, bytes], event_type: FileEventType) -> None:
        file_path = Path(path.decode() if isinstance(path, bytes) else path)
        if not self._should_process_file(file_path):
            return
        event = FileChangeEvent(file_path=FilePath(str(file_path)), event_type=event_type, timestamp=time.time())
        logger.debug(f"File {event_type.value}: {file_path}")
        self._loop.call_soon_threadsafe(self._debouncer.push, event)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._queue_event(event.src_path, FileEventType.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._queue_event(event.src_path, FileEventType.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._queue_event(event.src_path, FileEventType.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._queue_event(event.src_path, FileEventType.DELETED)
            self._queue_event(event.dest_path, FileEventType.ADDED)


class FileWatcher:
    """
    Watches directories and reports debounced FileChangeEvents.

    Designed to pair with Indexer.handle_file_change: handler errors are
    logged and watching continues.
    """

    def __init__(self,
                 paths: Iterable[Union[str, Path]],
                 on_change: ChangeHandler,
                 debounce_ms: int = DEFAULT_DEBOUNCE_MS,
                 include_extensions: Optional[Iterable[str]] = None,
                 exclude_patterns: Optional[List[str]] = None):
        """
        Initialize the file watcher.

        Args:
            paths: Directories to watch recursively
            on_change: Sync or async callback receiving each debounced event
            debounce_ms: Quiet period per path before the callback fires
            include_extensions: File extensions to report (defaults to every known language)
            exclude_patterns: Glob patterns, relative to the watched root, to ignore
        """
        if debounce_ms < 0:
            raise ValueError("debounce_ms cannot be negative")

        self.watch_paths = [Path(path).expanduser().resolve() for path in paths]
        self._on_change = on_change
        self._debounce_ms = debounce_ms
        self._include_extensions = {
            ext.lower() for ext in (include_extensions or Chunker.supported_extensions())
        }
        self._exclude_patterns = list(DEFAULT_IGNORE_PATTERNS if exclude_patterns is None else exclude_patterns)

        self.observer: Optional[Observer] = None
        self._debouncer: Optional[ChangeDebouncer] = None

    @property
    def is_running(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    async def start(self) -> None:
        """Start the observer thread. Must be called from the event loop that receives events."""
        if self.is_running:
            return

        loop = asyncio.get_running_loop()
        self._debouncer = ChangeDebouncer(self._on_change, self._debounce_ms, loop)
        handler = MgrepEventHandler(
            loop, self._debouncer, self.watch_paths, self._include_extensions, self._exclude_patterns
        )

        self.observer = Observer()
        for watch_path in self.watch_paths:
            if watch_path.is_dir():
                self.observer.schedule(handler, str(watch_path), recursive=True)
            else:
                logger.warning(f"Watch path is not a directory, skipping: {watch_path}")
        self.observer.start()
        logger.info(f"Watching {len(self.watch_paths)} path(s) with {self._debounce_ms}ms debounce")

    async def stop(self) -> None:
        """Stop the observer; pending debounced events are dropped."""
        if self.observer is not None:
            self.observer.stop()
            await asyncio.to_thread(self.observer.join, 5.0)
            self.observer = None
        if self._debouncer is not None:
            self._debouncer.cancel()
        logger.info("File watcher stopped")

    async def flush(self) -> None:
        """Deliver pending events immediately."""
        if self._debouncer is not None:
            await self._debouncer.flush()
