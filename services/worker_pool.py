"""Worker pool for mgrep-local - runs index workers on process or thread executors."""

import asyncio
import inspect
import multiprocessing
import os
import queue
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from core.exceptions import InitializationError

from .index_worker import (
    IndexWorkerResult,
    IndexWorkerTask,
    WorkerErrorMessage,
    WorkerMessage,
    run_index_worker,
)

MessageHandler = Callable[[WorkerMessage], Union[None, Awaitable[None]]]

POLL_INTERVAL = 0.05


def default_worker_count() -> int:
    return max(1, (os.cpu_count() or 2) - 1)


def assign_round_robin(shard_ids: Sequence[int], worker_count: int) -> Dict[int, List[int]]:
    """Assign shards to workers round robin; workers with nothing assigned are omitted."""
    assignments: Dict[int, List[int]] = {}
    for position, shard_id in enumerate(shard_ids):
        assignments.setdefault(position % worker_count, []).append(shard_id)
    return assignments


class WorkerPool:
    """Runs IndexWorkerTasks concurrently and relays their messages.

    Process mode uses a spawn-context ProcessPoolExecutor with a
    Manager().Queue for messages; thread mode uses a ThreadPoolExecutor and a
    queue.Queue. Either way every worker returns an IndexWorkerResult.
    """

    def __init__(self, worker_count: Optional[int] = None, use_processes: bool = True):
        if worker_count is not None and worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._worker_count = worker_count or default_worker_count()
        self._use_processes = use_processes

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def use_processes(self) -> bool:
        return self._use_processes

    async def run(
        self, tasks: List[IndexWorkerTask], on_message: Optional[MessageHandler] = None
    ) -> List[IndexWorkerResult]:
        """Run every task and return results in task order.

        Raises:
            InitializationError: After all workers finish, if any failed to start
        """
        if not tasks:
            return []

        mode = "process" if self._use_processes else "thread"
        logger.info(f"Starting {len(tasks)} index workers ({mode} mode)")

        if self._use_processes:
            context = multiprocessing.get_context("spawn")
            with context.Manager() as manager:
                outbox = manager.Queue()
                with ProcessPoolExecutor(max_workers=len(tasks), mp_context=context) as executor:
                    results = await self._execute(executor, tasks, outbox, on_message)
        else:
            outbox = queue.Queue()
            with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="mgrep-index") as executor:
                results = await self._execute(executor, tasks, outbox, on_message)

        failed = [result for result in results if result.failed]
        if failed:
            details = "; ".join(f"worker {r.worker_id}: {r.error}" for r in failed)
            raise InitializationError(
                "worker_pool",
                f"{len(failed)} of {len(results)} workers failed to start ({details})",
                context={"failed_workers": [r.worker_id for r in failed]},
            )
        return results

    async def _execute(
        self,
        executor: Executor,
        tasks: List[IndexWorkerTask],
        outbox: Any,
        on_message: Optional[MessageHandler],
    ) -> List[IndexWorkerResult]:
        loop = asyncio.get_running_loop()
        futures = [loop.run_in_executor(executor, run_index_worker, task, outbox) for task in tasks]

        while not all(future.done() for future in futures):
            try:
                message = await asyncio.to_thread(outbox.get, True, POLL_INTERVAL)
            except queue.Empty:
                continue
            await self._dispatch(message, on_message)

        while True:
            try:
                message = outbox.get_nowait()
            except queue.Empty:
                break
            await self._dispatch(message, on_message)

        return list(await asyncio.gather(*futures))

    @staticmethod
    async def _dispatch(message: WorkerMessage, on_message: Optional[MessageHandler]) -> None:
        if isinstance(message, WorkerErrorMessage):
            where = f" on {message.file_path}" if message.file_path else ""
            logger.warning(f"Worker {message.worker_id} error{where}: {message.error}")
        if on_message is None:
            return
        outcome = on_message(message)
        if inspect.isawaitable(outcome):
            await outcome
