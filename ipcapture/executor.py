"""
Bounded Storage Executor

Fixed-size worker pool with a bounded queue for asynchronous IP storage.

Submission policy:
1. Fewer than ``core_pool_size`` workers running: start a new worker for the task
2. Otherwise enqueue the task
3. Queue full and fewer than ``max_pool_size`` workers: start an extra worker
4. Otherwise reject with ExecutorSaturatedError

Extra workers above the core size exit after ``keep_alive_seconds`` idle.
"""

import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional, Set

from .exceptions import ExecutorSaturatedError, ExecutorShutdownError

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class _WorkItem:
    def __init__(self, future: Future, fn: Callable[..., Any], args: tuple, kwargs: dict):
        self.future = future
        self.fn = fn
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        # Cancelled while queued
        if not self.future.set_running_or_notify_cancel():
            return
        try:
            result = self.fn(*self.args, **self.kwargs)
        except BaseException as exc:
            self.future.set_exception(exc)
        else:
            self.future.set_result(result)


class BoundedExecutor:
    """
    Thread pool with core/max sizing and a bounded queue.

    Usage:
        executor = BoundedExecutor(core_pool_size=2, max_pool_size=10, queue_capacity=100)
        future = executor.submit(store, record)
        ...
        executor.shutdown()
    """

    def __init__(
        self,
        core_pool_size: int = 2,
        max_pool_size: int = 10,
        queue_capacity: int = 100,
        shutdown_drain_timeout: float = 30.0,
        thread_name_prefix: str = "ip-storage-",
        keep_alive_seconds: float = 60.0,
    ):
        """
        Initialize the executor. No threads are started until work arrives.

        Args:
            core_pool_size: Workers kept alive while idle
            max_pool_size: Upper bound on workers, reached only when the queue is full
            queue_capacity: Maximum number of queued tasks
            shutdown_drain_timeout: Seconds shutdown() waits for queued work to drain
            thread_name_prefix: Prefix for worker thread names
            keep_alive_seconds: Idle time after which workers above the core size exit

        Raises:
            ValueError: If the sizes are inconsistent
        """
        if core_pool_size < 1:
            raise ValueError(f"core_pool_size must be >= 1, got {core_pool_size}")
        if max_pool_size < core_pool_size:
            raise ValueError(
                f"max_pool_size ({max_pool_size}) must be >= core_pool_size ({core_pool_size})"
            )
        if queue_capacity < 1:
            raise ValueError(f"queue_capacity must be >= 1, got {queue_capacity}")
        if shutdown_drain_timeout < 0:
            raise ValueError(f"shutdown_drain_timeout must be >= 0, got {shutdown_drain_timeout}")

        self.core_pool_size = core_pool_size
        self.max_pool_size = max_pool_size
        self.queue_capacity = queue_capacity
        self.shutdown_drain_timeout = shutdown_drain_timeout
        self.thread_name_prefix = thread_name_prefix
        self.keep_alive_seconds = keep_alive_seconds

        self._queue: "queue.Queue[_WorkItem]" = queue.Queue(maxsize=queue_capacity)
        self._lock = threading.Lock()
        self._workers: Set[threading.Thread] = set()
        self._thread_ids = itertools.count(1)
        self._shutdown = False

    @property
    def pool_size(self) -> int:
        with self._lock:
            return len(self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Schedule ``fn(*args, **kwargs)`` on the pool.

        Returns:
            Future for the call's result

        Raises:
            ExecutorShutdownError: If shutdown() has been called
            ExecutorSaturatedError: If the queue is full and the pool is at max size
        """
        with self._lock:
            if self._shutdown:
                raise ExecutorShutdownError()

            item = _WorkItem(Future(), fn, args, kwargs)

            if len(self._workers) < self.core_pool_size:
                self._start_worker(item)
                return item.future

            try:
                self._queue.put_nowait(item)
            except queue.Full:
                if len(self._workers) < self.max_pool_size:
                    self._start_worker(item)
                    return item.future
                raise ExecutorSaturatedError(self.queue_capacity, self.max_pool_size) from None

            return item.future

    def shutdown(self, wait: bool = True) -> int:
        """
        Stop accepting work and let queued tasks drain.

        With ``wait``, blocks up to ``shutdown_drain_timeout`` seconds; tasks
        still queued after that are cancelled. Tasks already running are not
        interrupted.

        Returns:
            Number of queued tasks cancelled
        """
        with self._lock:
            if self._shutdown and not wait:
                return 0
            self._shutdown = True
            workers = list(self._workers)

        logger.info(f"Shutting down IP storage executor ({len(workers)} workers, {self.queue_size} queued)")

        if not wait:
            return 0

        deadline = time.monotonic() + self.shutdown_drain_timeout
        for worker in workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))

        cancelled = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item.future.cancel():
                cancelled += 1

        if cancelled:
            logger.warning(f"IP storage executor drain timed out, cancelled {cancelled} queued tasks")
        else:
            logger.info("IP storage executor shut down")
        return cancelled

    def __enter__(self) -> "BoundedExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    def _start_worker(self, first_item: Optional[_WorkItem]) -> None:
        # Caller holds self._lock
        thread = threading.Thread(
            target=self._worker,
            args=(first_item,),
            name=f"{self.thread_name_prefix}{next(self._thread_ids)}",
            daemon=True,
        )
        self._workers.add(thread)
        thread.start()

    def _worker(self, first_item: Optional[_WorkItem]) -> None:
        current = threading.current_thread()
        item = first_item
        idle_since = time.monotonic()

        while True:
            if item is not None:
                item.run()
                item = None
                idle_since = time.monotonic()

            try:
                item = self._queue.get(timeout=_POLL_INTERVAL)
                continue
            except queue.Empty:
                pass

            with self._lock:
                surplus = len(self._workers) > self.core_pool_size
                idle_expired = time.monotonic() - idle_since >= self.keep_alive_seconds
                drained = self._shutdown and self._queue.empty()
                if drained or (surplus and idle_expired):
                    self._workers.discard(current)
                    return
