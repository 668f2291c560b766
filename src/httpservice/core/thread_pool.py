"""
=============================================================================
WORKER POOL
=============================================================================

Connections are handled one per task on a pool of worker threads. A worker
owns its connection (and every Request read from it) until the connection
closes, so nothing request-scoped is shared between threads.

    accept loop ──► submit(handle_connection, conn) ──► queue ──► Worker-N
                                                                    │
                            min_workers started up front ───────────┤
                            more spawned up to max_workers ─────────┘
                            while every worker is busy

Shutdown puts one None "poison pill" per worker on the queue. Workers
finish their current connection first; Service.stop() aborts live
connections so that does not take long.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """
    A deferred call.

    Attributes:
        func: The function to run.
        args: Positional arguments.
        kwargs: Keyword arguments.
        timeout: Seconds the task may sit in the queue before it is
                 dropped instead of run. None means no limit.
        submitted_at: When submit() queued it.
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    timeout: Optional[float] = None
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """Thread that runs tasks from the shared queue until it gets None."""

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int, name_prefix: str = "Worker"):
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"{self.name} started")
        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()
        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()
        try:
            waited = start_time - task.submitted_at
            if task.timeout and waited > task.timeout:
                logger.warning(
                    f"Task dropped after waiting {waited:.2f}s in queue "
                    f"(limit {task.timeout}s)"
                )
                self.tasks_failed += 1
                return

            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
            logger.debug(f"{self.name} completed task in {time.time() - start_time:.3f}s")

        except Exception as e:
            # A failing task must not take the worker down with it
            logger.exception(f"{self.name} task failed after {time.time() - start_time:.3f}s: {e}")
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE


class ThreadPool:
    """
    Elastic pool of worker threads.

    Args:
        min_workers: Workers started by start() and kept for the pool's life.
        max_workers: Upper bound reached under load.
        queue_size: Bound on waiting tasks; submit() fails once it is full.
        name_prefix: Thread name prefix, visible in log records.
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        name_prefix: str = "Worker",
    ):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(
                f"Invalid worker bounds: min={min_workers}, max={max_workers}"
            )
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size
        self.name_prefix = name_prefix

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown

    def start(self):
        """Start min_workers threads. A no-op when already started."""
        if self._started:
            return
        logger.info(f"Starting thread pool with {self.min_workers} workers")
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()
        self._started = True
        self._shutdown = False

    def _add_worker(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(self._task_queue, self._next_worker_id, self.name_prefix)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        timeout: Optional[float] = None,
        block: bool = False,
        queue_timeout: Optional[float] = None,
    ) -> bool:
        """
        Queue func(*args, **kwargs).

        Returns:
            True if queued, False if the queue was full.

        Raises:
            RuntimeError: If the pool is not running.
        """
        if not self.is_running:
            raise RuntimeError("Thread pool not running")

        task = Task(func=func, args=args, kwargs=kwargs or {}, timeout=timeout)
        try:
            self._task_queue.put(task, block=block, timeout=queue_timeout)
        except queue.Full:
            return False
        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if len(self._workers) >= self.max_workers:
                return
            if self._task_queue.qsize() > len(self._workers) - busy:
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop every worker.

        Args:
            wait: Join workers (each gets up to timeout seconds).
            timeout: Per-worker join timeout; None waits indefinitely.
        """
        if not self._started or self._shutdown:
            return

        logger.info("Shutting down thread pool...")
        self._shutdown = True

        with self._lock:
            workers = list(self._workers)

        # Pills queue behind pending tasks, so those still run
        for _ in workers:
            self._task_queue.put(None)

        if wait:
            for worker in workers:
                worker.join(timeout=timeout)
                if worker.is_alive():
                    logger.warning(f"{worker.name} did not stop within {timeout}s")

        with self._lock:
            self._workers.clear()
        self._started = False
        logger.info("Thread pool shutdown complete")

    @property
    def active_workers(self) -> int:
        return sum(1 for w in self._workers if w.state != WorkerState.STOPPED)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def pending_tasks(self) -> int:
        return self._task_queue.qsize()

    def stats(self) -> dict:
        """Snapshot of pool counters."""
        with self._lock:
            workers = list(self._workers)
        return {
            "workers": len(workers),
            "busy": sum(1 for w in workers if w.state == WorkerState.BUSY),
            "pending": self._task_queue.qsize(),
            "completed": sum(w.tasks_completed for w in workers),
            "failed": sum(w.tasks_failed for w in workers),
        }
