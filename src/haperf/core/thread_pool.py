"""
=============================================================================
WORKER POOL
=============================================================================

Listeners hand every accepted connection to a handler that runs
concurrently with the accept loop. There are two ways to get that
concurrency:

    THREAD-PER-CONNECTION (max_workers=None):
    ─────────────────────────────────────────

        for conn in accept_connections():
            Thread(target=handle, args=(conn,), daemon=True).start()

        + Simplest possible model, no queueing delay
        - No limit: 10,000 slow clients = 10,000 threads

    BOUNDED POOL (default):
    ───────────────────────

        pool = WorkerPool(min_workers=4, max_workers=64, queue_size=256)
        pool.start()

        for conn in accept_connections():
            if not pool.submit(handle, args=(conn,)):
                conn.close()          # saturated: refuse, never leak

        + Predictable memory and thread count
        - Saturated pool refuses new connections

=============================================================================
POOL ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WorkerPool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   submit() ──► [Task][Task][Task] ... (queue.Queue, bounded)        │
    │                          │                                           │
    │                          │ get()                                     │
    │                          ▼                                           │
    │   ┌──────────┐ ┌──────────┐ ┌──────────┐       ┌──────────┐         │
    │   │ Worker 0 │ │ Worker 1 │ │ Worker 2 │  ...  │ Worker N │         │
    │   │  (idle)  │ │  (busy)  │ │  (busy)  │       │ (≤ max)  │         │
    │   └──────────┘ └──────────┘ └──────────┘       └──────────┘         │
    │                                                                      │
    │   • min_workers are started up front                                │
    │   • a new worker is added whenever none is idle, up to max_workers  │
    │   • None in the queue is the "poison pill" that stops a worker      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """
    Worker thread that runs tasks from the shared queue.

    A task that raises is logged and counted; the worker keeps going.
    One broken connection handler must never take a worker down with it.
    """

    def __init__(self, task_queue: "queue.Queue[Optional[Task]]", worker_id: int):
        # daemon=True: workers never keep the process alive on exit
        super().__init__(name=f"haperf-worker-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.state = WorkerState.IDLE

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            task = self.task_queue.get()
            try:
                if task is None:
                    break
                self._execute(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute(self, task: Task):
        self.state = WorkerState.BUSY
        started = time.monotonic()

        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
            logger.debug(
                f"Worker {self.worker_id} finished task in {time.monotonic() - started:.3f}s "
                f"(queued {started - task.submitted_at:.3f}s)"
            )
        except Exception as e:
            self.tasks_failed += 1
            logger.exception(f"Worker {self.worker_id} task failed: {e}")
        finally:
            self.state = WorkerState.IDLE


class WorkerPool:
    """
    Bounded pool of worker threads for connection handlers.

    Usage:
        pool = WorkerPool(min_workers=4, max_workers=64)
        pool.start()

        if not pool.submit(handle_connection, args=(conn,)):
            conn.close()  # pool saturated

        pool.shutdown()
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 64, queue_size: int = 256):
        """
        Args:
            min_workers: Workers created by start().
            max_workers: Hard upper bound on worker threads.
            queue_size: Tasks allowed to wait for a worker. When the queue
                        is full, submit() refuses instead of blocking the
                        accept loop.
        """
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queued = queue_size

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: list = []
        self._lock = threading.Lock()  # protects _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self):
        """Start min_workers threads. Idempotent."""
        if self._started:
            return

        logger.debug(f"Starting worker pool ({self.min_workers}-{self.max_workers} workers)")
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()
        self._started = True

    def _add_worker(self) -> Worker:
        # Caller holds self._lock
        worker = Worker(self._task_queue, self._next_worker_id)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = (), kwargs: Optional[dict] = None) -> bool:
        """
        Queue func(*args, **kwargs) for a worker. Never blocks.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Worker pool not started")
        if self._shutdown:
            raise RuntimeError("Worker pool is shutting down")

        try:
            self._task_queue.put_nowait(Task(func=func, args=args, kwargs=kwargs or {}))
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker if every worker is busy and work is waiting."""
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return
            if any(w.state == WorkerState.IDLE for w in self._workers):
                return
            if self._task_queue.qsize() > 0:
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._add_worker()

    def shutdown(self, timeout: float = 2.0):
        """
        Stop all workers.

        Queued tasks ahead of the poison pills still run. Workers stuck
        in a handler are not waited for beyond `timeout` each (they are
        daemon threads).
        """
        if not self._started:
            return

        self._shutdown = True
        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        for _ in workers:
            try:
                self._task_queue.put(None, timeout=timeout)
            except queue.Full:
                logger.warning("Worker pool queue still full, abandoning busy workers")
                break

        for worker in workers:
            worker.join(timeout=timeout)

        self._started = False
        logger.debug("Worker pool stopped")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def queued(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
            },
            "tasks": {
                "queued": self.queued,
                "capacity": self.max_queued,
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
