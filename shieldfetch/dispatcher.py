"""
Fixed-size pool of worker threads running fetch orchestrators.

Tasks go in through submit(), results come back through the on_result
callback, exactly once per submitted task. A fault inside a worker becomes
a failed result tagged internal_error and never takes the pool down.
"""

import os
import queue
import threading
import uuid
from typing import Callable, Dict, Optional

import structlog

from .config import config
from .errors import InternalError
from .extraction import extract_product_name
from .models import DetectionOutcome, FetchResult, FetchTask
from .orchestrator import Extractor, FetchOrchestrator
from .pool import ConnectionPool, get_pool
from .stats import RequestStats

logger = structlog.get_logger(__name__)

_STOP = object()


def default_pool_size() -> int:
    configured = config.get('dispatcher', 'workers')
    if configured:
        return int(configured)
    return max(2, min(8, (os.cpu_count() or 2) - 1))


class Worker(threading.Thread):
    """Takes one task at a time off the dispatcher queue."""

    def __init__(self, dispatcher: "WorkerDispatcher", name: str):
        super().__init__(name=name, daemon=True)
        self.dispatcher = dispatcher
        self.busy = False

    def run(self):
        logger.info("worker_started", worker=self.name)
        while True:
            try:
                item = self.dispatcher._queue.get(timeout=self.dispatcher.idle_poll_seconds)
            except queue.Empty:
                continue

            if item is _STOP:
                break

            task_id, task = item
            self.busy = True
            try:
                result = self.dispatcher._execute(task_id, task)
            finally:
                self.busy = False
            self.dispatcher._deliver(result)

        logger.info("worker_stopped", worker=self.name)


class WorkerDispatcher:
    def __init__(
        self,
        on_result: Callable[[FetchResult], None],
        pool_size: int = None,
        connection_pool: ConnectionPool = None,
        extractor: Extractor = extract_product_name,
        stats: RequestStats = None,
    ):
        self.on_result = on_result
        self.pool_size = pool_size or default_pool_size()
        self.connection_pool = connection_pool or get_pool()
        self.extractor = extractor
        self.stats_tracker = stats or RequestStats()
        self.idle_poll_seconds = config.get('dispatcher', 'idle_poll_seconds', default=0.5)

        self._queue: "queue.Queue" = queue.Queue()
        self._workers = []
        self._cancel_events: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        self._started = False
        self._closed = False

    def start(self) -> None:
        with self._lock:
            if self._started or self._closed:
                return
            self._started = True
            for i in range(self.pool_size):
                worker = Worker(self, name=f"fetch-worker-{i + 1}")
                worker.start()
                self._workers.append(worker)
        logger.info("dispatcher_started", pool_size=self.pool_size)

    def submit(self, task: FetchTask) -> str:
        """Queue a task and return its id; the result arrives via on_result."""
        self.start()

        task_id = str(uuid.uuid4())
        # Same lock shutdown() takes to set _closed, so no task lands behind _STOP.
        with self._lock:
            if self._closed:
                raise RuntimeError("Dispatcher is shut down")
            self._cancel_events[task_id] = threading.Event()
            self._queue.put((task_id, task))
        logger.debug("task_submitted", task_id=task_id, target_id=task.target_id, queued=self._queue.qsize())
        return task_id

    def cancel(self, task_id: str) -> bool:
        """Abandon a task before its next attempt starts."""
        with self._lock:
            event = self._cancel_events.get(task_id)
        if event is None:
            return False
        event.set()
        return True

    def _execute(self, task_id: str, task: FetchTask) -> FetchResult:
        with self._lock:
            cancel_event = self._cancel_events.get(task_id) or threading.Event()

        orchestrator: Optional[FetchOrchestrator] = None
        try:
            orchestrator = FetchOrchestrator(
                task,
                pool=self.connection_pool,
                task_id=task_id,
                extractor=self.extractor,
                stats=self.stats_tracker,
                cancel_event=cancel_event,
            )
            return orchestrator.run()
        except Exception as e:
            logger.error("worker_task_crashed", task_id=task_id, target_id=task.target_id, error=str(e), exc_info=True)
            fault = InternalError(f"Worker error: {e}")
            return FetchResult(
                task_id=task_id,
                target_id=task.target_id,
                success=False,
                error=str(fault),
                detection=DetectionOutcome.internal_error(task.platform, str(e)),
                attempts=orchestrator.attempts if orchestrator else 0,
            )

    def _deliver(self, result: FetchResult) -> None:
        with self._lock:
            self._cancel_events.pop(result.task_id, None)
        try:
            self.on_result(result)
        except Exception as e:
            logger.error("result_callback_failed", task_id=result.task_id, error=str(e), exc_info=True)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            pending = len(self._cancel_events)
        return {
            'pool_size': len(self._workers),
            'busy_workers': sum(1 for worker in self._workers if worker.busy),
            'queued_tasks': self._queue.qsize(),
            'pending_tasks': pending,
        }

    def pool_stats(self) -> Dict[str, int]:
        return self.connection_pool.stats()

    def request_stats(self) -> Dict[str, dict]:
        return self.stats_tracker.snapshot()

    def shutdown(self, wait: bool = True, timeout: float = None) -> None:
        """Stop the workers. Queued tasks fail, in-flight tasks stop before their next attempt."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            events = list(self._cancel_events.values())

        logger.info("dispatcher_shutting_down", queued=self._queue.qsize(), in_flight=len(events))
        for event in events:
            event.set()

        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                continue
            task_id, task = item
            self._deliver(FetchResult(
                task_id=task_id,
                target_id=task.target_id,
                success=False,
                error="Dispatcher shutting down",
            ))

        for _ in self._workers:
            self._queue.put(_STOP)
        if wait:
            for worker in self._workers:
                worker.join(timeout)
        logger.info("dispatcher_stopped")
