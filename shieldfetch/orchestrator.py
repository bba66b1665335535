"""
Drives one FetchTask to a terminal FetchResult.

Attempts are strictly sequential: fetch, classify, extract, then either
finish or wait out the retry delay. Only NetworkError is handled here; any
other exception is left for the worker boundary.
"""

import random
import threading
from typing import Callable, List, Optional

import structlog

from .detection import classify
from .errors import BlockedError, ExtractionMiss, InvalidTransition, NetworkError
from .extraction import extract_product_name
from .identity import browser_headers, random_user_agent
from .models import DetectionOutcome, FetchResult, FetchTask, Platform, RetryDecision, TaskState
from .pool import ConnectionPool, get_pool
from .retry import RetryController, can_transition
from .stats import RequestStats, log_detection_event, log_network_event

logger = structlog.get_logger(__name__)

Extractor = Callable[[Platform, str], str]


class FetchOrchestrator:
    def __init__(
        self,
        task: FetchTask,
        pool: ConnectionPool = None,
        task_id: str = None,
        extractor: Extractor = extract_product_name,
        retry: RetryController = None,
        stats: RequestStats = None,
        cancel_event: threading.Event = None,
        sleep: Callable[[float], object] = None,
        rng: random.Random = None,
    ):
        self.task = task
        self.task_id = task_id or task.target_id
        self.pool = pool
        self.extractor = extractor
        self.rng = rng or random.Random()
        self.retry = retry or RetryController(task.platform, task.max_retries, self.rng)
        self.stats = stats
        self.cancel_event = cancel_event or threading.Event()
        self.sleep = sleep or self.cancel_event.wait
        self.state = TaskState.PENDING
        self.history: List[TaskState] = [TaskState.PENDING]
        self.attempts = 0
        self.log = logger.bind(task_id=self.task_id, platform=task.platform.value, url=task.url)

    def _transition(self, target: TaskState) -> None:
        if not can_transition(self.state, target):
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def _succeed(self, product_name: str, outcome: DetectionOutcome) -> FetchResult:
        self._transition(TaskState.SUCCESS)
        self.log.info("task_succeeded", attempts=self.attempts, product_name=product_name)
        return FetchResult(
            task_id=self.task_id,
            target_id=self.task.target_id,
            success=True,
            product_name=product_name,
            detection=outcome,
            attempts=self.attempts,
        )

    def _fail(self, error: str, outcome: Optional[DetectionOutcome]) -> FetchResult:
        self._transition(TaskState.FAILED)
        self.log.warning("task_failed", attempts=self.attempts, error=error)
        return FetchResult(
            task_id=self.task_id,
            target_id=self.task.target_id,
            success=False,
            error=error,
            detection=outcome,
            attempts=self.attempts,
        )

    def _wait(self, state: TaskState, decision: RetryDecision) -> None:
        self._transition(state)
        self.log.info("retry_scheduled", reason=state.value, attempt=self.attempts, delay_seconds=round(decision.delay_seconds, 3))
        self.sleep(decision.delay_seconds)

    def run(self) -> FetchResult:
        if self.task.replay:
            return self._run_replay()
        return self._run_network()

    def _run_replay(self) -> FetchResult:
        task = self.task
        self._transition(TaskState.ATTEMPTING)
        self.attempts = 1
        outcome = classify(
            task.response_body,
            task.response_headers,
            task.response_status,
            task.response_elapsed_ms,
            task.platform,
            task.url,
        )
        if outcome.is_blocked:
            log_detection_event(outcome, task.url, None, None)
            return self._fail(str(BlockedError(outcome)), outcome)

        product_name = self.extractor(task.platform, task.response_body)
        if product_name:
            return self._succeed(product_name, outcome)
        return self._fail("No product name found in provided data", outcome)

    def _run_network(self) -> FetchResult:
        task = self.task
        pool = self.pool or get_pool()
        outcome: Optional[DetectionOutcome] = None

        while True:
            if self.cancel_event.is_set():
                return self._fail("Task cancelled", outcome)

            self._transition(TaskState.ATTEMPTING)
            self.attempts += 1
            attempt = self.attempts

            if task.headers:
                headers = dict(task.headers)
                user_agent = headers.get('User-Agent')
            else:
                user_agent = random_user_agent(self.rng)
                headers = browser_headers(user_agent, task.platform, self.rng)

            self.log.info("attempt_started", attempt=attempt, max_retries=task.max_retries)

            try:
                response = pool.fetch(task.url, headers)
            except NetworkError as e:
                log_network_event(task.platform, task.url, user_agent, e, attempt)
                if self.stats:
                    self.stats.record(task.platform, False, e.elapsed_ms, 0)
                decision = self.retry.after_network_error(attempt)
                if not decision.retry:
                    return self._fail(f"Network error: {e}", outcome)
                self._wait(TaskState.NETWORK_RETRY, decision)
                continue

            outcome = classify(
                response.body,
                response.headers,
                response.status_code,
                response.elapsed_ms,
                task.platform,
                task.url,
            )

            if outcome.is_blocked:
                log_detection_event(outcome, task.url, user_agent, headers)
                if self.stats:
                    self.stats.record(task.platform, False, response.elapsed_ms, response.status_code, blocked=True)
                decision = self.retry.after_block(attempt, outcome)
                if not decision.retry:
                    return self._fail(str(BlockedError(outcome)), outcome)
                self._wait(TaskState.BLOCKED_RETRY, decision)
                continue

            product_name = self.extractor(task.platform, response.body)
            if self.stats:
                self.stats.record(task.platform, bool(product_name), response.elapsed_ms, response.status_code)
            if product_name:
                return self._succeed(product_name, outcome)

            decision = self.retry.after_extraction_miss(attempt)
            if not decision.retry:
                return self._fail(str(ExtractionMiss(attempt)), outcome)
            self._wait(TaskState.EXTRACTION_RETRY, decision)
