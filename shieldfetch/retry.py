"""
Retry and backoff policy.

delay = platform spacing + 2**attempt * base * (1 + jitter), where the base
depends on why the attempt failed and jitter is uniform in [0, 0.5).
"""

import random
from typing import Optional

from .config import config
from .models import DetectionOutcome, DetectionType, Platform, RetryDecision, TaskState

_ALLOWED = {
    TaskState.PENDING: {TaskState.ATTEMPTING, TaskState.FAILED},
    TaskState.ATTEMPTING: {
        TaskState.SUCCESS,
        TaskState.BLOCKED_RETRY,
        TaskState.NETWORK_RETRY,
        TaskState.EXTRACTION_RETRY,
        TaskState.FAILED,
    },
    TaskState.BLOCKED_RETRY: {TaskState.ATTEMPTING, TaskState.FAILED},
    TaskState.NETWORK_RETRY: {TaskState.ATTEMPTING, TaskState.FAILED},
    TaskState.EXTRACTION_RETRY: {TaskState.ATTEMPTING, TaskState.FAILED},
    TaskState.SUCCESS: set(),
    TaskState.FAILED: set(),
}


def can_transition(current: TaskState, target: TaskState) -> bool:
    return target in _ALLOWED[current]


class RetryController:
    def __init__(self, platform: Platform, max_retries: int, rng: Optional[random.Random] = None):
        retry_cfg = config.retry
        self.platform = platform
        self.max_retries = max_retries
        self.rng = rng or random.Random()
        self.jitter_ratio = retry_cfg.get('jitter_ratio', 0.5)
        self.network_base_ms = config.backoff_base_ms('network')
        self.extraction_base_ms = config.backoff_base_ms('extraction')
        self.spacing_ms = config.platform_spacing_ms(platform.value)

    def base_for(self, detection_type: DetectionType) -> int:
        return config.backoff_base_ms(detection_type.value)

    def backoff_ms(self, attempt: int, base_ms: float) -> float:
        return (2 ** attempt) * base_ms * (1 + self.rng.uniform(0, self.jitter_ratio))

    def _decide(self, attempt: int, base_ms: float) -> RetryDecision:
        if attempt >= self.max_retries:
            return RetryDecision(retry=False)
        delay_ms = self.spacing_ms + self.backoff_ms(attempt, base_ms)
        return RetryDecision(retry=True, delay_seconds=delay_ms / 1000)

    def after_network_error(self, attempt: int) -> RetryDecision:
        return self._decide(attempt, self.network_base_ms)

    def after_block(self, attempt: int, outcome: DetectionOutcome) -> RetryDecision:
        return self._decide(attempt, self.base_for(outcome.detection_type))

    def after_extraction_miss(self, attempt: int) -> RetryDecision:
        return self._decide(attempt, self.extraction_base_ms)
