"""
Per-platform request statistics and anti-bot event logging.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional

import structlog

from .models import DetectionOutcome, Platform

logger = structlog.get_logger(__name__)

RECENT_RESPONSE_TIMES = 100
BLOCK_STATUS_CODES = (403, 429)


@dataclass
class PlatformStats:
    platform: str
    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    block_count: int = 0
    avg_response_time_ms: float = 0.0
    last_request: float = 0.0
    response_times: List[float] = field(default_factory=list)


class RequestStats:
    """Thread-safe tracker written by every worker unit."""

    def __init__(self):
        self._lock = threading.Lock()
        self._platforms: Dict[str, PlatformStats] = {}

    def record(self, platform: Platform, success: bool, response_time_ms: float, response_code: int, blocked: bool = False) -> None:
        with self._lock:
            tracker = self._platforms.setdefault(platform.value, PlatformStats(platform=platform.value))
            tracker.total_requests += 1
            tracker.last_request = time.time()
            tracker.response_times.append(response_time_ms)
            tracker.response_times = tracker.response_times[-RECENT_RESPONSE_TIMES:]
            tracker.avg_response_time_ms = sum(tracker.response_times) / len(tracker.response_times)
            if success:
                tracker.success_count += 1
            else:
                tracker.failure_count += 1
                if blocked or response_code in BLOCK_STATUS_CODES:
                    tracker.block_count += 1

        logger.info(
            "request_completed",
            platform=platform.value,
            success=success,
            response_code=response_code,
            response_time_ms=round(response_time_ms, 1),
        )

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {name: asdict(tracker) for name, tracker in self._platforms.items()}

    def log_summary(self) -> None:
        for name, data in self.snapshot().items():
            total = data["total_requests"] or 1
            logger.info(
                "request_statistics",
                platform=name,
                total_requests=data["total_requests"],
                success_rate=round(data["success_count"] / total, 3),
                block_rate=round(data["block_count"] / total, 3),
                avg_response_time_ms=round(data["avg_response_time_ms"], 1),
            )


def log_detection_event(outcome: DetectionOutcome, url: str, user_agent: Optional[str], headers: Optional[Mapping[str, str]]) -> None:
    logger.warning(
        "antibot_detection",
        url=url,
        platform=outcome.platform.value,
        detection_type=outcome.detection_type.value,
        confidence=outcome.confidence,
        response_code=outcome.response_code,
        response_time_ms=outcome.response_time_ms,
        suggested_action=outcome.suggested_action,
        details=outcome.details,
        user_agent=user_agent,
        headers={k: v for k, v in (headers or {}).items() if k != 'User-Agent'},
        response_sample=outcome.raw_response,
    )


def log_network_event(platform: Platform, url: str, user_agent: Optional[str], error: Exception, attempt: int) -> None:
    logger.warning(
        "network_failure",
        url=url,
        platform=platform.value,
        attempt=attempt,
        error=str(error),
        elapsed_ms=round(getattr(error, "elapsed_ms", 0.0), 1),
        user_agent=user_agent,
    )
