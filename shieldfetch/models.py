"""
Value types shared by the engine: tasks, detection outcomes, results.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

RAW_RESPONSE_CONFIDENCE = 0.7
RAW_RESPONSE_LIMIT = 500


class Platform(str, Enum):
    AMAZON = "amazon"
    WALMART = "walmart"


class DetectionType(str, Enum):
    CLOUDFLARE = "cloudflare"
    AWS_WAF = "aws_waf"
    RATE_LIMIT = "rate_limit"
    IP_BLOCK = "ip_block"
    JS_CHALLENGE = "js_challenge"
    PLATFORM_SPECIFIC = "platform_specific"
    GENERIC = "generic"
    INTERNAL_ERROR = "internal_error"
    NONE = "none"


class TaskState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    BLOCKED_RETRY = "blocked_retry"
    NETWORK_RETRY = "network_retry"
    EXTRACTION_RETRY = "extraction_retry"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCESS, TaskState.FAILED)


@dataclass(frozen=True)
class FetchTask:
    """A single product page to fetch.

    When ``response_body`` is set the network is skipped entirely and the
    body is classified as if it had been served with ``response_status`` and
    ``response_headers``.
    """

    target_id: str
    url: str
    platform: Platform
    max_retries: int = 3
    response_body: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    response_status: int = 200
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_elapsed_ms: Optional[float] = None

    @property
    def replay(self) -> bool:
        return self.response_body is not None


@dataclass(frozen=True)
class DetectionOutcome:
    is_blocked: bool
    detection_type: DetectionType
    confidence: float
    platform: Platform
    response_code: int
    response_time_ms: Optional[float]
    timestamp: float
    details: Dict[str, Any] = field(default_factory=dict)
    suggested_action: str = ""
    raw_response: Optional[str] = None

    @classmethod
    def unblocked(cls, platform: Platform, response_code: int, response_time_ms: Optional[float]) -> "DetectionOutcome":
        return cls(
            is_blocked=False,
            detection_type=DetectionType.NONE,
            confidence=0.0,
            platform=platform,
            response_code=response_code,
            response_time_ms=response_time_ms,
            timestamp=time.time(),
            suggested_action="No action needed",
        )

    @classmethod
    def internal_error(cls, platform: Platform, message: str) -> "DetectionOutcome":
        return cls(
            is_blocked=False,
            detection_type=DetectionType.INTERNAL_ERROR,
            confidence=0.0,
            platform=platform,
            response_code=0,
            response_time_ms=None,
            timestamp=time.time(),
            details={"error": message},
            suggested_action="Check the worker logs for the stack trace",
        )

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["detection_type"] = self.detection_type.value
        data["platform"] = self.platform.value
        return data


@dataclass(frozen=True)
class FetchResult:
    task_id: str
    target_id: str
    success: bool
    product_name: Optional[str] = None
    error: Optional[str] = None
    detection: Optional[DetectionOutcome] = None
    attempts: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "target_id": self.target_id,
            "success": self.success,
            "product_name": self.product_name,
            "error": self.error,
            "attempts": self.attempts,
            "detection": self.detection.as_dict() if self.detection else None,
        }


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0
