"""
Anti-bot detection heuristics.

Every detector is a pure function of the HTTP exchange that scores one
blocking category by adding up independent signals. classify() runs all of
them, drops the ones that stay below their trigger threshold and keeps the
highest confidence; ties go to the detector registered first.
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .models import (
    RAW_RESPONSE_CONFIDENCE,
    RAW_RESPONSE_LIMIT,
    DetectionOutcome,
    DetectionType,
    Platform,
)

DEFAULT_RETRY_AFTER_SECONDS = 300
FAST_RESPONSE_MS = 200
SHORT_BODY_CHARS = 100

_SCRIPT_OR_STYLE = re.compile(r"<(script|style)[\s\S]*?</\1\s*>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"\s+")
_REDIRECT_SCRIPT = re.compile(
    r"(?:window|document|top|self)\.location(?:\.href)?\s*=|location\.(?:replace|assign)\s*\(",
    re.IGNORECASE,
)
_META_REFRESH = re.compile(r"<meta[^>]+http-equiv=[\"']?refresh", re.IGNORECASE)
_VENDOR_ERROR = re.compile(
    r"\berror\s*(?:code)?\s*[:#]?\s*\d{3,4}\b|reference\s*#\s*\d+\.[0-9a-f]+|errors\.edgesuite\.net",
    re.IGNORECASE,
)
_PRODUCT_VOCABULARY = re.compile(
    r"\b(?:price|item|product|add to cart|in stock|buy now)\b|\$\d",
    re.IGNORECASE,
)

CHALLENGE_ANSWER_TOKENS = ("jschl_answer", "jschl-answer", "cf_chl_opt", "challenge-platform")
CHALLENGE_PAGE_MARKERS = ("cf-ray", "__cf_chl", "ray id:")
FIREWALL_PHRASES = ("security rule", "request blocked")
RATE_LIMIT_PHRASES = ("too many requests", "rate limit", "slow down")
GEO_PHRASES = (
    "not available in your country",
    "not available in your region",
    "blocked in your region",
    "your ip",
    "ip address has been",
    "geographic",
    "geo-restrict",
)
JS_REQUIRED_PHRASES = (
    "enable javascript",
    "javascript is required",
    "javascript is disabled",
    "turn on javascript",
)

PLATFORM_PHRASES: Dict[Platform, Tuple[str, ...]] = {
    Platform.AMAZON: (
        "robot check",
        "to discuss automated access",
        "enter the characters you see below",
        "sorry, we just need to make sure you're not a robot",
        "api-services-support@amazon.com",
    ),
    Platform.WALMART: (
        "robot or human",
        "press & hold",
        "px-captcha",
        "perimeterx",
        "blocked?url=",
    ),
}

SUGGESTED_ACTIONS = {
    DetectionType.CLOUDFLARE: "Challenge page served: slow down, rotate user agents and retry later",
    DetectionType.AWS_WAF: "Request blocked by a web application firewall: randomize headers and reduce request frequency",
    DetectionType.IP_BLOCK: "IP address appears blocked or geo-restricted: rotate IP address or use a proxy",
    DetectionType.JS_CHALLENGE: "Page requires JavaScript: a browser-based fetch is needed to get past it",
    DetectionType.GENERIC: "Unexpected response shape: inspect the captured response sample",
}


@dataclass(frozen=True)
class Detection:
    detection_type: DetectionType
    confidence: float
    details: Dict[str, Any] = field(default_factory=dict)
    suggested_action: str = ""


Detector = Callable[[str, Mapping[str, str], int, Optional[float], Platform], Detection]


def clamp(score: float) -> float:
    return round(min(max(score, 0.0), 1.0), 4)


def visible_text(body: str) -> str:
    text = _SCRIPT_OR_STYLE.sub(" ", body)
    text = _TAG.sub(" ", text)
    return _SPACE.sub(" ", text).strip()


def normalize_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {str(k).lower(): str(v) for k, v in (headers or {}).items()}


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if value is None:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0, int((moment - datetime.now(timezone.utc)).total_seconds()))


def _detection(kind: DetectionType, score: float, signals: List[str], action: str = None, **extra) -> Detection:
    details: Dict[str, Any] = {"signals": signals}
    details.update(extra)
    return Detection(kind, clamp(score), details, action or SUGGESTED_ACTIONS.get(kind, ""))


def detect_cloudflare(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    if "checking your browser" in lower:
        score += 0.4
        signals.append("checking_your_browser")
    if "just a moment" in lower:
        score += 0.2
        signals.append("just_a_moment")
    if any(marker in lower for marker in CHALLENGE_PAGE_MARKERS):
        score += 0.2
        signals.append("ray_id_marker")
    if "cf-ray" in headers or "cloudflare" in headers.get("server", "").lower():
        score += 0.2
        signals.append("cloudflare_headers")
    if any(token in lower for token in CHALLENGE_ANSWER_TOKENS):
        score += 0.4
        signals.append("challenge_answer_token")
    if "ddos protection by" in lower:
        score += 0.2
        signals.append("ddos_protection")
    return _detection(DetectionType.CLOUDFLARE, score, signals)


def detect_aws_waf(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    if status == 403:
        score += 0.3
        signals.append("status_403")
    if "access denied" in lower:
        score += 0.2
        signals.append("access_denied")
    if "firewall" in lower:
        score += 0.2
        signals.append("firewall")
    if any(phrase in lower for phrase in FIREWALL_PHRASES):
        score += 0.2
        signals.append("security_rule")
    if any(name.startswith("x-amzn-waf") for name in headers) or "awswaf" in lower:
        score += 0.3
        signals.append("aws_waf_marker")
    return _detection(DetectionType.AWS_WAF, score, signals)


def detect_rate_limit(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    retry_after = parse_retry_after(headers.get("retry-after"))
    # Challenge fronts are often served as 429 with Retry-After.
    challenged = any(token in lower for token in CHALLENGE_ANSWER_TOKENS)
    if status == 429 and not challenged:
        score += 0.5
        signals.append("status_429")
    if "retry-after" in headers and not challenged:
        score += 0.3
        signals.append("retry_after_header")
    remaining = headers.get("x-ratelimit-remaining")
    if remaining is not None and not challenged:
        score += 0.1
        signals.append("ratelimit_remaining_header")
        if remaining.strip() == "0":
            score += 0.1
    if any(phrase in lower for phrase in RATE_LIMIT_PHRASES):
        score += 0.3
        signals.append("rate_limit_phrase")
    if elapsed_ms is not None and elapsed_ms < FAST_RESPONSE_MS:
        score += 0.1
        signals.append("fast_response")

    wait = retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
    action = f"Rate limited: wait {wait} seconds before retrying and reduce request frequency"
    return _detection(DetectionType.RATE_LIMIT, score, signals, action, retry_after_seconds=wait)


def detect_ip_block(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    if status == 403:
        score += 0.3
        signals.append("status_403")
    elif status == 401:
        score += 0.2
        signals.append("status_401")
    elif status == 451:
        score += 0.5
        signals.append("status_451")
    if any(phrase in lower for phrase in GEO_PHRASES):
        score += 0.3
        signals.append("geo_phrase")
    if status == 403 and len(visible_text(body)) < 50:
        score += 0.2
        signals.append("near_empty_403")
    return _detection(DetectionType.IP_BLOCK, score, signals)


def detect_js_challenge(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    if any(phrase in lower for phrase in JS_REQUIRED_PHRASES):
        score += 0.4
        signals.append("enable_javascript")
    if "<noscript" in lower:
        score += 0.1
        signals.append("noscript")
    if len(body) < 1000 and _REDIRECT_SCRIPT.search(body):
        score += 0.3
        signals.append("redirect_script")
    if "<script" in lower and len(visible_text(body)) < 50:
        score += 0.3
        signals.append("script_only_page")
    return _detection(DetectionType.JS_CHALLENGE, score, signals)


def detect_platform_specific(body, headers, status, elapsed_ms, platform) -> Detection:
    lower = body.lower()
    score, signals = 0.0, []
    for phrase in PLATFORM_PHRASES.get(platform, ()):
        if phrase in lower:
            score += 0.3
            signals.append(phrase)
    mentions_platform = platform.value in lower
    if mentions_platform and "captcha" in lower:
        score += 0.3
        signals.append("platform_captcha")
    if mentions_platform and "blocked" in lower:
        score += 0.2
        signals.append("platform_blocked")
    action = f"{platform.value.title()} bot check detected: wait before retrying and vary request headers"
    return _detection(DetectionType.PLATFORM_SPECIFIC, score, signals, action)


def detect_generic(body, headers, status, elapsed_ms, platform) -> Detection:
    score, signals = 0.0, []
    text = visible_text(body)
    if len(body) < SHORT_BODY_CHARS:
        score += 0.3
        signals.append("short_body")
    if len(body) < 500 and (_META_REFRESH.search(body) or _REDIRECT_SCRIPT.search(body)):
        score += 0.2
        signals.append("redirect_only")
    if _VENDOR_ERROR.search(body):
        score += 0.3
        signals.append("vendor_error_code")
    if not _PRODUCT_VOCABULARY.search(text):
        score += 0.2
        signals.append("no_product_vocabulary")
    return _detection(DetectionType.GENERIC, score, signals, body_length=len(body), text_length=len(text))


# Order is the tie-break priority.
DETECTORS: Tuple[Tuple[Detector, float], ...] = (
    (detect_cloudflare, 0.5),
    (detect_aws_waf, 0.4),
    (detect_rate_limit, 0.5),
    (detect_ip_block, 0.4),
    (detect_js_challenge, 0.5),
    (detect_platform_specific, 0.4),
    (detect_generic, 0.4),
)


def run_detectors(
    body: str,
    headers: Optional[Mapping[str, Any]] = None,
    status: int = 200,
    elapsed_ms: Optional[float] = None,
    platform: Platform = Platform.AMAZON,
) -> List[Tuple[Detection, float]]:
    """Every detector's result paired with its trigger threshold, in registry order."""
    body = body or ""
    normalized = normalize_headers(headers)
    return [
        (detector(body, normalized, status, elapsed_ms, platform), threshold)
        for detector, threshold in DETECTORS
    ]


def classify(
    body: str,
    headers: Optional[Mapping[str, Any]] = None,
    status: int = 200,
    elapsed_ms: Optional[float] = None,
    platform: Platform = Platform.AMAZON,
    url: str = None,
) -> DetectionOutcome:
    best: Optional[Detection] = None
    for detection, threshold in run_detectors(body, headers, status, elapsed_ms, platform):
        if detection.confidence < threshold:
            continue
        if best is None or detection.confidence > best.confidence:
            best = detection

    if best is None:
        return DetectionOutcome.unblocked(platform, status, elapsed_ms)

    details = dict(best.details)
    if url:
        details["url"] = url
    body = body or ""
    return DetectionOutcome(
        is_blocked=True,
        detection_type=best.detection_type,
        confidence=best.confidence,
        platform=platform,
        response_code=status,
        response_time_ms=elapsed_ms,
        timestamp=time.time(),
        details=details,
        suggested_action=best.suggested_action,
        raw_response=body[:RAW_RESPONSE_LIMIT] if best.confidence > RAW_RESPONSE_CONFIDENCE else None,
    )
