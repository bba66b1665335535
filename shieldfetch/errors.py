"""
Error taxonomy for the fetch engine.

Only NetworkError crosses a component boundary in normal operation; the
others name the failure kinds a task can end in.
"""


class ShieldFetchError(Exception):
    """Base class for engine errors."""


class NetworkError(ShieldFetchError):
    """Timeout, DNS, TLS, reset, redirect loop, oversized body or 5xx status."""

    def __init__(self, message: str, url: str = None, elapsed_ms: float = 0.0):
        super().__init__(message)
        self.url = url
        self.elapsed_ms = elapsed_ms


class BlockedError(ShieldFetchError):
    def __init__(self, outcome):
        self.outcome = outcome
        super().__init__(
            f"Blocked by {outcome.detection_type.value} protection "
            f"({outcome.confidence * 100:.0f}% confidence): {outcome.suggested_action}"
        )


class ExtractionMiss(ShieldFetchError):
    """Transport succeeded and nothing was blocked, but no product name was found."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"No product data found after {attempts} attempts")


class InternalError(ShieldFetchError):
    """Unexpected fault inside a worker unit."""


class InvalidTransition(ShieldFetchError):
    pass
