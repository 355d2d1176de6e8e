"""Rate-limit records for provider credentials and models.

A key is available when it has no record or its expiry has passed. The store
is injected into the gateway so tests can use a fake clock and a fresh store.
"""

from __future__ import annotations

import hashlib
import re
import threading
import time
from collections.abc import Callable
from typing import Protocol

_RETRY_PATTERNS = [
    re.compile(r"retry\s+in\s+(\d+(?:\.\d+)?)\s*(?:s\b|sec|second)", re.IGNORECASE),
    re.compile(r"retry\s+after\s+(\d+(?:\.\d+)?)\s*(?:s\b|sec|second)?", re.IGNORECASE),
    re.compile(r"\"?retryDelay\"?\s*:\s*\"(\d+(?:\.\d+)?)s\"", re.IGNORECASE),
]


def parse_retry_after(message: str) -> float | None:
    """Seconds from a "retry in N seconds" style hint, if the message has one."""
    if not message:
        return None
    for pattern in _RETRY_PATTERNS:
        match = pattern.search(message)
        if match:
            return float(match.group(1))
    return None


def credential_key(provider: str, credential: str) -> str:
    digest = hashlib.sha256(credential.encode()).hexdigest()[:12]
    return f"{provider}:key:{digest}"


def model_key(provider: str, model: str) -> str:
    return f"{provider}:{model}"


class RateLimitStore(Protocol):
    def is_available(self, key: str) -> bool: ...

    def expiry(self, key: str) -> float | None: ...

    def mark_limited(self, key: str, seconds: float) -> float: ...

    def clear(self, key: str) -> None: ...


class InMemoryRateLimitStore:
    """Process-wide map of key -> expiry timestamp, safe for concurrent sessions."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._expiry: dict[str, float] = {}

    def expiry(self, key: str) -> float | None:
        with self._lock:
            until = self._expiry.get(key)
            if until is not None and until <= self._clock():
                del self._expiry[key]
                return None
            return until

    def is_available(self, key: str) -> bool:
        return self.expiry(key) is None

    def mark_limited(self, key: str, seconds: float) -> float:
        until = self._clock() + max(0.0, seconds)
        with self._lock:
            # never shorten an existing, longer block
            self._expiry[key] = max(until, self._expiry.get(key, 0.0))
            return self._expiry[key]

    def clear(self, key: str) -> None:
        with self._lock:
            self._expiry.pop(key, None)

    def snapshot(self) -> dict[str, float]:
        now = self._clock()
        with self._lock:
            return {k: v for k, v in self._expiry.items() if v > now}
