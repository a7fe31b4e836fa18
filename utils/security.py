"""Security helpers for response headers, credentials policy and request throttling."""
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from flask import request


def apply_security_headers(response, force_https: bool = False):
    """Lock down a JSON-only API: no framing, no sniffing, no inline content."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cache-Control", "no-store")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    if len(password) < 12:
        return False, "Password must be at least 12 characters long."
    if password.lower() == password or password.upper() == password:
        return False, "Use a mix of upper and lower case characters."
    if not any(c.isdigit() for c in password):
        return False, "Include at least one digit."
    if not any(c in "!@#$%^&*()-_=+[]{}|;:,.<>?/" for c in password):
        return False, "Include at least one symbol."
    return True, None


# Per-process sliding window; swap for a shared cache when running several workers.
_attempts: Dict[str, Deque[float]] = defaultdict(deque)
# Keys idle longer than this are forgotten once the map reaches MAX_TRACKED_KEYS.
STALE_AFTER_SECONDS = 3600
MAX_TRACKED_KEYS = 10_000


def _drop_stale_keys(now: float, window_seconds: int) -> None:
    horizon = max(window_seconds, STALE_AFTER_SECONDS)
    for key in [k for k, bucket in _attempts.items() if not bucket or now - bucket[-1] > horizon]:
        del _attempts[key]


def track_attempt(key: str, limit: int = 10, window_seconds: int = 3600) -> bool:
    """Record an attempt for ``key``; False once ``limit`` is exceeded inside the window."""
    now = time.monotonic()
    if key not in _attempts and len(_attempts) >= MAX_TRACKED_KEYS:
        _drop_stale_keys(now, window_seconds)
    bucket = _attempts[key]
    while bucket and now - bucket[0] > window_seconds:
        bucket.popleft()
    bucket.append(now)
    return len(bucket) <= limit


def reset_attempts() -> None:
    _attempts.clear()
