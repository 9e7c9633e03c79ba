from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from collections.abc import Callable

from fastapi import HTTPException, Request, status

from ..logger import logger

# bucket:client -> request timestamps inside the current window
_RATE_LIMIT_STORAGE: dict[str, deque[float]] = defaultdict(deque)
_RATE_LIMIT_LOCK = threading.Lock()


def client_identifier(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def check_rate_limit(
    key: str,
    max_requests: int,
    window_seconds: float,
    now: float | None = None,
) -> int | None:
    """Record a hit for ``key``; return seconds to wait when the window is full."""
    now = time.time() if now is None else now
    cutoff = now - window_seconds

    with _RATE_LIMIT_LOCK:
        timestamps = _RATE_LIMIT_STORAGE[key]
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

        if len(timestamps) >= max_requests:
            return max(1, int(window_seconds - (now - timestamps[0])))

        timestamps.append(now)
    return None


def enforce_rate_limit(
    request: Request,
    bucket_name: str,
    max_requests: int,
    window_seconds: int,
) -> None:
    enforce_key_rate_limit(f"{bucket_name}:{client_identifier(request)}", max_requests, window_seconds)


def enforce_key_rate_limit(key: str, max_requests: int, window_seconds: int) -> None:
    retry_after = check_rate_limit(key, max_requests, window_seconds)
    if retry_after is None:
        return

    logger.warning("Rate limit hit for {}", key)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many requests. Retry in {retry_after}s",
        headers={"Retry-After": str(retry_after)},
    )


def rate_limit_dependency(
    bucket_name: str,
    max_requests: int,
    window_seconds: int,
) -> Callable[[Request], None]:
    def dependency(request: Request) -> None:
        enforce_rate_limit(request, bucket_name, max_requests, window_seconds)

    return dependency


def reset_rate_limits() -> None:
    with _RATE_LIMIT_LOCK:
        _RATE_LIMIT_STORAGE.clear()
