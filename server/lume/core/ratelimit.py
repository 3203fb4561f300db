from __future__ import annotations
import time
from typing import Dict, Optional, Tuple
from fastapi import HTTPException, Request

from lume.config import get_settings
from lume.core.auth import get_effective_owner

# In-memory fixed-window limiter. Not suitable for multi-process deployments.

# key: (caller, route) -> (window_start_epoch, count)
_BUCKETS: Dict[Tuple[str, str], Tuple[float, int]] = {}


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(
    request: Request,
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> None:
    """Count this request against the caller's window; raise 429 when over."""
    settings = get_settings()
    limit = limit or settings.chat_rate_limit
    window_seconds = window_seconds or settings.chat_rate_window_seconds

    # Signed-in and guest callers get their own bucket; anonymous ones share by IP
    caller = get_effective_owner(request) or get_client_ip(request)
    key = (caller, request.url.path)

    now = time.time()
    window_start, count = _BUCKETS.get(key, (now, 0))
    if now - window_start >= window_seconds:
        window_start, count = now, 0

    count += 1
    _BUCKETS[key] = (window_start, count)

    if count > limit:
        retry_after = max(1, int(window_seconds - (now - window_start)))
        raise HTTPException(status_code=429, detail="Rate limit exceeded", headers={"Retry-After": str(retry_after)})


def reset_rate_limits() -> None:
    _BUCKETS.clear()
