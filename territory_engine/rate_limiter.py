"""Fixed-window rate limiting per client and endpoint class."""

import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def client_identity(ip: str, user_agent: Optional[str] = None) -> str:
    """Client IP plus a short hash of the user agent."""
    ua_hash = hashlib.sha256((user_agent or "").encode()).hexdigest()[:8]
    return f"{ip or 'unknown'}:{ua_hash}"


class RateLimiter:
    """
    Fixed window counters keyed by (client, bucket).

    Buckets come from config: ``zip`` for ZIP-only lookups, ``address`` for
    the stricter registry-backed lookups, and ``burst`` applied to every call.
    Expired windows are swept every ``purge_every`` counted requests.
    """

    PURGE_EVERY = 1000

    def __init__(self, limits: Dict[str, Tuple[int, int]], clock: Callable[[], float] = time.time,
                 purge_every: int = PURGE_EVERY):
        self.limits = dict(limits)
        self._clock = clock
        self.purge_every = purge_every
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._since_purge = 0

    def check(self, client_id: str, bucket: str) -> RateLimitDecision:
        """Count one request against the bucket and report whether it is allowed."""
        return self._take(client_id, (bucket,))[0]

    def enforce(self, client_id: str, bucket: str) -> RateLimitDecision:
        """Charge the burst bucket and the named bucket; raise when either is exhausted.

        Nothing is counted unless both buckets admit the request.
        """
        names = [name for name in ("burst", bucket) if name in self.limits]
        if not names:
            return RateLimitDecision(True, 0, 0, self._clock())
        decisions = self._take(client_id, names)
        for name, decision in zip(names, decisions):
            if not decision.allowed:
                logger.warning(f"Rate limit hit: {client_id} on {name} (retry in {decision.retry_after}s)")
                raise RateLimitedError(decision.retry_after, context={"bucket": name})
        return min(decisions, key=lambda d: d.remaining)

    def _take(self, client_id: str, buckets) -> List[RateLimitDecision]:
        now = self._clock()
        with self._lock:
            windows = []
            for bucket in buckets:
                max_requests, window_s = self.limits[bucket]
                start, count = self._windows.get((client_id, bucket), (now, 0))
                if now - start >= window_s:
                    start, count = now, 0
                windows.append((bucket, max_requests, start + window_s, start, count))

            if any(count >= max_requests for _, max_requests, _, _, count in windows):
                return [
                    RateLimitDecision(False, max_requests, 0, reset_at, max(1, math.ceil(reset_at - now)))
                    if count >= max_requests
                    else RateLimitDecision(True, max_requests, max_requests - count, reset_at)
                    for _, max_requests, reset_at, _, count in windows
                ]

            decisions = []
            for bucket, max_requests, reset_at, start, count in windows:
                self._windows[(client_id, bucket)] = (start, count + 1)
                decisions.append(RateLimitDecision(True, max_requests, max_requests - count - 1, reset_at))

            self._since_purge += 1
            if self._since_purge >= self.purge_every:
                self._drop_stale(now)
        return decisions

    def _drop_stale(self, now: float) -> int:
        stale = [
            k for k, (start, _) in self._windows.items()
            if now - start >= self.limits.get(k[1], (0, 0))[1]
        ]
        for k in stale:
            del self._windows[k]
        self._since_purge = 0
        return len(stale)

    def purge(self) -> int:
        """Drop windows that have expired."""
        with self._lock:
            return self._drop_stale(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def reset(self):
        with self._lock:
            self._windows.clear()
            self._since_purge = 0
