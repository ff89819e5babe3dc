"""
Fixed-window rate limiting.

Each key gets a counter and a window end. The first request of a window
starts it with count=1; requests are admitted while count < max; denied
requests do not increment. Bursts at window boundaries are accepted.

InMemoryRateLimiter is correct for a single process only; multi-instance
deployments configure REDIS_URL and get RedisRateLimiter.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from aiborn.core.errors import RateLimited

logger = logging.getLogger("aiborn.ratelimit")

HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class RateLimitPolicy:
    max_requests: int
    window_ms: int


RECEIPT_UPLOAD = RateLimitPolicy(max_requests=5, window_ms=HOUR_MS)
BONUS_CLAIM = RateLimitPolicy(max_requests=3, window_ms=HOUR_MS)
DOWNLOAD = RateLimitPolicy(max_requests=20, window_ms=HOUR_MS)
EMAIL_CAPTURE = RateLimitPolicy(max_requests=10, window_ms=HOUR_MS)
CODE_VALIDATION = RateLimitPolicy(max_requests=10, window_ms=60 * 1000)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch ms

    def retry_after_s(self, now_ms: int) -> int:
        return max(0, math.ceil((self.reset_at - now_ms) / 1000))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at // 1000),
        }


class RateLimiter:
    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        raise NotImplementedError

    def hit(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        return self.check(key, policy.max_requests, policy.window_ms)


def _wall_ms() -> int:
    return int(time.time() * 1000)


class InMemoryRateLimiter(RateLimiter):
    def __init__(self, clock: Callable[[], int] = _wall_ms, sweep_every: int = 1000):
        self._clock = clock
        self._entries: dict[str, tuple[int, int]] = {}  # key -> (count, reset_at)
        self._lock = threading.Lock()
        self._sweep_every = sweep_every
        self._calls = 0

    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is None or now >= entry[1]:
                reset_at = now + window_ms
                self._entries[key] = (1, reset_at)
                return RateLimitResult(True, max_requests, max_requests - 1, reset_at)

            count, reset_at = entry
            if count >= max_requests:
                return RateLimitResult(False, max_requests, 0, reset_at)

            count += 1
            self._entries[key] = (count, reset_at)
            return RateLimitResult(True, max_requests, max_requests - count, reset_at)

    def _sweep(self, now: int) -> None:
        expired = [k for k, (_, reset_at) in self._entries.items() if now >= reset_at]
        for k in expired:
            del self._entries[k]

    def sweep(self) -> int:
        with self._lock:
            before = len(self._entries)
            self._sweep(self._clock())
            return before - len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# KEYS[1]=counter key, ARGV[1]=max, ARGV[2]=window ms
# returns {allowed(0|1), count, pttl}
_FIXED_WINDOW_LUA = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
  return {1, 1, tonumber(ARGV[2])}
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
  return {1, 1, tonumber(ARGV[2])}
end
current = tonumber(current)
if current >= tonumber(ARGV[1]) then
  return {0, current, ttl}
end
current = redis.call('INCR', KEYS[1])
return {1, current, ttl}
"""


class RedisRateLimiter(RateLimiter):
    """Shared fixed-window counters; the Lua script keeps check-and-increment atomic."""

    def __init__(self, client, prefix: str = "ratelimit:", clock: Callable[[], int] = _wall_ms):
        self._client = client
        self._prefix = prefix
        self._clock = clock
        self._script = client.register_script(_FIXED_WINDOW_LUA)

    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        allowed, count, ttl = self._script(keys=[self._prefix + key], args=[max_requests, window_ms])
        reset_at = self._clock() + int(ttl)
        remaining = max(0, max_requests - int(count))
        return RateLimitResult(bool(allowed), max_requests, remaining, reset_at)


def build_rate_limiter(redis_url: str | None) -> RateLimiter:
    if redis_url:
        import redis

        logger.info("Using Redis rate limiter")
        return RedisRateLimiter(redis.Redis.from_url(redis_url))
    logger.info("Using in-memory rate limiter (single process only)")
    return InMemoryRateLimiter()


def get_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip") or request.headers.get("cf-connecting-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


def enforce(limiter: RateLimiter, key: str, policy: RateLimitPolicy, message: str) -> RateLimitResult:
    """Admit the request or raise RateLimited (429 with Retry-After)."""
    result = limiter.hit(key, policy)
    if not result.allowed:
        headers = result.headers()
        headers["Retry-After"] = str(result.retry_after_s(_wall_ms()))
        logger.info("Rate limit exceeded for %s", key.split(":", 1)[0])
        raise RateLimited(message, headers=headers)
    return result
