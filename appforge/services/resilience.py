"""Retry and circuit-breaker guards for the outbound CI integrations.

Two integrations leave the process: the CI dispatch (``ci.github_dispatch``)
and the artifact manifest fetch (``ci.manifest``). Both retry transient httpx
failures; only the dispatch is guarded by a breaker, since a failed dispatch
is recorded on the build job and hammering a down CI API helps nobody.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from redis.asyncio import Redis

from appforge.core.config import get_settings
from appforge.core.errors import IntegrationUnavailableError
from appforge.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

CI_DISPATCH = "ci.github_dispatch"
CI_MANIFEST = "ci.manifest"

STATE_CLOSED = "closed"
STATE_OPEN = "open"
STATE_HALF_OPEN = "half_open"
_STATE_GAUGE = {STATE_CLOSED: 0.0, STATE_HALF_OPEN: 0.5, STATE_OPEN: 1.0}


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_resilience_redis() -> Redis | None:
    # Share breaker state across API instances; None keeps state process-local.
    settings = get_settings()
    if not settings.cb_redis_enabled:
        return None
    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None
    global _redis_pool, _redis_loop
    if _redis_pool is not None and _redis_loop is current_loop:
        return _redis_pool
    async with _redis_lock:
        if _redis_pool is None or _redis_loop is not current_loop:
            try:
                _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
                _redis_loop = current_loop
            except Exception as exc:  # noqa: BLE001 - Redis might be unavailable in dev
                logger.warning("resilience_redis_unavailable", exc_info=exc)
                return None
    return _redis_pool


def is_transient_http_error(exc: Exception) -> bool:
    """Timeouts, connection errors and 5xx answers are worth another attempt."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, asyncio.TimeoutError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    integration: str,
    retryable: Callable[[Exception], bool] = is_transient_http_error,
) -> Any:
    # Jittered exponential backoff bounded by the ext_* settings.
    settings = get_settings()
    max_attempts = max(settings.ext_retry_max_attempts, 1)
    timeout_s = settings.ext_call_timeout_ms / 1000.0
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=timeout_s)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max_attempts or not retryable(exc):
                raise
            increment_counter(f"external_retries_total.{integration}")
            logger.info("external_call_retry integration=%s attempt=%s error=%s", integration, attempt, exc)
            delay_s = (settings.ext_retry_backoff_ms / 1000.0) * (2 ** (attempt - 1))
            await asyncio.sleep(delay_s * random.uniform(0.5, 1.5))
            attempt += 1


@dataclass
class BreakerSnapshot:
    state: str = STATE_CLOSED
    failures: int = 0
    opened_at: float | None = None
    trials: int = 0

    def to_redis(self) -> dict[str, str]:
        return {
            "state": self.state,
            "failures": str(self.failures),
            "opened_at": "" if self.opened_at is None else str(self.opened_at),
            "trials": str(self.trials),
        }

    @classmethod
    def from_redis(cls, raw: dict[str, str]) -> BreakerSnapshot:
        return cls(
            state=raw.get("state") or STATE_CLOSED,
            failures=int(raw.get("failures") or 0),
            opened_at=float(raw["opened_at"]) if raw.get("opened_at") else None,
            trials=int(raw.get("trials") or 0),
        )


class CircuitBreaker:
    """Closed/open/half-open breaker for one integration.

    Thresholds are read from settings on every decision. State lives in Redis
    when ``cb_redis_enabled`` is on, so every API instance stops dispatching
    together; otherwise it is held on this process-wide instance.
    """

    def __init__(self, name: str, *, clock: Callable[[], float] = time.time) -> None:
        self.name = name
        self._clock = clock
        self._local = BreakerSnapshot()

    def _key(self) -> str:
        return f"{get_settings().cb_redis_prefix}:{self.name}"

    async def snapshot(self) -> BreakerSnapshot:
        redis = await get_resilience_redis()
        if redis is None:
            return self._local
        raw = await redis.hgetall(self._key())
        return BreakerSnapshot.from_redis(raw) if raw else BreakerSnapshot()

    async def _store(self, snapshot: BreakerSnapshot) -> None:
        redis = await get_resilience_redis()
        if redis is None:
            self._local = snapshot
            return
        await redis.hset(self._key(), mapping=snapshot.to_redis())
        await redis.expire(self._key(), max(get_settings().cb_open_seconds * 4, 60))

    def _move(self, current: BreakerSnapshot, target: str) -> BreakerSnapshot:
        if current.state != target:
            logger.warning("circuit_breaker_transition name=%s from=%s to=%s", self.name, current.state, target)
            increment_counter(f"circuit_breaker_transition_total.{self.name}.{target}")
            set_gauge(f"circuit_breaker_state.{self.name}", _STATE_GAUGE[target])
        return BreakerSnapshot(state=target, opened_at=self._clock() if target == STATE_OPEN else None)

    async def allow(self) -> None:
        settings = get_settings()
        snapshot = await self.snapshot()
        if snapshot.state == STATE_OPEN:
            opened_for = self._clock() - (snapshot.opened_at or 0.0)
            if opened_for < settings.cb_open_seconds:
                raise IntegrationUnavailableError(f"{self.name} is temporarily unavailable")
            snapshot = self._move(snapshot, STATE_HALF_OPEN)
        if snapshot.state == STATE_HALF_OPEN:
            if snapshot.trials >= settings.cb_half_open_trials:
                raise IntegrationUnavailableError(f"{self.name} is temporarily unavailable")
            snapshot.trials += 1
            await self._store(snapshot)

    async def succeeded(self) -> None:
        snapshot = await self.snapshot()
        if snapshot.state == STATE_CLOSED and snapshot.failures == 0:
            return
        await self._store(self._move(snapshot, STATE_CLOSED))

    async def failed(self) -> None:
        snapshot = await self.snapshot()
        failures = snapshot.failures + 1
        if snapshot.state == STATE_HALF_OPEN or failures >= get_settings().cb_failure_threshold:
            await self._store(self._move(snapshot, STATE_OPEN))
            return
        snapshot.failures = failures
        await self._store(snapshot)

    @asynccontextmanager
    async def guard(self, *, trips_on: Callable[[Exception], bool] = is_transient_http_error) -> AsyncIterator[None]:
        """Refuse the call while open; count exceptions matching ``trips_on`` as outages."""
        await self.allow()
        try:
            yield
        except Exception as exc:
            if trips_on(exc):
                await self.failed()
            raise
        await self.succeeded()


_breakers: dict[str, CircuitBreaker] = {}


def breaker_for(name: str) -> CircuitBreaker:
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = _breakers[name] = CircuitBreaker(name)
    return breaker


def reset_breakers() -> None:
    _breakers.clear()


async def get_circuit_breaker_state(name: str) -> str:
    # Health reporting tolerates Redis outages.
    try:
        return (await breaker_for(name).snapshot()).state
    except Exception:  # noqa: BLE001
        logger.warning("circuit_breaker_state_unavailable name=%s", name)
        return "unknown"
