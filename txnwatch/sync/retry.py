"""
Retry and circuit breaker utilities for source fetches.

Exponential backoff with jitter absorbs transient errors inside a cycle;
a breaker per account stops hammering an institution that keeps
refusing us (locked account, changed password) until a cool-down passes.
"""

import asyncio
import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

import structlog

from txnwatch.sync.config import CircuitBreakerConfig, RetryConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Skipping the account
    HALF_OPEN = "half_open"  # One trial fetch allowed


class CircuitOpenError(Exception):
    """Raised when a call is refused because the circuit is open."""

    kind = "CIRCUIT_OPEN"


class CircuitBreaker:
    """Circuit breaker guarding calls to one account."""

    def __init__(self, config: CircuitBreakerConfig, name: str = "breaker"):
        self.config = config
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.last_state_change: datetime = datetime.now(timezone.utc)

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is open and the cool-down has not passed
            Exception: Whatever ``func`` raised
        """
        if self.state == CircuitState.OPEN:
            if self._cooled_down():
                self._set_state(CircuitState.HALF_OPEN)
                self.success_count = 0
                logger.info("circuit_breaker.half_open", breaker=self.name)
            else:
                raise CircuitOpenError(
                    f"Circuit for {self.name} is open since {self.last_state_change.isoformat()}"
                )

        try:
            result = await func()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self):
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self._set_state(CircuitState.CLOSED)
                self.success_count = 0
                logger.info("circuit_breaker.closed", breaker=self.name)

    def record_failure(self):
        self.failure_count += 1
        self.success_count = 0
        self.last_failure_time = datetime.now(timezone.utc)

        if self.state == CircuitState.HALF_OPEN or (
            self.state == CircuitState.CLOSED
            and self.failure_count >= self.config.failure_threshold
        ):
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "circuit_breaker.opened",
                breaker=self.name,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
            )

    def _cooled_down(self) -> bool:
        if not self.last_failure_time:
            return True
        elapsed = (datetime.now(timezone.utc) - self.last_failure_time).total_seconds()
        return elapsed >= self.config.timeout

    def _set_state(self, state: CircuitState):
        self.state = state
        self.last_state_change = datetime.now(timezone.utc)

    def get_state(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
            "last_state_change": self.last_state_change.isoformat(),
        }


class BreakerBoard:
    """One lazily created breaker per account key."""

    def __init__(self, config: CircuitBreakerConfig):
        self.config = config
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, key: str) -> CircuitBreaker:
        if key not in self._breakers:
            self._breakers[key] = CircuitBreaker(self.config, name=key)
        return self._breakers[key]

    def snapshot(self) -> Dict[str, dict[str, Any]]:
        return {key: b.get_state() for key, b in self._breakers.items()}


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    delay = min(
        config.initial_delay * (config.exponential_base**attempt),
        config.max_delay,
    )
    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **log_context: Any,
) -> T:
    """
    Run ``func`` up to ``config.max_attempts`` times.

    Only exceptions matching ``retry_on`` are retried; anything else is
    raised on the spot.

    Raises:
        Exception: The last exception once all attempts are used
    """
    for attempt in range(config.max_attempts):
        try:
            return await func()
        except retry_on as e:
            attempt_num = attempt + 1
            if attempt_num >= config.max_attempts:
                logger.error(
                    "retry.exhausted",
                    operation=operation_name,
                    attempts=attempt_num,
                    error=str(e),
                    **log_context,
                )
                raise

            delay = backoff_delay(config, attempt)
            logger.warning(
                "retry.attempt",
                operation=operation_name,
                attempt=attempt_num,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
                **log_context,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")
