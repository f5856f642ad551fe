"""
Circuit Breaker for External Services
=====================================

Fails fast when the embed() or complete() backend is down instead of
stacking retries on top of an outage.

Usage:
    breaker = CircuitBreaker(name="openai_embeddings", failure_threshold=5)

    async with breaker:
        vector = await client.embeddings.create(...)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ppmatch.shared.exceptions import CircuitOpenError, RateLimitError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # requests pass through
    OPEN = "open"            # reject immediately
    HALF_OPEN = "half_open"  # probing recovery


@dataclass
class CircuitStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: Optional[float] = None
    consecutive_failures: int = 0
    consecutive_successes: int = 0


class CircuitBreaker:
    """
    Circuit breaker for one external service.

    CLOSED -> OPEN after `failure_threshold` consecutive failures;
    OPEN -> HALF_OPEN after `reset_timeout` seconds;
    HALF_OPEN -> CLOSED after `success_threshold` successes, or back to OPEN
    on any failure.
    """

    _registry: Dict[str, "CircuitBreaker"] = {}

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 60.0,
        half_open_max_calls: int = 3,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max_calls = half_open_max_calls

        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._lock = asyncio.Lock()
        self._half_open_calls = 0
        CircuitBreaker._registry[name] = self

    @property
    def state(self) -> CircuitState:
        """Current state, applying the OPEN -> HALF_OPEN timeout."""
        if self._state == CircuitState.OPEN and self._stats.last_failure_time:
            if time.monotonic() - self._stats.last_failure_time >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN (reset timeout)")
        return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    async def __aenter__(self):
        async with self._lock:
            state = self.state
            if state == CircuitState.OPEN:
                self._stats.rejected_calls += 1
                raise CircuitOpenError(
                    f"Circuit {self.name} is OPEN; retry in {self.reset_timeout:.0f}s"
                )
            if state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.half_open_max_calls:
                    self._stats.rejected_calls += 1
                    raise CircuitOpenError(
                        f"Circuit {self.name} is HALF_OPEN; trial call limit reached"
                    )
                self._half_open_calls += 1
            self._stats.total_calls += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # Cancellation says nothing about backend health
        if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
            return False
        async with self._lock:
            if exc_type is None:
                self._on_success()
            else:
                self._on_failure(exc_val)
        return False

    def _on_success(self) -> None:
        self._stats.successful_calls += 1
        self._stats.consecutive_successes += 1
        self._stats.consecutive_failures = 0
        if self._state == CircuitState.HALF_OPEN:
            if self._stats.consecutive_successes >= self.success_threshold:
                self._state = CircuitState.CLOSED
                logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED (recovered)")

    def _on_failure(self, error: BaseException) -> None:
        self._stats.failed_calls += 1
        self._stats.last_failure_time = time.monotonic()
        self._stats.consecutive_failures += 1
        self._stats.consecutive_successes = 0
        logger.warning(f"Circuit {self.name}: failure #{self._stats.consecutive_failures}: {error}")

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (failure during trial call)")
        elif self._state == CircuitState.CLOSED:
            if self._stats.consecutive_failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit {self.name}: CLOSED -> OPEN (threshold reached)")

    def reset(self) -> None:
        """Manually reset to CLOSED."""
        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._half_open_calls = 0
        logger.info(f"Circuit {self.name}: manually reset to CLOSED")

    def to_dict(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "total_calls": self._stats.total_calls,
            "failed_calls": self._stats.failed_calls,
            "rejected_calls": self._stats.rejected_calls,
            "consecutive_failures": self._stats.consecutive_failures,
        }


def get_circuit_health() -> Dict[str, Dict[str, object]]:
    """State of every breaker created in this process."""
    return {name: breaker.to_dict() for name, breaker in sorted(CircuitBreaker._registry.items())}


# =============================================================================
# RETRY WITH BACKOFF
# =============================================================================

@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    timeout: float = 30.0


def _is_rate_limit(error: BaseException) -> bool:
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return "rate limit" in message or "429" in message


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> Any:
    """
    Retry an async call with a per-attempt timeout and exponential backoff.

    Args:
        func: Zero-argument coroutine factory
        config: Retry configuration
        on_retry: Callback on retry (attempt_num, exception)

    Returns:
        Function result

    Raises:
        Last exception if all attempts fail. A timed-out attempt raises
        TimeoutError; an open circuit is not retried.
    """
    config = config or RetryConfig()
    last_exception: Optional[BaseException] = None

    for attempt in range(config.max_attempts):
        try:
            async with asyncio.timeout(config.timeout):
                return await func()
        except CircuitOpenError:
            raise
        except TimeoutError:
            last_exception = TimeoutError(f"Request timed out after {config.timeout}s")
            step = attempt
        except Exception as e:
            last_exception = e
            # Rate limits back off one extra step
            step = attempt + 1 if _is_rate_limit(e) else attempt

        if attempt == config.max_attempts - 1:
            logger.error(f"All {config.max_attempts} attempts failed: {last_exception}")
            break

        delay = min(config.initial_delay * (config.exponential_base ** step), config.max_delay)
        if on_retry:
            on_retry(attempt + 1, last_exception)
        logger.warning(f"Attempt {attempt + 1} failed: {last_exception}. Retrying in {delay:.1f}s")
        await asyncio.sleep(delay)

    raise last_exception
