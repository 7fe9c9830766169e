"""
Circuit Breaker for Model Provider Outages

When consecutive provider failures cross a threshold the circuit opens and
callers get an immediate CircuitOpenError (or their fallback) instead of
burning retries against a provider that is down.
"""

import asyncio
from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional, Callable, TypeVar, Awaitable
from src.config import get_settings
from src.utils.observability import logger

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, requests flow through
    OPEN = "open"          # Failing, reject requests immediately
    HALF_OPEN = "half_open"  # Probing whether the provider recovered


@dataclass
class CircuitStats:
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    rejected_calls: int = 0
    last_failure_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    state_changes: int = 0


class CircuitOpenError(Exception):
    """Raised when the circuit rejects a call without attempting it."""
    pass


class CircuitBreaker:
    """
    Circuit breaker for protecting against cascading failures.

    States:
    - CLOSED: Normal operation. Failures are counted.
    - OPEN: Provider is down. Calls are rejected with CircuitOpenError.
    - HALF_OPEN: A limited number of probe calls are let through.

    Exceptions listed in `ignored_exceptions` propagate without counting as
    provider failures (a malformed response says nothing about availability).

    Usage:
        breaker = CircuitBreaker(name="llm")
        draft = await breaker.call_with_fallback(call_model, lambda: default_draft)
    """

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        half_open_max_calls: Optional[int] = None,
        ignored_exceptions: tuple[type[BaseException], ...] = (),
    ):
        settings = get_settings()
        self.name = name
        self._failure_threshold = failure_threshold or settings.circuit_breaker_failure_threshold
        self._recovery_timeout = recovery_timeout or settings.circuit_breaker_recovery_timeout
        self._half_open_max_calls = half_open_max_calls or settings.circuit_breaker_half_open_max_calls
        self._ignored_exceptions = ignored_exceptions

        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute `func` through the breaker.

        Raises:
            CircuitOpenError: When the circuit is open or the half-open probe
                budget is spent
        """
        async with self._lock:
            self._maybe_half_open()

            if self._state == CircuitState.OPEN:
                self._stats.rejected_calls += 1
                raise CircuitOpenError(f"Circuit '{self.name}' is open")

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self._half_open_max_calls:
                    self._stats.rejected_calls += 1
                    raise CircuitOpenError(f"Circuit '{self.name}' is probing recovery")
                self._half_open_calls += 1

        # Run outside the lock so concurrent calls are not serialized
        try:
            result = await func()
        except self._ignored_exceptions:
            await self._record_success()
            raise
        except Exception as e:
            await self._record_failure(e)
            raise

        await self._record_success()
        return result

    async def call_with_fallback(
        self,
        func: Callable[[], Awaitable[T]],
        fallback: Callable[[], T],
    ) -> T:
        """Like call(), but any failure (including an open circuit) returns fallback()."""
        try:
            return await self.call(func)
        except CircuitOpenError:
            logger.warning(f"Circuit '{self.name}' is OPEN, using fallback")
            return fallback()
        except Exception as e:
            logger.error(f"Circuit '{self.name}' call failed, using fallback: {e}")
            return fallback()

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or not self._stats.opened_at:
            return

        elapsed = (datetime.now(timezone.utc) - self._stats.opened_at).total_seconds()
        if elapsed >= self._recovery_timeout:
            self._transition_to(CircuitState.HALF_OPEN)
            self._half_open_calls = 0

    async def _record_success(self) -> None:
        async with self._lock:
            self._stats.consecutive_failures = 0
            self._stats.total_successes += 1
            self._stats.last_success_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit '{self.name}' recovered, closing")
                self._transition_to(CircuitState.CLOSED)

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._stats.consecutive_failures += 1
            self._stats.total_failures += 1
            self._stats.last_failure_time = datetime.now(timezone.utc)

            logger.warning(
                f"Circuit '{self.name}' failure {self._stats.consecutive_failures}/{self._failure_threshold}: {error}"
            )

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit '{self.name}' probe failed, reopening")
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._stats.consecutive_failures >= self._failure_threshold
            ):
                logger.error(f"Circuit '{self.name}' threshold reached, opening")
                self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.OPEN:
            self._stats.opened_at = datetime.now(timezone.utc)

        logger.info(f"Circuit '{self.name}' state: {old_state.value} -> {new_state.value}")

    async def reset(self) -> None:
        """Manually close the circuit."""
        async with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._stats.consecutive_failures = 0
            self._half_open_calls = 0

    async def force_open(self) -> None:
        """Manually open the circuit (maintenance windows, tests)."""
        async with self._lock:
            self._transition_to(CircuitState.OPEN)

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "consecutive_failures": self._stats.consecutive_failures,
            "total_failures": self._stats.total_failures,
            "total_successes": self._stats.total_successes,
            "rejected_calls": self._stats.rejected_calls,
            "failure_threshold": self._failure_threshold,
            "recovery_timeout_seconds": self._recovery_timeout,
            "opened_at": self._stats.opened_at.isoformat() if self._stats.opened_at else None,
        }


# Shared breaker for generative model calls
_llm_circuit: Optional[CircuitBreaker] = None


def get_llm_circuit() -> CircuitBreaker:
    """Get or create the model-provider circuit breaker singleton."""
    global _llm_circuit
    if _llm_circuit is None:
        from src.utils.llm_client import LLMCriticalError
        _llm_circuit = CircuitBreaker(name="llm", ignored_exceptions=(LLMCriticalError,))
    return _llm_circuit


def reset_llm_circuit() -> None:
    """Drop the singleton so the next caller gets a fresh, closed breaker."""
    global _llm_circuit
    _llm_circuit = None
