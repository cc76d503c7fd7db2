"""Circuit breaker for the extractor's delegated API calls.

A provider outage should cost each remaining source one fast
``CircuitOpenError`` rather than a full request timeout. Only exceptions
listed in ``trip_on`` count toward opening the circuit; anything else
(a bad request for one page, say) propagates without affecting state.

Usage:
    breaker = GenericCircuitBreaker(failure_threshold=5, recovery_timeout=60.0)
    try:
        result = await breaker.call(client.messages.create, **kwargs)
    except CircuitOpenError:
        ...
"""

import enum
import logging
import time
from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""

    def __init__(self, name: str, retry_in: float) -> None:
        super().__init__(f"Circuit breaker {name} is OPEN (retry in {retry_in:.1f}s)")
        self.retry_in = retry_in


class GenericCircuitBreaker:
    """Consecutive-failure breaker with a single half-open trial call.

    Args:
        failure_threshold: Consecutive tripping failures that open the circuit.
        recovery_timeout: Seconds the circuit stays open before one trial call.
        name: Label used in logs and errors.
        trip_on: Exception types that count as provider failures.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "circuit_breaker",
        trip_on: tuple[type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._name = name
        self._trip_on = trip_on
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def _seconds_until_retry(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._recovery_timeout - (self._clock() - self._opened_at))

    def _admit(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        wait = self._seconds_until_retry()
        if wait > 0:
            raise CircuitOpenError(self._name, wait)
        self._state = CircuitState.HALF_OPEN
        logger.info("Circuit breaker %s: half-open after %.0fs", self._name, self._recovery_timeout)

    async def call(
        self,
        fn: Callable[..., Coroutine[Any, Any, T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        self._admit()
        try:
            result = await fn(*args, **kwargs)
        except self._trip_on:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker %s closed after successful trial call", self._name)
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        retrying = self._state == CircuitState.HALF_OPEN
        if retrying or self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker %s open (%d consecutive failures%s)",
                self._name,
                self._consecutive_failures,
                ", trial call failed" if retrying else "",
            )

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
