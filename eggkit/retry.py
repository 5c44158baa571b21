"""Retrying transport adapter with an optional circuit breaker."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, TypeVar

import requests
from requests.adapters import BaseAdapter, HTTPAdapter

T = TypeVar("T")


class CircuitState(str, Enum):
    """State of a circuit breaker."""

    CLOSED = "closed"
    HALF_OPEN = "half-open"
    OPEN = "open"


class CircuitOpenError(Exception):
    """Raised when the circuit breaker rejects a call."""

    def __init__(self, message: str = "circuit breaker is open") -> None:
        super().__init__(message)


class TooManyRequestsError(CircuitOpenError):
    """Raised when a half-open breaker already has its quota of trial calls."""

    def __init__(self) -> None:
        super().__init__("too many requests")


@dataclass
class Counts:
    """Request and outcome counters for the current breaker generation."""

    requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_successes: int = 0
    consecutive_failures: int = 0

    def _on_success(self) -> None:
        self.total_successes += 1
        self.consecutive_successes += 1
        self.consecutive_failures = 0

    def _on_failure(self) -> None:
        self.total_failures += 1
        self.consecutive_failures += 1
        self.consecutive_successes = 0


def _default_ready_to_trip(counts: Counts) -> bool:
    return counts.consecutive_failures > 5


class CircuitBreaker:
    """A three-state circuit breaker; a call fails when it raises."""

    def __init__(
        self,
        name: str = "",
        max_requests: int = 1,
        timeout: float = 60.0,
        ready_to_trip: Callable[[Counts], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.max_requests = max_requests or 1
        self.timeout = timeout if timeout > 0 else 60.0
        self._ready_to_trip = ready_to_trip or _default_ready_to_trip
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._generation = 0
        self._counts = Counts()
        self._expiry = 0.0

    @property
    def counts(self) -> Counts:
        """A copy of the current counters."""
        with self._lock:
            return replace(self._counts)

    def state(self) -> CircuitState:
        """The state as of now, moving from open to half-open once the timeout passes."""
        with self._lock:
            return self._current_state(self._clock())

    def call(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` through the breaker and return its result."""
        generation = self._before_request()
        try:
            result = fn()
        except BaseException:
            self._after_request(generation, success=False)
            raise
        self._after_request(generation, success=True)
        return result

    def _current_state(self, now: float) -> CircuitState:
        if self._state is CircuitState.OPEN and self._expiry <= now:
            self._set_state(CircuitState.HALF_OPEN, now)
        return self._state

    def _set_state(self, new_state: CircuitState, now: float) -> None:
        if self._state is new_state:
            return
        self._state = new_state
        self._generation += 1
        self._counts = Counts()
        self._expiry = now + self.timeout if new_state is CircuitState.OPEN else 0.0

    def _before_request(self) -> int:
        with self._lock:
            state = self._current_state(self._clock())
            if state is CircuitState.OPEN:
                raise CircuitOpenError()
            if state is CircuitState.HALF_OPEN and self._counts.requests >= self.max_requests:
                raise TooManyRequestsError()
            self._counts.requests += 1
            return self._generation

    def _after_request(self, generation: int, success: bool) -> None:
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            if generation != self._generation:
                return
            if success:
                self._counts._on_success()
                if (
                    state is CircuitState.HALF_OPEN
                    and self._counts.consecutive_successes >= self.max_requests
                ):
                    self._set_state(CircuitState.CLOSED, now)
            elif state is CircuitState.CLOSED:
                self._counts._on_failure()
                if self._ready_to_trip(replace(self._counts)):
                    self._set_state(CircuitState.OPEN, now)
            elif state is CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN, now)


class RetryAdapter(BaseAdapter):
    """Transport adapter that retries transport errors and 5xx responses with backoff."""

    def __init__(
        self,
        base: BaseAdapter | None = None,
        *,
        max_retries: int = 3,
        backoff: float = 0.1,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__()
        self.base = base if base is not None else HTTPAdapter()
        self.max_retries = max_retries
        self.backoff = backoff
        self.breaker = breaker
        self._sleep = sleep

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        """Send ``request``, through the breaker when one is configured."""
        if self.breaker is not None:
            return self.breaker.call(lambda: self._send_with_retry(request, **kwargs))
        return self._send_with_retry(request, **kwargs)

    def close(self) -> None:
        self.base.close()

    def _send_with_retry(
        self, request: requests.PreparedRequest, **kwargs: Any
    ) -> requests.Response:
        last_response: requests.Response | None = None
        last_error: requests.RequestException | None = None

        for attempt in range(self.max_retries + 1):
            response: requests.Response | None
            try:
                response = self.base.send(request.copy(), **kwargs)
                error = None
            except requests.RequestException as exc:
                response, error = None, exc

            if error is None and response is not None and response.status_code < 500:
                return response

            last_response, last_error = response, error

            if attempt == self.max_retries:
                break

            if response is not None:
                response.close()

            self._sleep(self.backoff * (1 << attempt))

        if last_error is not None:
            raise last_error
        assert last_response is not None
        return last_response