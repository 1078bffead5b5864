"""
Per-(tenant, provider) circuit breaker.

Passive state machine: no I/O, no timers. OPEN -> HALF_OPEN happens lazily on
the first ``is_allowed()`` check strictly after ``reset_timeout`` seconds.
HALF_OPEN admits exactly one trial call. A trial that never reports back
(cancelled, crashed) is released by the caller via ``release_trial()``, and a
trial outstanding for longer than ``reset_timeout`` is treated as lost.

State is process-local and rebuilt as CLOSED on restart.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock

from callcenter.shared.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One trial request allowed


@dataclass
class CircuitBreaker:
    name: str
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds
    clock: Clock = field(default=time.monotonic, repr=False)

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _trial_started_at: float | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout <= 0:
            raise ValueError("reset_timeout must be > 0")

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    def current_state(self) -> CircuitState:
        """Return the stored state. Use is_allowed() for lazy OPEN -> HALF_OPEN."""
        return self._state

    def _open(self, reason: str) -> None:
        # Must be called while holding self._lock.
        old_state = self._state
        self._state = CircuitState.OPEN
        self._opened_at = self.clock()
        self._trial_in_flight = False
        self._trial_started_at = None
        logger.warning(
            "Circuit breaker opened",
            extra={
                "breaker": self.name,
                "from_state": old_state.value,
                "reason": reason,
                "consecutive_failures": self._consecutive_failures,
            },
        )

    def is_allowed(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                assert self._opened_at is not None
                if self.clock() - self._opened_at <= self.reset_timeout:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._start_trial()
                logger.info(
                    "Circuit breaker half-open",
                    extra={"breaker": self.name},
                )
                return True

            # HALF_OPEN: one trial at a time.
            if self._trial_in_flight:
                assert self._trial_started_at is not None
                if self.clock() - self._trial_started_at <= self.reset_timeout:
                    return False
                logger.warning(
                    "Circuit breaker trial call lost; admitting a new one",
                    extra={"breaker": self.name},
                )
            self._start_trial()
            return True

    def _start_trial(self) -> None:
        # Must be called while holding self._lock.
        self._trial_in_flight = True
        self._trial_started_at = self.clock()

    def release_trial(self) -> None:
        """Give back a half-open trial slot without recording an outcome."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._trial_started_at = None

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.OPEN:
                # Late success from a call admitted before the breaker opened:
                # the streak is broken, but only a trial call may close it.
                self._consecutive_failures = 0
                return
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker closed", extra={"breaker": self.name})
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._trial_started_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1

            if self._state == CircuitState.HALF_OPEN:
                self._open("trial call failed")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._open("failure threshold reached")
            # Already OPEN: state and opened_at stay as they are.


class CircuitBreakerRegistry:
    """Lazily creates one breaker per (tenant, provider) pair."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._breakers: dict[tuple[str, str], CircuitBreaker] = {}
        self._lock = Lock()

    def get(self, tenant_id: str, provider: str) -> CircuitBreaker:
        key = (tenant_id, provider)
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=f"{tenant_id}:{provider}",
                    failure_threshold=self._failure_threshold,
                    reset_timeout=self._reset_timeout,
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def tenant_ids(self) -> set[str]:
        with self._lock:
            return {tenant_id for tenant_id, _ in self._breakers}

    def discard_tenant(self, tenant_id: str) -> None:
        """Drop every breaker of a tenant that no longer has an active config."""
        with self._lock:
            for key in [k for k in self._breakers if k[0] == tenant_id]:
                del self._breakers[key]
