"""
Send Pacing

Backpressure for outbound notifications. The executor calls
``pacer.wait()`` immediately before every send; the pacer blocks for
whatever is left of the minimum interval since the previous send.

Clock and sleep are injectable so tests can assert the waits exactly.
"""

import time
from typing import Callable, Protocol

import structlog

log = structlog.get_logger()

Clock = Callable[[], float]
Sleep = Callable[[float], None]

# Floor on the gap between two sends, whatever the pacing strategy.
MIN_SEND_SPACING_SECONDS = 0.5


class Pacer(Protocol):
    """Anything that can hold a send back until it is allowed."""

    def wait(self) -> float:
        """Block until the next send may go out; return seconds waited."""
        ...


class FixedIntervalPacer:
    """
    Enforce a fixed minimum interval between consecutive sends.

    The first call never waits.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be non-negative")
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_send: float | None = None

    def wait(self) -> float:
        waited = 0.0
        if self._last_send is not None:
            remaining = self.min_interval_seconds - (self._clock() - self._last_send)
            if remaining > 0:
                log.debug("pacing_wait", seconds=round(remaining, 3))
                self._sleep(remaining)
                waited = remaining
        self._last_send = self._clock()
        return waited


class TokenBucketPacer:
    """
    Token bucket: up to ``capacity`` sends are banked, refilled at one
    token per ``refill_interval_seconds``. Banked sends still go out no
    closer together than ``min_spacing_seconds``.

    With capacity=1 this behaves like FixedIntervalPacer.
    """

    def __init__(
        self,
        refill_interval_seconds: float,
        capacity: int = 1,
        min_spacing_seconds: float = 0.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = time.sleep,
    ):
        if refill_interval_seconds <= 0:
            raise ValueError("refill_interval_seconds must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if min_spacing_seconds < 0:
            raise ValueError("min_spacing_seconds must be non-negative")
        self.refill_interval_seconds = refill_interval_seconds
        self.capacity = capacity
        self.min_spacing_seconds = min_spacing_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._last_send: float | None = None

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated
        self._tokens = min(self.capacity, self._tokens + elapsed / self.refill_interval_seconds)
        self._updated = now

    def wait(self) -> float:
        self._refill()
        waited = 0.0
        if self._tokens < 1:
            waited = (1 - self._tokens) * self.refill_interval_seconds
            log.debug("pacing_wait", seconds=round(waited, 3))
            self._sleep(waited)
            self._refill()
            # one token is owed after the sleep
            self._tokens = max(self._tokens, 1.0)
        if self._last_send is not None:
            remaining = self.min_spacing_seconds - (self._clock() - self._last_send)
            if remaining > 0:
                log.debug("pacing_wait", seconds=round(remaining, 3))
                self._sleep(remaining)
                waited += remaining
                self._refill()
        self._tokens -= 1
        self._last_send = self._clock()
        return waited


def build_pacer(
    strategy: str,
    min_interval_seconds: float,
    *,
    capacity: int = 1,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> Pacer:
    """Create the configured pacer."""
    if strategy == "token_bucket":
        return TokenBucketPacer(
            min_interval_seconds,
            capacity,
            min_spacing_seconds=MIN_SEND_SPACING_SECONDS,
            clock=clock,
            sleep=sleep,
        )
    return FixedIntervalPacer(min_interval_seconds, clock=clock, sleep=sleep)
