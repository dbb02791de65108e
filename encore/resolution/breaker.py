"""
Per-provider circuit breaker.

If a provider fails `max_failures` times in a row it is bypassed for
`reset_seconds`; resolutions routed to it fail fast instead of piling up
timeouts. The first call after the reset window closes the circuit again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CircuitState:
    failures: int = 0
    last_failure_time: float = 0.0
    is_open: bool = False


class CircuitBreaker:
    def __init__(
        self,
        *,
        max_failures: int = 3,
        reset_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_failures = max_failures
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._states: dict[str, CircuitState] = {}

    def is_open(self, name: str) -> bool:
        state = self._states.get(name)
        if state is None or not state.is_open:
            return False

        if self._clock() - state.last_failure_time >= self._reset_seconds:
            logger.info("Circuit for %s reset after %.0fs", name, self._reset_seconds)
            self.reset(name)
            return False

        return True

    def record_success(self, name: str) -> None:
        self.reset(name)

    def record_failure(self, name: str) -> None:
        state = self._states.setdefault(name, CircuitState())
        state.failures += 1
        state.last_failure_time = self._clock()

        if state.failures >= self._max_failures and not state.is_open:
            state.is_open = True
            logger.warning(
                "Circuit for %s opened after %d failures (bypassed for %.0fs)",
                name,
                state.failures,
                self._reset_seconds,
            )

    def reset(self, name: str) -> None:
        self._states.pop(name, None)

    def stats(self) -> dict[str, dict[str, object]]:
        return {
            name: {"failures": state.failures, "open": state.is_open}
            for name, state in self._states.items()
        }
