from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator

import httpx

from .declarations import ProbeSpec
from .driver import ServiceDriver
from .errors import ExternalCallTimeout
from .health import check_health, check_tcp
from .runtime import StepState
from .timeouts import call_with_timeout


class GateOutcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    reason: str | None = None
    attempts: int = 0

    @property
    def ready(self) -> bool:
        return self.outcome is GateOutcome.READY


def backoff_delays(probe: ProbeSpec, jitter: Callable[[float], float] | None = None) -> Iterator[float]:
    """Delays between polls: fixed, or doubling up to ``max_interval_s``."""
    n = 0
    while True:
        if probe.backoff == "exponential":
            delay = min(probe.interval_s * (2 ** n), probe.max_interval_s)
        else:
            delay = probe.interval_s
        yield jitter(delay) if jitter else delay
        n += 1


class ReadinessGate:
    """Bounded polling that turns a service's status into ready / not ready.

    Polls the driver every interval until ``max_attempts`` polls were made or
    ``timeout_s`` has elapsed, whichever bounds first. A terminal failure
    reported by the driver ends the wait at once. ``clock``, ``sleep`` and
    ``jitter`` are injectable so tests stay deterministic.
    """

    def __init__(
        self,
        call_timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float], float] | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.call_timeout_s = call_timeout_s
        self.clock = clock
        self.sleep = sleep
        self.jitter = jitter
        self.http_client = http_client

    def await_ready(
        self,
        service_id: str,
        probe: ProbeSpec,
        driver: ServiceDriver,
        cancel: threading.Event | None = None,
        time_left_s: float | None = None,
    ) -> GateResult:
        start = self.clock()
        budget = probe.timeout_s
        if time_left_s is not None:
            budget = min(budget, time_left_s)
        attempts = 0
        last = "not ready"

        for delay in backoff_delays(probe, self.jitter):
            if cancel is not None and cancel.is_set():
                return GateResult(GateOutcome.CANCELLED, "cancelled", attempts)
            if budget <= 0:
                return GateResult(GateOutcome.TIMED_OUT, "no time left in the run", attempts)

            attempts += 1
            call_timeout = max(0.001, min(self.call_timeout_s, budget - (self.clock() - start)))
            try:
                snap = call_with_timeout(f"status of {service_id}", call_timeout, driver.status, service_id)
            except ExternalCallTimeout as e:
                last = str(e)
            else:
                if snap.is_terminal_failure:
                    return GateResult(GateOutcome.FAILED, snap.reason or snap.state.value, attempts)
                if snap.state is StepState.READY:
                    ok, msg = self.check_probe(probe, budget - (self.clock() - start))
                    if ok:
                        return GateResult(GateOutcome.READY, None, attempts)
                    last = msg
                else:
                    last = snap.reason or snap.state.value

            if attempts >= probe.max_attempts:
                return GateResult(GateOutcome.TIMED_OUT, f"not ready after {attempts} attempts: {last}", attempts)
            if self.clock() - start + delay > budget:
                return GateResult(GateOutcome.TIMED_OUT, f"not ready within {budget:g}s: {last}", attempts)

            if cancel is not None:
                if cancel.wait(delay):
                    return GateResult(GateOutcome.CANCELLED, "cancelled", attempts)
            else:
                self.sleep(delay)

        raise AssertionError("unreachable")  # backoff_delays never ends

    def check_probe(self, probe: ProbeSpec, time_left_s: float | None = None) -> tuple[bool, str]:
        timeout_s = min(self.call_timeout_s, probe.interval_s * 2, 10.0)
        if time_left_s is not None:
            timeout_s = max(0.001, min(timeout_s, time_left_s))
        if probe.protocol == "http":
            ok, msg, _ = check_health(probe.target, timeout_s=timeout_s, client=self.http_client)
            return ok, msg
        if probe.protocol == "tcp":
            ok, msg, _ = check_tcp(probe.target, timeout_s=timeout_s)
            return ok, msg
        return True, "Ready"
