from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

from .db import EventLog
from .declarations import ServiceDeclaration
from .driver import ServiceDriver
from .errors import (
    DriverApplyError,
    ExternalCallTimeout,
    ReadinessFailed,
    ReadinessTimeout,
    SecretResolutionError,
)
from .providers import SecretProvider, resolve_config
from .readiness import GateOutcome, ReadinessGate
from .resolver import DeploymentPlan
from .runtime import DeploymentRun, RunResult, StepRecord, StepState
from .settings import Settings
from .timeouts import call_with_timeout


class StepCancelled(Exception):
    """A sibling at the same dependency level failed while this step was in flight."""


class Orchestrator:
    """Applies a deployment plan in order, gating each step on readiness.

    Each step resolves its config, applies, then waits on the readiness
    gate. A failing required service halts the run and the services not yet
    attempted stay ``pending``. A non-required service (nothing depends on
    it) may fail without halting. ``run`` does not raise for step failures;
    it always returns a complete DeploymentRun.
    """

    def __init__(
        self,
        driver: ServiceDriver,
        provider: SecretProvider,
        settings: Settings,
        gate: ReadinessGate | None = None,
        events: EventLog | None = None,
        parallel: bool = False,
        run_timeout_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.driver = driver
        self.provider = provider
        self.settings = settings
        self.gate = gate or ReadinessGate(call_timeout_s=settings.call_timeout_s)
        self.events = events or EventLog()
        self.parallel = parallel
        self.run_timeout_s = run_timeout_s
        self.clock = clock

    def run_timeout_for(self, plan: DeploymentPlan) -> float:
        """Sum of per-step bounds plus margin, unless set explicitly."""
        if self.run_timeout_s is not None:
            return self.run_timeout_s
        per_call = self.settings.call_timeout_s
        total = 0.0
        for d in plan:
            total += per_call * (len(d.secret_refs()) + 1) + d.probe.timeout_s
        return total + self.settings.run_timeout_margin_s

    def run(self, plan: DeploymentPlan, dry_run: bool = False) -> DeploymentRun:
        events = self.events.bind(plan.unit)
        run = DeploymentRun.for_plan(plan, dry_run=dry_run)
        start = self.clock()
        mode = "dry run" if dry_run else ("parallel" if self.parallel else "sequential")
        events.info(f"Run {run.id} started ({mode}): {' -> '.join(plan.names)}")

        if not dry_run:
            deadline = start + self.run_timeout_for(plan)
            if self.parallel:
                self._run_levels(plan, run, events, deadline)
            else:
                for d in plan:
                    if not self._step(d, run, events, deadline) and d.required:
                        break

        run.finish(self.clock() - start)
        level = "INFO" if run.result is RunResult.SUCCEEDED else "ERROR"
        events.log(level, f"Run {run.id} {run.result.value} in {run.elapsed_s:.1f}s")
        events.record_run(run)
        return run

    def _run_levels(self, plan: DeploymentPlan, run: DeploymentRun, events: EventLog, deadline: float) -> None:
        for level in plan.levels():
            cancel = threading.Event()
            halted = False
            with ThreadPoolExecutor(max_workers=len(level), thread_name_prefix="sdo-step") as pool:
                futures = {pool.submit(self._step, d, run, events, deadline, cancel): d for d in level}
                for fut in as_completed(futures):
                    if not fut.result() and futures[fut].required:
                        halted = True
                        cancel.set()
            if halted:
                return

    def _step(
        self,
        d: ServiceDeclaration,
        run: DeploymentRun,
        events: EventLog,
        deadline: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Drive one service to ready. Returns False if it did not get there."""
        rec = run.step(d.name)
        t0 = self.clock()
        rec.state = StepState.APPLYING
        try:
            self._apply_and_wait(d, rec, events, deadline, cancel)
        except ReadinessTimeout as e:
            rec.state, rec.reason = StepState.TIMED_OUT, str(e)
        except (SecretResolutionError, DriverApplyError, ReadinessFailed, ExternalCallTimeout, StepCancelled) as e:
            rec.state, rec.reason = StepState.FAILED, str(e)
        except Exception as e:
            rec.state, rec.reason = StepState.FAILED, f"unexpected {type(e).__name__}: {e}"
        else:
            rec.state = StepState.READY
        rec.elapsed_s = round(self.clock() - t0, 3)

        if rec.state is StepState.READY:
            events.info(f"Ready after {rec.attempts} check(s)", service=d.name)
            return True
        tail = "; halting run" if d.required else "; not required, continuing"
        events.error(f"{rec.state.value}: {rec.reason}{tail}", service=d.name)
        return False

    def _time_left(self, deadline: float, before: str) -> float:
        left = deadline - self.clock()
        if left <= 0:
            raise ReadinessTimeout(f"run timeout exceeded before {before}")
        return left

    def _apply_and_wait(
        self,
        d: ServiceDeclaration,
        rec: StepRecord,
        events: EventLog,
        deadline: float,
        cancel: threading.Event | None,
    ) -> None:
        per_call = self.settings.call_timeout_s

        # Fetched only now, for this service; nothing is kept after apply.
        timeout = min(per_call, self._time_left(deadline, "resolving config"))
        try:
            config = resolve_config(d.config, self.provider, timeout)
        except SecretResolutionError as e:
            raise SecretResolutionError(f"config resolution failed: {e}") from e
        refs = d.secret_refs()
        if refs:
            events.info(f"Resolved {len(refs)} secret reference(s)", service=d.name)

        timeout = min(per_call, self._time_left(deadline, "apply"))
        try:
            result = call_with_timeout(f"apply of {d.name}", timeout, self.driver.apply, d, config)
        except DriverApplyError as e:
            raise DriverApplyError(f"apply failed: {e}") from e
        rec.changed = result.changed
        events.info(f"Applied ({'changed' if result.changed else 'no-op'}): {result.detail}", service=d.name)

        if cancel is not None and cancel.is_set():
            raise StepCancelled("cancelled: a service at the same level failed")
        gate = self.gate.await_ready(
            d.name,
            d.probe,
            self.driver,
            cancel=cancel,
            time_left_s=self._time_left(deadline, "readiness checks"),
        )
        rec.attempts = gate.attempts
        if gate.outcome is GateOutcome.TIMED_OUT:
            raise ReadinessTimeout(gate.reason or "readiness timed out")
        if gate.outcome is GateOutcome.FAILED:
            raise ReadinessFailed(gate.reason or "readiness failed")
        if gate.outcome is GateOutcome.CANCELLED:
            raise StepCancelled("cancelled: a service at the same level failed")
