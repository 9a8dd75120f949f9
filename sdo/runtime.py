from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StepState(str, Enum):
    PENDING = "pending"
    APPLYING = "applying"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RunResult(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class ServiceStatus:
    """Point-in-time status of one service, as reported by a driver."""

    state: StepState
    reason: str | None = None

    @classmethod
    def pending(cls, reason: str | None = None) -> "ServiceStatus":
        return cls(StepState.PENDING, reason)

    @classmethod
    def applying(cls, reason: str | None = None) -> "ServiceStatus":
        return cls(StepState.APPLYING, reason)

    @classmethod
    def ready(cls) -> "ServiceStatus":
        return cls(StepState.READY)

    @classmethod
    def failed(cls, reason: str) -> "ServiceStatus":
        return cls(StepState.FAILED, reason)

    @property
    def is_terminal_failure(self) -> bool:
        return self.state in {StepState.FAILED, StepState.TIMED_OUT}


@dataclass
class StepRecord:
    service: str
    required: bool = True
    state: StepState = StepState.PENDING
    reason: str | None = None
    changed: bool | None = None
    attempts: int = 0
    elapsed_s: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "required": self.required,
            "status": self.state.value,
            "reason": self.reason,
            "changed": self.changed,
            "attempts": self.attempts,
            "elapsed_s": self.elapsed_s,
        }


@dataclass
class DeploymentRun:
    """Outcome of one orchestrator invocation over a plan.

    Owned by the orchestrator while it runs; holds statuses and reasons only,
    never resolved config values.
    """

    unit: str
    steps: dict[str, StepRecord]
    dry_run: bool = False
    id: str = field(default_factory=lambda: secrets.token_hex(6))
    result: RunResult = RunResult.RUNNING
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    elapsed_s: float | None = None

    @classmethod
    def for_plan(cls, plan, dry_run: bool = False) -> "DeploymentRun":
        return cls(
            unit=plan.unit,
            steps={d.name: StepRecord(service=d.name, required=d.required) for d in plan},
            dry_run=dry_run,
        )

    def step(self, service: str) -> StepRecord:
        return self.steps[service]

    def states(self) -> dict[str, StepState]:
        return {name: s.state for name, s in self.steps.items()}

    def finish(self, elapsed_s: float) -> None:
        self.finished_at = utc_now()
        self.elapsed_s = round(elapsed_s, 3)
        if self.dry_run:
            self.result = RunResult.SUCCEEDED
            return
        failed = [s for s in self.steps.values() if s.state in {StepState.FAILED, StepState.TIMED_OUT}]
        blocked = [s for s in self.steps.values() if s.state is not StepState.READY]
        if not blocked:
            self.result = RunResult.SUCCEEDED
        elif any(s.required for s in failed) or len(blocked) != len(failed):
            self.result = RunResult.FAILED
        else:
            self.result = RunResult.PARTIALLY_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unit": self.unit,
            "dry_run": self.dry_run,
            "result": self.result.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "elapsed_s": self.elapsed_s,
            "steps": [s.to_dict() for s in self.steps.values()],
        }
