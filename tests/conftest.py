import sys
import threading

import pytest

# Ensure project root is importable (so `import sdo...` works without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from sdo.declarations import ProbeSpec, ServiceDeclaration  # noqa: E402
from sdo.driver import ApplyResult, desired_state_hash  # noqa: E402
from sdo.errors import DriverApplyError  # noqa: E402
from sdo.providers import StaticProvider  # noqa: E402
from sdo.readiness import ReadinessGate  # noqa: E402
from sdo.runtime import ServiceStatus  # noqa: E402
from sdo.settings import Settings  # noqa: E402


class FakeDriver:
    """In-memory driver that records calls.

    ``mutations`` counts applies that actually changed something, so a second
    run over the same plan should leave it untouched.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.deployed: dict[str, str] = {}
        self.apply_calls: list[str] = []
        self.status_calls: list[str] = []
        self.mutations: dict[str, int] = {}
        self.seen_config: dict[str, dict] = {}
        self.fail_apply: dict[str, str] = {}
        self.statuses: dict[str, list[ServiceStatus]] = {}

    def apply(self, declaration, config):
        with self.lock:
            self.apply_calls.append(declaration.name)
            self.seen_config[declaration.name] = dict(config)
            if declaration.name in self.fail_apply:
                raise DriverApplyError(self.fail_apply[declaration.name])
            want = desired_state_hash(declaration, config)
            if self.deployed.get(declaration.name) == want:
                return ApplyResult(False, "unchanged")
            self.deployed[declaration.name] = want
            self.mutations[declaration.name] = self.mutations.get(declaration.name, 0) + 1
            return ApplyResult(True, "updated")

    def status(self, service_id):
        with self.lock:
            self.status_calls.append(service_id)
            queue = self.statuses.get(service_id)
            if queue:
                # last scripted status repeats forever
                return queue.pop(0) if len(queue) > 1 else queue[0]
            if service_id in self.deployed:
                return ServiceStatus.ready()
            return ServiceStatus.pending("not deployed")


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_service(name, *deps, required=True, **kwargs):
    kwargs.setdefault("probe", ProbeSpec(interval_s=1, timeout_s=30, max_attempts=5))
    return ServiceDeclaration(name=name, image=f"{name}:1", depends_on=deps, required=required, **kwargs)


@pytest.fixture
def svc():
    """Factory for declarations: ``svc("scheduler", "store", "cache")``."""
    return make_service


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gate(clock):
    return ReadinessGate(call_timeout_s=5, clock=clock, sleep=clock.sleep)


@pytest.fixture
def settings():
    return Settings(db_path="", call_timeout_s=5, run_timeout_margin_s=10, enable_email=False)


@pytest.fixture
def provider():
    return StaticProvider({"POSTGRES_PASSWORD": "s3cret-pw", "FERNET": "fernet-key"})
