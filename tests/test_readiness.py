import threading

import httpx

from sdo import readiness
from sdo.declarations import ProbeSpec
from sdo.readiness import GateOutcome, ReadinessGate, backoff_delays
from sdo.runtime import ServiceStatus


class NeverReady:
    def __init__(self):
        self.calls = 0

    def status(self, service_id):
        self.calls += 1
        return ServiceStatus.applying("starting")


def test_stops_after_exactly_max_attempts(gate, clock):
    drv = NeverReady()
    probe = ProbeSpec(interval_s=1, timeout_s=1000, max_attempts=3)

    res = gate.await_ready("scheduler", probe, drv)

    assert res.outcome is GateOutcome.TIMED_OUT
    assert res.attempts == 3
    assert drv.calls == 3
    assert clock.sleeps == [1, 1]
    assert "starting" in res.reason


def test_total_timeout_bounds_before_attempts(gate, clock):
    drv = NeverReady()
    probe = ProbeSpec(interval_s=4, timeout_s=10, max_attempts=100)

    res = gate.await_ready("scheduler", probe, drv)

    assert res.outcome is GateOutcome.TIMED_OUT
    # polls at t=0, 4, 8; the next one would land past 10s
    assert drv.calls == 3
    assert clock.now == 8


def test_ready_after_a_few_polls(gate, driver, clock):
    driver.statuses["store"] = [ServiceStatus.pending(), ServiceStatus.applying(), ServiceStatus.ready()]
    res = gate.await_ready("store", ProbeSpec(interval_s=2, max_attempts=10), driver)
    assert res.ready
    assert res.attempts == 3
    assert clock.sleeps == [2, 2]


def test_terminal_failure_short_circuits_with_driver_reason(gate, driver, clock):
    driver.statuses["cache"] = [
        ServiceStatus.applying(),
        ServiceStatus.failed("container restarting (exit code 1): crash loop"),
    ]
    res = gate.await_ready("cache", ProbeSpec(interval_s=1, timeout_s=600, max_attempts=50), driver)
    assert res.outcome is GateOutcome.FAILED
    assert res.reason == "container restarting (exit code 1): crash loop"
    assert res.attempts == 2


def test_exponential_backoff_is_capped_and_deterministic():
    probe = ProbeSpec(interval_s=1, backoff="exponential", max_interval_s=5)
    gen = backoff_delays(probe)
    assert [next(gen) for _ in range(6)] == [1, 2, 4, 5, 5, 5]


def test_jitter_is_injectable(clock):
    gate = ReadinessGate(call_timeout_s=5, clock=clock, sleep=clock.sleep, jitter=lambda d: d + 0.5)
    gate.await_ready("x", ProbeSpec(interval_s=1, max_attempts=3), NeverReady())
    assert clock.sleeps == [1.5, 1.5]


def test_run_time_left_shrinks_the_budget(gate, clock):
    drv = NeverReady()
    res = gate.await_ready("x", ProbeSpec(interval_s=1, timeout_s=600, max_attempts=100), drv, time_left_s=2.5)
    assert res.outcome is GateOutcome.TIMED_OUT
    assert drv.calls == 3


def test_cancel_stops_polling():
    cancel = threading.Event()
    cancel.set()
    drv = NeverReady()
    res = ReadinessGate(call_timeout_s=5).await_ready("x", ProbeSpec(interval_s=1), drv, cancel=cancel)
    assert res.outcome is GateOutcome.CANCELLED
    assert drv.calls == 0


def test_http_probe_must_answer_before_ready(clock, driver):
    driver.deployed["airflow"] = "h"
    answers = iter([503, 503, 200])

    def handler(request):
        code = next(answers)
        body = {"metadatabase": {"status": "healthy"}} if code == 200 else {"status": "starting"}
        return httpx.Response(code, json=body)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    gate = ReadinessGate(call_timeout_s=5, clock=clock, sleep=clock.sleep, http_client=client)
    probe = ProbeSpec(protocol="http", target="http://airflow:8080/health", interval_s=1, max_attempts=5)

    res = gate.await_ready("airflow", probe, driver)

    assert res.ready
    assert res.attempts == 3


def test_probe_timeout_never_exceeds_the_remaining_budget(clock, driver, monkeypatch):
    driver.deployed["pgadmin"] = "h"
    timeouts = []

    def slow_tcp(target, timeout_s):
        timeouts.append(timeout_s)
        clock.now += timeout_s
        return False, "No connection", None

    monkeypatch.setattr(readiness, "check_tcp", slow_tcp)
    gate = ReadinessGate(call_timeout_s=30, clock=clock, sleep=clock.sleep)
    probe = ProbeSpec(protocol="tcp", target="pgadmin:80", interval_s=4, timeout_s=15, max_attempts=10)

    res = gate.await_ready("pgadmin", probe, driver)

    assert res.outcome is GateOutcome.TIMED_OUT
    # 8s for the first probe, then only the 3s left after a 4s wait
    assert timeouts == [8.0, 3.0]
    assert clock.now == 15


def test_check_probe_uses_time_left(monkeypatch):
    seen = []
    monkeypatch.setattr(readiness, "check_tcp", lambda target, timeout_s: seen.append(timeout_s) or (True, "ok", 1.0))
    probe = ProbeSpec(protocol="tcp", target="redis:6379", interval_s=5)

    ReadinessGate(call_timeout_s=30).check_probe(probe, time_left_s=1.5)

    assert seen == [1.5]
