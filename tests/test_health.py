from pathlib import Path

from homestack.health import HealthStatus, HealthVerifier, StackHealth
from homestack.registry import StackDescriptor

from conftest import FakeRuntime


def stack(name):
    return StackDescriptor(name=name, path=Path("/srv") / name)


def test_stack_health_status():
    assert StackHealth("a", running=2, declared=2).status == HealthStatus.HEALTHY
    assert StackHealth("a", running=1, declared=2).status == HealthStatus.DEGRADED
    assert StackHealth("a", running=0, declared=2).status == HealthStatus.DOWN
    assert not StackHealth("a", running=0, declared=0).healthy


def test_verify_waits_then_compares_counts():
    runtime = FakeRuntime()
    runtime.declared["web"] = 3
    runtime.running["web"] = 3
    slept = []
    verifier = HealthVerifier(runtime, settle_delay=3.0, sleep=slept.append)

    assert verifier.verify(stack("web"))
    assert slept == [3.0]

    runtime.running["web"] = 2
    assert not verifier.verify(stack("web"))


def test_verify_rejects_empty_plan():
    runtime = FakeRuntime()
    runtime.declared["web"] = 0
    verifier = HealthVerifier(runtime, settle_delay=0)
    assert not verifier.verify(stack("web"))


def test_sweep_reports_down_stacks():
    runtime = FakeRuntime()
    runtime.running.update({"a": 1, "b": 0})
    runtime.declared.update({"a": 2, "b": 1})
    sweep = HealthVerifier(runtime, settle_delay=0).sweep([stack("a"), stack("b")])

    assert sweep.down == ["b"]
    assert not sweep.ok
    assert sweep.stacks["a"].status == HealthStatus.DEGRADED
    assert sweep.summary() == "stacks down: b"


def test_sweep_all_running():
    runtime = FakeRuntime()
    runtime.running.update({"a": 1, "b": 1})
    sweep = HealthVerifier(runtime, settle_delay=0).sweep([stack("a"), stack("b")])
    assert sweep.ok
    assert sweep.summary() == "all 2 stacks running"
