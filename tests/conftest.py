from __future__ import annotations

from pathlib import Path

import pytest

from homestack.config import HomeConfig
from homestack.core import StackDeployer
from homestack.services import CommandResult, StackStatus

STACKS = ("alpha", "beta", "gamma")

COMPOSE = """services:
  web:
    image: nginx:alpine
"""


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRuntime:
    """In-memory stand-in for ComposeRuntime."""

    def __init__(self, available: bool = True):
        self.available = available
        self.networks: set[str] = set()
        self.applied: list[tuple[str, bool]] = []
        self.calls: list[str] = []
        self.running: dict[str, int] = {}
        self.declared: dict[str, int] = {}
        self.apply_fails: set[str] = set()
        self.unhealthy: set[str] = set()

    def is_available(self) -> bool:
        self.calls.append("info")
        return self.available

    def ensure_network(self, name: str) -> bool:
        self.calls.append(f"network:{name}")
        if name in self.networks:
            return False
        self.networks.add(name)
        return True

    def apply(self, stack, recreate: bool = False) -> CommandResult:
        self.calls.append(f"apply:{stack.name}")
        self.applied.append((stack.name, recreate))
        if stack.name in self.apply_fails:
            return CommandResult(ok=False, output="compose up failed")
        declared = self.declared.get(stack.name, 1)
        self.running[stack.name] = 0 if stack.name in self.unhealthy else declared
        return CommandResult(ok=True)

    def running_units(self, stack) -> list[str]:
        return [f"{stack.name}-{i}" for i in range(self.running.get(stack.name, 0))]

    def declared_units(self, stack) -> list[str]:
        return [f"svc{i}" for i in range(self.declared.get(stack.name, 1))]

    def status(self, stack) -> StackStatus:
        return StackStatus.RUNNING if self.running.get(stack.name) else StackStatus.STOPPED

    def logs_tail(self, stack, lines: int = 20) -> str:
        return ""

    @property
    def applied_names(self) -> list[str]:
        return [name for name, _ in self.applied]


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    for name in STACKS:
        write(tmp_path / "docker" / name / "docker-compose.yml", COMPOSE)
    write(tmp_path / "docker" / "notes" / "README.md", "not a stack\n")
    write(tmp_path / "config" / "templates" / "common.env.template", "BASE_DOMAIN=\n")
    write(tmp_path / "config" / "stack-envs.conf", "# stack = sources\nalpha = cloudflare\n")
    write(tmp_path / "config" / "private" / "common.env", "BASE_DOMAIN=example.org\nTZ=UTC\n")
    write(tmp_path / "config" / "private" / "alpha.env", "TZ=Europe/Madrid\n")
    write(tmp_path / "config" / "private" / "cloudflare.env", "CF_DNS_API_TOKEN=secret\n")
    return tmp_path


@pytest.fixture
def config(project: Path) -> HomeConfig:
    return HomeConfig(
        project_root=project,
        networks=["proxy"],
        convergence_delay=0,
        health_settle_delay=0,
        network_wait_timeout=10,
        network_wait_interval=5,
    )


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deployer(config: HomeConfig, runtime: FakeRuntime, clock: FakeClock) -> StackDeployer:
    return StackDeployer(config, runtime=runtime, clock=clock, sleep=lambda _s: None)
