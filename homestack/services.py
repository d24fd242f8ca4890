"""
Container runtime access for stacks.

Handles:
- Docker availability checks
- Shared network creation
- Applying a stack's compose manifest
- Listing declared and running units
"""

import shutil
import subprocess
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Dict, List

from .errors import PreconditionError
from .registry import StackDescriptor

logger = logging.getLogger(__name__)


class StackStatus(Enum):
    """Coarse stack states shown by --list."""
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass
class CommandResult:
    """Exit status and combined output of a runtime command."""
    ok: bool
    output: str = ""

    @classmethod
    def from_process(cls, proc: subprocess.CompletedProcess) -> "CommandResult":
        output = (proc.stdout or "") + (proc.stderr or "")
        return cls(ok=proc.returncode == 0, output=output.strip())


class ComposeRuntime:
    """
    Runs docker / docker compose commands for stacks.

    Each stack is driven from its own directory with its own manifest, so
    compose picks up the stack's generated .env file.
    """

    def __init__(
        self,
        compose_command: Optional[List[str]] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self._compose = list(compose_command) if compose_command else None
        self._runner = runner

    def _run(self, cmd: List[str], cwd=None) -> subprocess.CompletedProcess:
        logger.debug(f"RUN: {' '.join(cmd)} (cwd={cwd})")
        try:
            return self._runner(cmd, cwd=cwd, capture_output=True, text=True)
        except FileNotFoundError as e:
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

    @property
    def compose_command(self) -> List[str]:
        """`docker compose` when the plugin is present, else `docker-compose`."""
        if self._compose is None:
            if self._run(["docker", "compose", "version"]).returncode == 0:
                self._compose = ["docker", "compose"]
            elif shutil.which("docker-compose"):
                self._compose = ["docker-compose"]
            else:
                self._compose = ["docker", "compose"]
        return self._compose

    def _run_compose(self, stack: StackDescriptor, *args) -> subprocess.CompletedProcess:
        cmd = list(self.compose_command)
        if stack.manifest is not None:
            cmd.extend(["-f", str(stack.manifest)])
        cmd.extend(args)
        return self._run(cmd, cwd=str(stack.path))

    def is_available(self) -> bool:
        """Whether the Docker daemon answers."""
        result = self._run(["docker", "info"])
        if result.returncode != 0:
            logger.debug(f"docker info failed: {(result.stderr or '').strip()}")
            return False
        return True

    def ensure_network(self, name: str) -> bool:
        """
        Create a network unless it already exists.

        Returns True if the network was created by this call.
        """
        listing = self._run(["docker", "network", "ls", "--format", "{{.Name}}"])
        if listing.returncode == 0 and name in listing.stdout.split():
            logger.debug(f"Network {name} already exists")
            return False

        created = self._run(["docker", "network", "create", name])
        if created.returncode != 0:
            # Lost a race with another creator
            again = self._run(["docker", "network", "ls", "--format", "{{.Name}}"])
            if again.returncode == 0 and name in again.stdout.split():
                return False
            raise PreconditionError(
                f"Cannot create network {name}: {(created.stderr or '').strip()}"
            )
        logger.info(f"Created network: {name}")
        return True

    def apply(self, stack: StackDescriptor, recreate: bool = False) -> CommandResult:
        """Bring a stack up with its current manifest and environment."""
        if recreate:
            logger.info(f"Recreating containers for {stack.name}")
            return CommandResult.from_process(
                self._run_compose(stack, "up", "-d", "--force-recreate")
            )

        # Down then up so containers pick up changed variables
        logger.info(f"Restarting {stack.name} with new configuration")
        down = self._run_compose(stack, "down")
        if down.returncode != 0:
            return CommandResult.from_process(down)
        return CommandResult.from_process(self._run_compose(stack, "up", "-d"))

    def running_units(self, stack: StackDescriptor) -> List[str]:
        """Container IDs currently running for the stack."""
        result = self._run_compose(stack, "ps", "-q")
        if result.returncode != 0:
            logger.warning(f"Cannot list containers for {stack.name}: {(result.stderr or '').strip()}")
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    def declared_units(self, stack: StackDescriptor) -> List[str]:
        """Service names declared in the stack's manifest."""
        result = self._run_compose(stack, "config", "--services")
        if result.returncode != 0:
            logger.warning(f"Cannot read services for {stack.name}: {(result.stderr or '').strip()}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def status(self, stack: StackDescriptor) -> StackStatus:
        result = self._run_compose(stack, "ps", "-q")
        if result.returncode != 0:
            return StackStatus.UNKNOWN
        if result.stdout.strip():
            return StackStatus.RUNNING
        return StackStatus.STOPPED

    def logs_tail(self, stack: StackDescriptor, lines: int = 20) -> str:
        """Recent log lines, used when a deployment looks unhealthy."""
        result = self._run_compose(stack, "logs", f"--tail={lines}")
        return ((result.stdout or "") + (result.stderr or "")).strip()


def git_revision(
    project_root,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> Dict[str, str]:
    """Branch and commit checked out at ``project_root``; 'unknown' when git cannot tell."""
    queries = {
        "branch": ["git", "rev-parse", "--abbrev-ref", "HEAD"],
        "commit": ["git", "rev-parse", "HEAD"],
    }
    revision = {}
    for key, cmd in queries.items():
        try:
            result = runner(cmd, cwd=str(project_root), capture_output=True, text=True)
        except FileNotFoundError:
            revision[key] = "unknown"
            continue
        value = (result.stdout or "").strip()
        revision[key] = value if result.returncode == 0 and value else "unknown"
    return revision
