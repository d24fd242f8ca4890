"""
Health checks for deployed stacks.

Handles:
- Post-deployment verification (running units == declared units)
- The periodic service sweep used by maintenance
"""

import time
import logging
from typing import Callable, Dict, List, Iterable
from dataclasses import dataclass, field
from enum import Enum

from .registry import StackDescriptor
from .services import ComposeRuntime

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class StackHealth:
    """Unit counts for one stack."""
    stack: str
    running: int
    declared: int

    @property
    def status(self) -> HealthStatus:
        if self.running == 0:
            return HealthStatus.DOWN
        if self.declared > 0 and self.running == self.declared:
            return HealthStatus.HEALTHY
        return HealthStatus.DEGRADED

    @property
    def healthy(self) -> bool:
        # An empty plan usually means the manifest did not parse
        return self.declared > 0 and self.running == self.declared


@dataclass
class HealthSweep:
    """Result of checking every stack during maintenance."""
    stacks: Dict[str, StackHealth] = field(default_factory=dict)

    @property
    def down(self) -> List[str]:
        return [name for name, h in self.stacks.items() if h.status == HealthStatus.DOWN]

    @property
    def ok(self) -> bool:
        return not self.down

    def summary(self) -> str:
        if not self.stacks:
            return "no stacks found"
        if self.down:
            return f"stacks down: {', '.join(self.down)}"
        return f"all {len(self.stacks)} stacks running"


class HealthVerifier:
    """Compares running units against the manifest for a stack."""

    def __init__(
        self,
        runtime: ComposeRuntime,
        settle_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runtime = runtime
        self.settle_delay = settle_delay
        self._sleep = sleep

    def check(self, stack: StackDescriptor) -> StackHealth:
        """Count running and declared units without waiting."""
        return StackHealth(
            stack=stack.name,
            running=len(self.runtime.running_units(stack)),
            declared=len(self.runtime.declared_units(stack)),
        )

    def verify(self, stack: StackDescriptor) -> bool:
        """Wait for containers to settle, then require a full, non-empty set."""
        if self.settle_delay > 0:
            self._sleep(self.settle_delay)
        health = self.check(stack)
        if health.healthy:
            logger.info(f"Stack {stack.name} healthy ({health.running}/{health.declared} running)")
        else:
            logger.warning(
                f"Stack {stack.name} unhealthy ({health.running}/{health.declared} running)"
            )
        return health.healthy

    def sweep(self, stacks: Iterable[StackDescriptor]) -> HealthSweep:
        """Check every stack; a stack with no running units counts as down."""
        result = HealthSweep()
        for stack in stacks:
            health = self.check(stack)
            result.stacks[stack.name] = health
            if health.status == HealthStatus.DOWN:
                logger.warning(f"Stack {stack.name} is not running")
            else:
                logger.info(
                    f"Stack {stack.name} {health.status.value} "
                    f"({health.running}/{health.declared} containers)"
                )
        if result.down:
            logger.error(f"Stacks down: {', '.join(result.down)}")
        else:
            logger.info("All stacks are running")
        return result
