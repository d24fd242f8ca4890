"""
homestack
=========

Deployment and maintenance for the Docker Compose stacks of a home server.

Features:
- Drift detection per stack from content fingerprints
- Per-stack .env generation from a private configuration directory
- Sequential deployment with post-deployment health verification
- Durable deployment state
- Cron-driven maintenance with catch-up after downtime
- DNS records kept pointed at the server's public IP

License: MIT
"""

__version__ = "1.0.0"

from .config import HomeConfig
from .core import StackDeployer, DeploymentResult
from .registry import StackRegistry, StackDescriptor
from .state import DeploymentStateStore, MarkerStore
from .health import HealthVerifier
from .maintenance import MaintenanceRunner
from .schedule import ScheduleInstaller

__all__ = [
    "HomeConfig",
    "StackDeployer",
    "DeploymentResult",
    "StackRegistry",
    "StackDescriptor",
    "DeploymentStateStore",
    "MarkerStore",
    "HealthVerifier",
    "MaintenanceRunner",
    "ScheduleInstaller",
]
