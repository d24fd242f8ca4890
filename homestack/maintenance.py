"""
Recurring maintenance and downtime recovery.

Handles:
- DNS refresh, stack health sweep and log cleanup actions
- Catch-up after the host was off, scaled by how long it was off
- At-most-once-per-day full maintenance
- Waiting for the network at boot
"""

import time
import socket
import logging
from pathlib import Path
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, List, Sequence, Tuple, FrozenSet

from .config import HomeConfig
from .dns import DnsUpdater
from .errors import HomestackError
from .health import HealthVerifier
from .registry import StackRegistry
from .services import ComposeRuntime
from .state import MarkerStore

logger = logging.getLogger(__name__)


class Action(Enum):
    """Maintenance work units."""
    DNS_REFRESH = "dns-refresh"
    LOG_CLEANUP = "log-cleanup"
    HEALTH_SWEEP = "health-sweep"


# Execution order whenever several actions run together
ACTION_ORDER = (Action.DNS_REFRESH, Action.LOG_CLEANUP, Action.HEALTH_SWEEP)

FULL_BUNDLE = frozenset(ACTION_ORDER)

# (hours, actions): the first tier whose threshold is exceeded by the
# whole hours elapsed applies
RECOVERY_TIERS: Tuple[Tuple[float, FrozenSet[Action]], ...] = (
    (24, FULL_BUNDLE),
    (2, frozenset({Action.DNS_REFRESH, Action.HEALTH_SWEEP})),
)


def recovery_actions(
    hours_since: float,
    tiers: Sequence[Tuple[float, FrozenSet[Action]]] = RECOVERY_TIERS,
) -> List[Action]:
    """Actions to replay after ``hours_since`` hours without a tick."""
    hours = int(hours_since)
    for threshold, actions in tiers:
        if hours > threshold:
            return [a for a in ACTION_ORDER if a in actions]
    return []


@dataclass
class ActionResult:
    """Outcome of one maintenance action."""
    action: Action
    ok: bool
    detail: str = ""


@dataclass
class MaintenanceReport:
    """What one maintenance invocation did."""
    mode: str
    hours_since: Optional[int] = None
    actions: List[ActionResult] = field(default_factory=list)
    skipped: bool = False
    failed: bool = False
    message: str = ""

    @property
    def ok(self) -> bool:
        return not self.failed and all(a.ok for a in self.actions)

    @property
    def performed(self) -> List[Action]:
        return [a.action for a in self.actions]

    def summary(self) -> str:
        done = sum(1 for a in self.actions if a.ok)
        return f"{self.mode}: {done}/{len(self.actions)} actions succeeded"


class LogCleaner:
    """Deletes stale *.log files and rotates the maintenance log."""

    def __init__(
        self,
        logs_dir: Path,
        active_log: Path,
        retention_days: int = 30,
        rotate_bytes: int = 10 * 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ):
        self.logs_dir = Path(logs_dir)
        self.active_log = Path(active_log)
        self.retention_days = retention_days
        self.rotate_bytes = rotate_bytes
        self._clock = clock

    def clean(self) -> str:
        cutoff = self._clock() - self.retention_days * 86400
        removed = 0
        if self.logs_dir.is_dir():
            for path in self.logs_dir.rglob("*.log"):
                try:
                    if path.is_file() and path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except OSError as e:
                    logger.warning(f"Cannot remove old log {path}: {e}")

        rotated = False
        if self.active_log.is_file() and self.active_log.stat().st_size > self.rotate_bytes:
            self.active_log.replace(self.active_log.with_name(self.active_log.name + ".old"))
            self.active_log.touch()
            rotated = True
            logger.info("Maintenance log rotated by size")

        detail = f"removed {removed} old log file(s)" + (", rotated maintenance log" if rotated else "")
        logger.info(f"Log cleanup complete: {detail}")
        return detail


class MaintenanceRunner:
    """
    Runs maintenance modes and keeps the run markers current.

    The last-run marker is what lets a later invocation work out how long
    the host was off; the daily marker stops the full bundle from running
    twice on one date.
    """

    def __init__(
        self,
        config: HomeConfig,
        markers: Optional[MarkerStore] = None,
        dns: Optional[DnsUpdater] = None,
        verifier: Optional[HealthVerifier] = None,
        registry: Optional[StackRegistry] = None,
        cleaner: Optional[LogCleaner] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        network_probe: Optional[Callable[[], bool]] = None,
    ):
        self.config = config
        self.markers = markers or MarkerStore(config.logs_dir)
        self.dns = dns or DnsUpdater(config)
        self.verifier = verifier or HealthVerifier(ComposeRuntime(), settle_delay=0)
        self.registry = registry or StackRegistry(config.docker_dir, config.manifest_names)
        self.cleaner = cleaner or LogCleaner(
            config.logs_dir,
            config.maintenance_log,
            retention_days=config.log_retention_days,
            rotate_bytes=config.log_rotate_bytes,
            clock=clock,
        )
        self._clock = clock
        self._sleep = sleep
        self._network_probe = network_probe or self._default_network_probe

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _dns_refresh(self) -> str:
        report = self.dns.update()
        if not report.ok:
            failed = ", ".join(r.name for r in report.records if not r.ok)
            raise HomestackError(f"DNS records failed: {failed}")
        return report.summary()

    def _health_sweep(self) -> str:
        sweep = self.verifier.sweep(self.registry.discover())
        if not sweep.ok:
            raise HomestackError(sweep.summary())
        return sweep.summary()

    def run_action(self, action: Action) -> ActionResult:
        """Run one action; failures are captured, never raised."""
        handlers = {
            Action.DNS_REFRESH: self._dns_refresh,
            Action.LOG_CLEANUP: self.cleaner.clean,
            Action.HEALTH_SWEEP: self._health_sweep,
        }
        logger.info(f"Running {action.value}")
        try:
            detail = handlers[action]()
        except (HomestackError, OSError) as e:
            logger.error(f"{action.value} failed: {e}")
            return ActionResult(action, ok=False, detail=str(e))
        return ActionResult(action, ok=True, detail=detail)

    def _run_actions(self, report: MaintenanceReport, actions: Sequence[Action]) -> None:
        for action in actions:
            report.actions.append(self.run_action(action))

    def _touch_last_run(self) -> None:
        with self.markers.lock():
            self.markers.touch_last_run(self._clock())

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def hours_since_last_run(self) -> int:
        """Whole hours since the last tick; partial hours are dropped."""
        return int(self._clock() - self.markers.last_run()) // 3600

    def recover(self) -> MaintenanceReport:
        """Replay missed work in proportion to the time since the last tick."""
        hours = self.hours_since_last_run()
        report = MaintenanceReport(mode="recover", hours_since=hours)
        logger.info(f"Hours since last run: {hours}")

        actions = recovery_actions(hours)
        if actions:
            logger.info(f"Recovering after {hours}h: {', '.join(a.value for a in actions)}")
            self._run_actions(report, actions)
        else:
            logger.info("System running normally, nothing to recover")

        self._touch_last_run()
        return report

    def daily(self) -> MaintenanceReport:
        """Full bundle once per calendar date; later calls only refresh the run marker."""
        today = datetime.fromtimestamp(self._clock()).strftime("%Y%m%d")
        report = MaintenanceReport(mode="daily")

        if self.markers.daily_marker() == today:
            report.skipped = True
            report.message = f"daily maintenance already done for {today}"
            logger.debug(report.message)
            self._touch_last_run()
            return report

        logger.info(f"Running daily maintenance for {today}")
        self._run_actions(report, ACTION_ORDER)
        with self.markers.lock():
            self.markers.mark_daily(today)
            self.markers.touch_last_run(self._clock())
        logger.info(f"Daily maintenance completed for {today}")
        return report

    def _default_network_probe(self) -> bool:
        try:
            with socket.create_connection(
                (self.config.network_probe_host, self.config.network_probe_port), timeout=3
            ):
                return True
        except OSError:
            return False

    def wait_for_network(self) -> bool:
        """Poll until the network answers or the timeout elapses."""
        waited = 0.0
        while not self._network_probe():
            if waited >= self.config.network_wait_timeout:
                return False
            self._sleep(self.config.network_wait_interval)
            waited += self.config.network_wait_interval
            logger.info(f"Waiting for network connectivity... ({waited:.0f}s)")
        return True

    def startup(self) -> MaintenanceReport:
        """Boot-time entry: wait for the network, then recover."""
        logger.info("Starting boot-time recovery")
        if not self.wait_for_network():
            message = f"no network after {self.config.network_wait_timeout:.0f}s"
            logger.error(message)
            return MaintenanceReport(mode="startup", failed=True, message=message)

        logger.info("Network connectivity confirmed")
        report = self.recover()
        report.mode = "startup"
        logger.info("Boot-time recovery completed")
        return report

    def dns_only(self) -> MaintenanceReport:
        report = MaintenanceReport(mode="dns-only")
        self._run_actions(report, [Action.DNS_REFRESH])
        self._touch_last_run()
        return report

    def check_only(self) -> MaintenanceReport:
        report = MaintenanceReport(mode="check-only")
        self._run_actions(report, [Action.HEALTH_SWEEP])
        self._touch_last_run()
        return report

    def cleanup_only(self) -> MaintenanceReport:
        report = MaintenanceReport(mode="cleanup-only")
        self._run_actions(report, [Action.LOG_CLEANUP])
        return report

    def run_now(self, full: bool = False) -> MaintenanceReport:
        """Manual maintenance: DNS and health, plus log cleanup when ``full``."""
        report = MaintenanceReport(mode="full" if full else "run-now")
        actions = ACTION_ORDER if full else [Action.DNS_REFRESH, Action.HEALTH_SWEEP]
        self._run_actions(report, actions)
        self._touch_last_run()
        return report
