"""
Installation of homestack's recurring jobs into the user's crontab.

Every line homestack writes carries MARKER, so reinstalling replaces the
previous block and unrelated entries are left exactly as they were.
"""

import shlex
import subprocess
import sys
import logging
from pathlib import Path
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, List, Sequence

from .errors import ScheduleError
from .state import atomic_write_text

logger = logging.getLogger(__name__)


MARKER = "# homestack-managed"


@dataclass(frozen=True)
class ScheduleEntry:
    """One recurring job."""
    cadence: str
    command: str
    description: str = ""

    def render(self) -> str:
        return f"{self.cadence} {self.command} {MARKER}"


def maintenance_command(project_root: Path, mode: str) -> str:
    """Shell command that runs one maintenance mode for a project root."""
    parts = [sys.executable, "-m", "homestack", "--root", str(project_root), "maintenance", mode]
    return " ".join(shlex.quote(p) for p in parts) + " >/dev/null 2>&1"


def default_entries(project_root: Path) -> List[ScheduleEntry]:
    def cmd(mode: str) -> str:
        return maintenance_command(project_root, mode)

    return [
        ScheduleEntry("@reboot", f"sleep 60 && {cmd('--startup')}", "recover missed work at boot"),
        ScheduleEntry("*/30 * * * *", cmd("--dns-only"), "DNS refresh every 30 minutes"),
        ScheduleEntry("*/5 * * * *", cmd("--check-only"), "service check every 5 minutes"),
        ScheduleEntry("0 3 * * 0", cmd("--cleanup-only"), "log cleanup Sundays 03:00"),
        ScheduleEntry("0 2 * * *", cmd("--daily"), "daily maintenance 02:00"),
    ]


def strip_managed(table: str) -> List[str]:
    """Lines of ``table`` that do not belong to homestack."""
    lines = table.splitlines()
    kept = []
    for i, line in enumerate(lines):
        if MARKER in line:
            continue
        # Blank separator merge_table writes in front of the block
        if not line.strip() and i + 1 < len(lines) and MARKER in lines[i + 1]:
            continue
        kept.append(line)
    return kept


def render_block(entries: Sequence[ScheduleEntry]) -> List[str]:
    lines = [f"# homestack: DNS refresh and stack maintenance {MARKER}"]
    for entry in entries:
        lines.append(entry.render())
    return lines


def merge_table(table: str, entries: Sequence[ScheduleEntry]) -> str:
    """Existing table with homestack's block replaced by ``entries``."""
    foreign = strip_managed(table)
    lines = list(foreign)
    if lines:
        lines.append("")
    lines.extend(render_block(entries))
    return "\n".join(lines) + "\n"


class CrontabBackend:
    """Reads and writes the current user's crontab via the crontab CLI."""

    def __init__(self, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self._runner = runner

    def read(self) -> str:
        try:
            result = self._runner(["crontab", "-l"], capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ScheduleError("crontab is not installed") from e
        if result.returncode != 0:
            # "no crontab for <user>"
            return ""
        return result.stdout

    def write(self, table: str) -> None:
        result = self._runner(["crontab", "-"], input=table, capture_output=True, text=True)
        if result.returncode != 0:
            raise ScheduleError(f"crontab rejected the table: {result.stderr.strip()}")

    def clear(self) -> None:
        self._runner(["crontab", "-r"], capture_output=True, text=True)


class ScheduleInstaller:
    """Idempotent install/uninstall of homestack's crontab entries."""

    def __init__(
        self,
        entries: Sequence[ScheduleEntry],
        backend: Optional[CrontabBackend] = None,
        backup_dir: Optional[Path] = None,
    ):
        self.entries = list(entries)
        self.backend = backend or CrontabBackend()
        self.backup_dir = backup_dir

    def _backup(self, table: str) -> Optional[Path]:
        if self.backup_dir is None or not table:
            return None
        path = Path(self.backup_dir) / f"crontab_backup_{datetime.now():%Y%m%d_%H%M%S}"
        atomic_write_text(path, table)
        logger.info(f"Crontab backed up to {path}")
        return path

    def install(self) -> str:
        """Replace homestack's entries with the current set. Returns the new table."""
        current = self.backend.read()
        self._backup(current)
        table = merge_table(current, self.entries)
        self.backend.write(table)
        logger.info(f"Installed {len(self.entries)} scheduled jobs")
        return table

    def uninstall(self) -> str:
        """Remove homestack's entries, clearing the table if nothing else is left."""
        remaining = strip_managed(self.backend.read())
        if not any(line.strip() for line in remaining):
            self.backend.clear()
            logger.info("Crontab cleared")
            return ""
        table = "\n".join(remaining) + "\n"
        self.backend.write(table)
        logger.info("Removed scheduled jobs")
        return table

    def installed_entries(self) -> List[str]:
        """homestack lines currently in the table."""
        return [line for line in self.backend.read().splitlines() if MARKER in line]

    def is_installed(self) -> bool:
        return bool(self.installed_entries())
