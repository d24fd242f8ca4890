"""
Persistent state for deployments and maintenance runs.

Handles:
- The deployment state file (per-stack fingerprints and timestamps)
- Maintenance markers (last run, daily completion)
- Atomic replacement of state files
- Advisory locking around read-modify-write sequences
"""

import os
import fcntl
import logging
import tempfile
from contextlib import contextmanager
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Iterator

logger = logging.getLogger(__name__)


CONFIG_SOURCES_KEY = "config_sources_hash"
LAST_DEPLOYMENT_KEY = "last_deployment"
LAST_DEPLOYMENT_DATE_KEY = "last_deployment_date"

HASH_SUFFIX = "_hash"
DEPLOYED_SUFFIX = "_last_deployment"
DEPLOYED_DATE_SUFFIX = "_last_deployment_date"

GLOBAL_KEYS = (CONFIG_SOURCES_KEY, LAST_DEPLOYMENT_KEY, LAST_DEPLOYMENT_DATE_KEY)


def human_timestamp(epoch: float) -> str:
    """Format an epoch the way `date` prints it."""
    return datetime.fromtimestamp(epoch).astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Replace ``path`` with ``text`` so readers see either old or new content."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


@contextmanager
def state_lock(path: Path) -> Iterator[Path]:
    """
    Hold an exclusive advisory lock on ``<path>.lock``.

    Blocks until any other holder (a manual run or a cron tick) releases it.
    """
    lock_path = Path(f"{path}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield lock_path
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@dataclass
class DeploymentRecord:
    """Last successful deployment of one stack."""
    stack_name: str
    fingerprint: str
    deployed_at_epoch: int = 0
    deployed_at_human: str = ""


@dataclass
class DeploymentState:
    """Everything stored in the deployment state file."""
    records: Dict[str, DeploymentRecord] = field(default_factory=dict)
    config_sources_hash: str = ""
    last_deployment_epoch: int = 0
    last_deployment_human: str = ""
    extra: Dict[str, str] = field(default_factory=dict)

    def get_record(self, stack_name: str) -> Optional[DeploymentRecord]:
        return self.records.get(stack_name)

    def put_record(self, record: DeploymentRecord) -> None:
        self.records[record.stack_name] = record

    def mark_deployed(self, epoch: int) -> None:
        self.last_deployment_epoch = epoch
        self.last_deployment_human = human_timestamp(epoch)

    @classmethod
    def parse(cls, text: str) -> "DeploymentState":
        """Parse the key=value file format."""
        state = cls()
        raw: Dict[str, str] = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            raw[key.strip()] = value.strip()

        state.config_sources_hash = raw.pop(CONFIG_SOURCES_KEY, "")
        state.last_deployment_epoch = _to_int(raw.pop(LAST_DEPLOYMENT_KEY, "0"))
        state.last_deployment_human = raw.pop(LAST_DEPLOYMENT_DATE_KEY, "")

        # Longest suffix first: "_last_deployment_date" also ends in "_last_deployment"
        for key, value in raw.items():
            if key.endswith(DEPLOYED_DATE_SUFFIX):
                _record(state, key[:-len(DEPLOYED_DATE_SUFFIX)]).deployed_at_human = value
            elif key.endswith(DEPLOYED_SUFFIX):
                _record(state, key[:-len(DEPLOYED_SUFFIX)]).deployed_at_epoch = _to_int(value)
            elif key.endswith(HASH_SUFFIX):
                _record(state, key[:-len(HASH_SUFFIX)]).fingerprint = value
            else:
                state.extra[key] = value
        return state

    def render(self) -> str:
        """Serialize to the key=value file format."""
        lines = []
        for name in sorted(self.records):
            record = self.records[name]
            lines.append(f"{name}{HASH_SUFFIX}={record.fingerprint}")
            lines.append(f"{name}{DEPLOYED_SUFFIX}={record.deployed_at_epoch}")
            lines.append(f"{name}{DEPLOYED_DATE_SUFFIX}={record.deployed_at_human}")
        for key in sorted(self.extra):
            lines.append(f"{key}={self.extra[key]}")
        if self.config_sources_hash:
            lines.append(f"{CONFIG_SOURCES_KEY}={self.config_sources_hash}")
        if self.last_deployment_epoch:
            lines.append(f"{LAST_DEPLOYMENT_KEY}={self.last_deployment_epoch}")
            lines.append(f"{LAST_DEPLOYMENT_DATE_KEY}={self.last_deployment_human}")
        return "\n".join(lines) + "\n"


def _to_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _record(state: DeploymentState, name: str) -> DeploymentRecord:
    record = state.records.get(name)
    if record is None:
        record = DeploymentRecord(stack_name=name, fingerprint="")
        state.records[name] = record
    return record


class DeploymentStateStore:
    """
    File-backed store for DeploymentState.

    The file is created by the first save. Every save rewrites the whole
    file through an atomic replace.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> DeploymentState:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return DeploymentState()
        return DeploymentState.parse(text)

    def save(self, state: DeploymentState) -> None:
        atomic_write_text(self.path, state.render())
        logger.debug(f"Saved deployment state to {self.path}")

    def get_record(self, stack_name: str) -> Optional[DeploymentRecord]:
        return self.load().get_record(stack_name)

    def put_record(self, record: DeploymentRecord) -> None:
        state = self.load()
        state.put_record(record)
        self.save(state)

    def lock(self):
        return state_lock(self.path)


class MarkerStore:
    """Single-value maintenance markers kept in the logs directory."""

    LAST_RUN = "last_run"
    DAILY = "daily_marker"

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _read(self, name: str) -> str:
        try:
            return (self.directory / name).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""

    def _write(self, name: str, value: str) -> None:
        atomic_write_text(self.directory / name, f"{value}\n")

    def last_run(self) -> int:
        """Epoch of the last completed maintenance tick, 0 if never."""
        return _to_int(self._read(self.LAST_RUN))

    def touch_last_run(self, epoch: float) -> None:
        self._write(self.LAST_RUN, str(int(epoch)))

    def daily_marker(self) -> str:
        """Date (YYYYMMDD) the daily bundle last completed, '' if never."""
        return self._read(self.DAILY)

    def mark_daily(self, date: str) -> None:
        self._write(self.DAILY, date)

    def lock(self):
        return state_lock(self.directory / "maintenance")
