"""
Configuration management for homestack.

Handles:
- Project layout (stacks, config sources, state and log locations)
- Optional YAML overrides from homestack.yaml
- Parsing of KEY=VALUE environment files from the private config directory
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields
from typing import Optional, Dict, List, Any
import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


CONFIG_FILE_NAME = "homestack.yaml"
ROOT_ENV_VAR = "HOMESTACK_ROOT"

# Recognised compose manifests, in lookup order
MANIFEST_NAMES = (
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
)

IP_PROVIDERS = (
    "https://api.ipify.org",
    "https://ipinfo.io/ip",
    "https://ifconfig.me",
    "https://api.my-ip.io/ip",
)


@dataclass
class HomeConfig:
    """Main configuration for a homestack project root."""

    project_root: Path = field(default_factory=Path.cwd)

    # Directory paths, derived from project_root when left unset
    docker_dir: Optional[Path] = None
    config_dir: Optional[Path] = None
    logs_dir: Optional[Path] = None
    state_file: Optional[Path] = None

    manifest_names: List[str] = field(default_factory=lambda: list(MANIFEST_NAMES))
    networks: List[str] = field(default_factory=list)

    # Deployment timings (seconds)
    convergence_delay: float = 2.0
    health_settle_delay: float = 3.0

    # Maintenance
    network_wait_timeout: float = 60.0
    network_wait_interval: float = 5.0
    network_probe_host: str = "8.8.8.8"
    network_probe_port: int = 53
    log_retention_days: int = 30
    log_rotate_bytes: int = 10 * 1024 * 1024

    # DNS
    ip_providers: List[str] = field(default_factory=lambda: list(IP_PROVIDERS))
    dns_records: List[str] = field(default_factory=lambda: ["@", "*"])
    dns_ttl: int = 300
    http_timeout: float = 10.0

    def __post_init__(self):
        self.project_root = Path(self.project_root).expanduser().resolve()
        if self.docker_dir is None:
            self.docker_dir = self.project_root / "docker"
        if self.config_dir is None:
            self.config_dir = self.project_root / "config"
        if self.logs_dir is None:
            self.logs_dir = self.project_root / "data" / "logs"
        if self.state_file is None:
            self.state_file = self.project_root / ".deployment-state"
        self.docker_dir = Path(self.docker_dir)
        self.config_dir = Path(self.config_dir)
        self.logs_dir = Path(self.logs_dir)
        self.state_file = Path(self.state_file)

    @property
    def templates_dir(self) -> Path:
        return self.config_dir / "templates"

    @property
    def stack_envs_file(self) -> Path:
        return self.config_dir / "stack-envs.conf"

    @property
    def private_dir(self) -> Path:
        return self.config_dir / "private"

    @property
    def maintenance_log(self) -> Path:
        return self.logs_dir / "maintenance.log"

    @property
    def deployment_log(self) -> Path:
        return self.project_root / "deployment.log"

    def config_source_paths(self) -> List[Path]:
        """Paths whose contents decide whether derived .env files are stale."""
        paths = [self.templates_dir, self.stack_envs_file]
        if self.private_dir.exists():
            paths.append(self.private_dir)
        return paths

    def private_env(self, name: str) -> Dict[str, str]:
        """Read config/private/<name>.env, empty if it does not exist."""
        return parse_env_file(self.private_dir / f"{name}.env")

    def shared_networks(self) -> List[str]:
        """Networks every stack expects to exist before deployment."""
        if self.networks:
            return list(self.networks)
        proxy = self.private_env("common").get("PROXY_NETWORK", "proxy")
        return [proxy]

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []
        if not self.docker_dir.is_dir():
            issues.append(f"Stacks directory does not exist: {self.docker_dir}")
        if not self.private_dir.is_dir():
            issues.append(
                f"Private config directory not linked: {self.private_dir}"
            )
        if self.network_wait_interval <= 0:
            issues.append("network_wait_interval must be positive")
        return issues

    @classmethod
    def load(cls, root: Optional[Path] = None, path: Optional[Path] = None) -> "HomeConfig":
        """
        Build configuration for a project root.

        The root is taken from the argument, then HOMESTACK_ROOT, then the
        working directory. Fields in <root>/homestack.yaml (or an explicit
        path) override the defaults.
        """
        if root is None:
            root = Path(os.environ.get(ROOT_ENV_VAR) or Path.cwd())
        root = Path(root).expanduser().resolve()

        if path is None:
            path = root / CONFIG_FILE_NAME
            if not path.exists():
                return cls(project_root=root)

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings in {path}: {', '.join(unknown)}")

        overrides: Dict[str, Any] = {}
        for key, value in data.items():
            if key.endswith("_dir") or key == "state_file":
                value = root / Path(value).expanduser()
            overrides[key] = value
        overrides.pop("project_root", None)
        logger.debug(f"Loaded settings from {path}: {sorted(overrides)}")
        return cls(project_root=root, **overrides)


def parse_env_lines(lines) -> Dict[str, str]:
    """Parse KEY=VALUE lines; comments, blanks and malformed lines are skipped."""
    values: Dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        values[key] = value.strip()
    return values


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parse an env file, returning an empty mapping if it is missing."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    return parse_env_lines(text.splitlines())
