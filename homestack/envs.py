"""
Generation of per-stack .env files from the private configuration.

Each stack's file overlays, in order:
1. private/common.env
2. private/<stack>.env
3. private/<source>.env for every source mapped to the stack in
   config/stack-envs.conf

Later files win on key collisions. Generated files are rewritten whole.
"""

import logging
from pathlib import Path
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Iterable

from .config import HomeConfig, parse_env_file
from .registry import StackDescriptor
from .state import atomic_write_text

logger = logging.getLogger(__name__)


ENV_FILE_NAME = ".env"


@dataclass
class EnvFileResult:
    """Outcome of generating one stack's .env file."""
    stack: str
    path: Path
    sources: List[str] = field(default_factory=list)
    values: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def variables(self) -> int:
        return len(self.values)


def load_stack_mapping(path: Path) -> Dict[str, List[str]]:
    """
    Parse stack-envs.conf.

    Lines look like ``stack = source1, source2``. Blank lines and ``#``
    comments are ignored.
    """
    mapping: Dict[str, List[str]] = {}
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.warning(f"Stack env mapping not found: {path}")
        return mapping

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        stack, _, sources = line.partition("=")
        stack = stack.strip()
        if not stack:
            continue
        mapping[stack] = [s.strip() for s in sources.split(",") if s.strip()]
    return mapping


class EnvGenerator:
    """Builds derived .env files for stacks."""

    def __init__(self, config: HomeConfig):
        self.config = config
        self._mapping = None

    @property
    def private_dir(self) -> Path:
        return self.config.private_dir

    def available(self) -> bool:
        """Whether the private configuration directory is linked."""
        return self.private_dir.is_dir()

    def mapping(self) -> Dict[str, List[str]]:
        if self._mapping is None:
            self._mapping = load_stack_mapping(self.config.stack_envs_file)
        return self._mapping

    def build(self, stack_name: str) -> EnvFileResult:
        """Merge the variables for a stack without writing anything."""
        result = EnvFileResult(stack=stack_name, path=self.config.docker_dir / stack_name / ENV_FILE_NAME)
        merged: Dict[str, str] = {}

        layers = [("common", False), (stack_name, False)]
        layers.extend((source, True) for source in self.mapping().get(stack_name, []))

        for source, required in layers:
            path = self.private_dir / f"{source}.env"
            if not path.is_file():
                if required:
                    message = f"Secondary env source not found for {stack_name}: {source}.env"
                    logger.warning(message)
                    result.warnings.append(message)
                continue
            merged.update(parse_env_file(path))
            result.sources.append(source)

        result.values = merged
        return result

    def render(self, stack_name: str, merged: Dict[str, str]) -> str:
        header = [
            "# ======================================",
            "# Generated automatically by homestack",
            f"# Stack: {stack_name}",
            f"# Generated: {datetime.now().isoformat(timespec='seconds')}",
            "# DO NOT EDIT MANUALLY",
            "# ======================================",
            "",
        ]
        body = [f"{key}={value}" for key, value in merged.items()]
        return "\n".join(header + body) + "\n"

    def generate(self, stack_name: str) -> EnvFileResult:
        """Write docker/<stack>/.env."""
        result = self.build(stack_name)
        atomic_write_text(result.path, self.render(stack_name, result.values), mode=0o600)
        mapped = ", ".join(self.mapping().get(stack_name, [])) or "none"
        logger.info(f"Generated {result.path} ({result.variables} variables, secondary sources: {mapped})")
        return result

    def generate_all(self, stacks: Iterable[StackDescriptor]) -> List[EnvFileResult]:
        return [self.generate(stack.name) for stack in stacks]
