"""
Discovery of deployable stacks.

A stack is a directory under the stacks root that directly contains a
compose manifest. Nothing else about the manifest is validated here.
"""

import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional, List, Iterable, Sequence

from .config import MANIFEST_NAMES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StackDescriptor:
    """A stack found on disk."""
    name: str
    path: Path
    manifest: Optional[Path] = None

    @property
    def manifest_present(self) -> bool:
        return self.manifest is not None


class StackRegistry:
    """Finds stacks under a directory, in name order."""

    def __init__(self, docker_dir: Path, manifest_names: Sequence[str] = MANIFEST_NAMES):
        self.docker_dir = Path(docker_dir)
        self.manifest_names = list(manifest_names)

    def _manifest_for(self, directory: Path) -> Optional[Path]:
        for name in self.manifest_names:
            candidate = directory / name
            if candidate.is_file():
                return candidate
        return None

    def discover(self) -> List[StackDescriptor]:
        """Return every stack with a manifest, sorted by name."""
        if not self.docker_dir.is_dir():
            logger.warning(f"Stacks directory not found: {self.docker_dir}")
            return []

        stacks = []
        for child in self.docker_dir.iterdir():
            if not child.is_dir():
                continue
            manifest = self._manifest_for(child)
            if manifest is None:
                logger.debug(f"Ignoring {child.name}: no compose manifest")
                continue
            stacks.append(StackDescriptor(name=child.name, path=child, manifest=manifest))
        return sorted(stacks, key=lambda s: s.name)

    def names(self) -> List[str]:
        return [s.name for s in self.discover()]

    def get(self, name: str) -> Optional[StackDescriptor]:
        for stack in self.discover():
            if stack.name == name:
                return stack
        return None

    def unknown(self, names: Iterable[str]) -> List[str]:
        """Names that do not match any discovered stack."""
        known = set(self.names())
        return sorted({n for n in names if n not in known})
