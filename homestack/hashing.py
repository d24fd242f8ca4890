"""
Content fingerprints for drift detection.

A fingerprint is a SHA-256 digest over every regular file below a set of
paths. Files are ordered by a key made of the root's name and the file's
relative path, so the result does not depend on filesystem enumeration
order or on where the project lives on disk.
"""

import os
import hashlib
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)


@dataclass
class FingerprintResult:
    """Digest plus what went into it."""
    digest: str
    files: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _key(root: Path, path: Path) -> str:
    rel = path.relative_to(root).as_posix()
    return root.name if rel == "." else f"{root.name}/{rel}"


def _collect(root: Path, skipped: List[str]) -> List[Tuple[str, Path]]:
    if root.is_file():
        return [(root.name, root)]
    if not root.is_dir():
        return []

    def unreadable(error: OSError):
        path = Path(error.filename) if error.filename else root
        logger.warning(f"Skipping unreadable directory {path}: {error.strerror or error}")
        skipped.append(_key(root, path))

    found = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=unreadable):
        dirnames.sort()
        for name in filenames:
            path = Path(dirpath) / name
            if not path.is_file():
                continue
            found.append((_key(root, path), path))
    return found


def compute_fingerprint(paths: Iterable[Path]) -> FingerprintResult:
    """
    Fingerprint the files under ``paths``.

    Missing paths contribute nothing. A file or directory that cannot be
    read is left out and reported in ``skipped`` instead of failing the
    whole digest.
    """
    result = FingerprintResult(digest="")
    entries: List[Tuple[str, Path]] = []
    for root in paths:
        entries.extend(_collect(Path(root), result.skipped))
    entries.sort(key=lambda item: item[0])

    digest = hashlib.sha256()
    for key, path in entries:
        try:
            with open(path, "rb") as f:
                content = f.read()
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            result.skipped.append(key)
            continue
        digest.update(key.encode("utf-8"))
        digest.update(b"\0")
        digest.update(str(len(content)).encode("ascii"))
        digest.update(b"\0")
        digest.update(content)
        result.files.append(key)

    result.digest = digest.hexdigest()
    return result


def fingerprint(paths: Iterable[Path]) -> str:
    """Return the hex digest for ``paths``."""
    return compute_fingerprint(paths).digest
