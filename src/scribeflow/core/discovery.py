from __future__ import annotations

import glob
from pathlib import Path
from typing import Iterable

from scribeflow.schemas.job import Job

DEFAULT_AUDIO_EXTENSIONS: tuple[str, ...] = (
    ".mp3",
    ".wav",
    ".m4a",
    ".mp4",
    ".mpeg",
    ".mpga",
    ".webm",
    ".ogg",
    ".flac",
)
_GLOB_CHARS = frozenset("*?[")


class DiscoveryError(ValueError):
    """Input root or pattern cannot be enumerated."""


def _normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    return frozenset(
        ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions
    )


def _unique_jobs(paths: Iterable[Path]) -> list[Job]:
    seen: set[Path] = set()
    for path in paths:
        seen.add(path.resolve())
    return [Job(path=path) for path in sorted(seen)]


def discover_jobs(
    root: Path,
    extensions: Iterable[str] = DEFAULT_AUDIO_EXTENSIONS,
) -> list[Job]:
    """Recursively collect audio files under `root`, sorted and deduplicated.

    An empty result is a valid outcome, not an error.
    """
    if not root.exists():
        raise DiscoveryError(f"Input directory not found: {root}")
    if not root.is_dir():
        raise DiscoveryError(f"Input path is not a directory: {root}")
    allowed = _normalize_extensions(extensions)
    return _unique_jobs(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() in allowed
    )


def expand_inputs(
    target: str,
    extensions: Iterable[str] = DEFAULT_AUDIO_EXTENSIONS,
) -> list[Job]:
    """Resolve a file, directory or glob pattern into jobs."""
    if any(char in target for char in _GLOB_CHARS):
        return _unique_jobs(
            Path(match) for match in glob.glob(target, recursive=True) if Path(match).is_file()
        )
    path = Path(target).expanduser()
    if path.is_dir():
        return discover_jobs(path, extensions)
    if path.is_file():
        return [Job(path=path.resolve())]
    raise DiscoveryError(f"File not found: {target}")
