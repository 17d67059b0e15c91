from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Job:
    path: Path

    @property
    def id(self) -> str:
        return str(self.path)

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class JobResult:
    file: Path
    file_name: str
    output_file: Path
    duration: float | None
    processing_time: float
    speed_ratio: float | None
    text: str
    language: str | None
    timestamp: str


@dataclass(frozen=True)
class JobError:
    file: Path
    error: str
    timestamp: str


@dataclass(frozen=True)
class BatchReport:
    results: tuple[JobResult, ...]
    errors: tuple[JobError, ...]
    duration: float
    total_files: int

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def average_speed_ratio(self) -> float | None:
        ratios = [r.speed_ratio for r in self.results if r.speed_ratio is not None]
        if not ratios:
            return None
        return sum(ratios) / len(ratios)
