from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def format_duration(seconds: float) -> str:
    """Render seconds as `1h 2m 3s`, `4m 5s` or `6s`."""
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_file_size(size_bytes: int) -> str:
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {_SIZE_UNITS[unit_index]}"


@dataclass(frozen=True)
class AudioMetadata:
    duration_seconds: float
    codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    bitrate: int | None = None
    size_bytes: int | None = None

    @property
    def duration(self) -> str:
        return format_duration(self.duration_seconds)

    @property
    def size(self) -> str | None:
        if self.size_bytes is None:
            return None
        return format_file_size(self.size_bytes)

    def to_dict(self) -> dict[str, object]:
        return {
            "duration": self.duration,
            "durationSeconds": self.duration_seconds,
            "codec": self.codec,
            "sampleRate": self.sample_rate,
            "channels": self.channels,
            "bitrate": self.bitrate,
            "size": self.size_bytes,
            "sizeFormatted": self.size,
        }


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class TranscriptResult:
    output_path: Path
    text: str = ""
    language: str | None = None
    segments: tuple[TranscriptSegment, ...] = ()
