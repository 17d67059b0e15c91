from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Protocol

from scribeflow.infra.storage import ensure_directory
from scribeflow.schemas.audio import AudioMetadata

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30.0


class AudioProber(Protocol):
    def probe(self, input_path: Path) -> AudioMetadata | None:
        ...


def get_binary_path(command: str) -> Path | None:
    path = shutil.which(command)
    return Path(path) if path else None


def get_ffmpeg_version(ffmpeg_bin: str = "ffmpeg") -> str | None:
    ffmpeg = get_binary_path(ffmpeg_bin)
    if ffmpeg is None:
        return None
    proc = subprocess.run(
        [str(ffmpeg), "-version"],
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0 or not proc.stdout:
        return None
    return proc.stdout.splitlines()[0].strip()


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(raw: str) -> AudioMetadata | None:
    """Build metadata from `ffprobe -print_format json` output."""
    try:
        info = json.loads(raw)
        fmt = info["format"]
        duration = float(fmt["duration"])
    except (ValueError, KeyError, TypeError):
        return None
    audio_stream: dict[str, Any] = next(
        (s for s in info.get("streams", []) if s.get("codec_type") == "audio"),
        {},
    )
    return AudioMetadata(
        duration_seconds=duration,
        codec=audio_stream.get("codec_name"),
        sample_rate=_to_int(audio_stream.get("sample_rate")),
        channels=_to_int(audio_stream.get("channels")),
        bitrate=_to_int(fmt.get("bit_rate")),
        size_bytes=_to_int(fmt.get("size")),
    )


def probe_audio(
    input_path: Path,
    *,
    ffprobe_bin: str = "ffprobe",
    timeout: float | None = PROBE_TIMEOUT_SECONDS,
) -> AudioMetadata | None:
    ffprobe = get_binary_path(ffprobe_bin)
    if ffprobe is None:
        logger.debug("ffprobe not found; metadata unavailable for %s", input_path)
        return None
    try:
        proc = subprocess.run(
            [
                str(ffprobe),
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                str(input_path),
            ],
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except OSError as exc:
        logger.warning("ffprobe failed for %s: %s", input_path, exc)
        return None
    except subprocess.TimeoutExpired:
        logger.warning("ffprobe timed out after %ss for %s", timeout, input_path)
        return None
    if proc.returncode != 0 or not proc.stdout:
        logger.debug("ffprobe exited with %s for %s", proc.returncode, input_path)
        return None
    return parse_probe_output(proc.stdout)


class FfprobeAudioProber:
    def __init__(
        self, ffprobe_bin: str = "ffprobe", timeout: float | None = PROBE_TIMEOUT_SECONDS
    ) -> None:
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    def probe(self, input_path: Path) -> AudioMetadata | None:
        return probe_audio(input_path, ffprobe_bin=self.ffprobe_bin, timeout=self.timeout)


def split_audio(
    input_path: Path,
    *,
    chunk_seconds: int = 300,
    output_dir: Path | None = None,
    ffmpeg_bin: str = "ffmpeg",
) -> list[Path]:
    """Cut an audio file into stream-copied chunks of `chunk_seconds`."""
    if chunk_seconds <= 0:
        raise ValueError(f"chunk_seconds must be > 0, got {chunk_seconds}")
    ffmpeg = get_binary_path(ffmpeg_bin)
    if ffmpeg is None:
        raise RuntimeError("ffmpeg not found in PATH.")
    chunk_dir = ensure_directory(output_dir or input_path.parent / "chunks")
    stem = input_path.stem
    pattern = chunk_dir / f"{stem}_%03d{input_path.suffix}"
    proc = subprocess.run(
        [
            str(ffmpeg),
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(input_path),
            "-f",
            "segment",
            "-segment_time",
            str(chunk_seconds),
            "-c",
            "copy",
            str(pattern),
        ],
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0:
        detail = proc.stderr.strip() or "unknown ffmpeg error"
        raise RuntimeError(f"Failed to split audio: {detail}")
    chunks = sorted(
        path
        for path in chunk_dir.iterdir()
        if path.is_file() and path.name.startswith(f"{stem}_")
    )
    logger.info("Split %s into %d chunks", input_path.name, len(chunks))
    return chunks
