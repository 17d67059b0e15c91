from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from scribeflow.infra.language import normalize_language

MINIMUM_PYTHON: tuple[int, int] = (3, 10)
DEFAULT_MODEL = "base"
DEFAULT_OUTPUT_FORMAT = "json"
DEFAULT_OUTPUT_DIR = Path("./output")
SUPPORTED_OUTPUT_FORMATS: tuple[str, ...] = ("json", "txt", "srt", "vtt", "tsv")
SUPPORTED_TASKS: tuple[str, ...] = ("transcribe", "translate")
SUPPORTED_DEVICES: tuple[str, ...] = ("auto", "cpu", "cuda")
SUPPORTED_MODELS: tuple[str, ...] = (
    "tiny",
    "tiny.en",
    "base",
    "base.en",
    "small",
    "small.en",
    "medium",
    "medium.en",
    "large",
    "large-v1",
    "large-v2",
    "large-v3",
    "turbo",
)


@dataclass(frozen=True)
class AppConfig:
    whisper_bin: str
    ffmpeg_bin: str
    ffprobe_bin: str
    python_bin: str
    model: str
    language: str
    device: str
    output_format: str
    output_dir: Path
    log_level: str
    log_file: Path | None


@dataclass(frozen=True)
class BatchConfig:
    output_dir: Path
    concurrency: int = 1
    continue_on_error: bool = True
    job_timeout: float | None = None
    output_format: str = DEFAULT_OUTPUT_FORMAT


def python_version_ok(version: tuple[int, int] | None = None) -> bool:
    current = version or (sys.version_info.major, sys.version_info.minor)
    return current >= MINIMUM_PYTHON


def normalize_model(value: str) -> str:
    model = value.strip().lower()
    if model not in SUPPORTED_MODELS:
        raise ValueError(
            f"Unsupported model '{value}'. Allowed: {', '.join(SUPPORTED_MODELS)}"
        )
    return model


def normalize_device(value: str) -> str:
    device = value.strip().lower()
    if device not in SUPPORTED_DEVICES:
        raise ValueError(
            f"Unsupported device '{value}'. Allowed: {', '.join(SUPPORTED_DEVICES)}"
        )
    return device


def normalize_output_format(value: str) -> str:
    fmt = value.strip().lower()
    if fmt not in SUPPORTED_OUTPUT_FORMATS:
        raise ValueError(
            f"Unsupported output format '{value}'. Allowed: {list(SUPPORTED_OUTPUT_FORMATS)}"
        )
    return fmt


def normalize_task(value: str) -> str:
    task = value.strip().lower()
    if task not in SUPPORTED_TASKS:
        raise ValueError(f"Unsupported task '{value}'. Allowed: {list(SUPPORTED_TASKS)}")
    return task


def normalize_concurrency(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"concurrency must be a positive integer, got {value!r}")
    return value


def normalize_job_timeout(value: float | None) -> float | None:
    if value is None:
        return None
    if value <= 0:
        raise ValueError(f"job_timeout must be > 0, got {value}")
    return float(value)


def normalize_log_level(value: str) -> str:
    level = value.strip().upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"Unsupported log level '{value}'.")
    return level


def resolve_output_dir(custom_path: Path | None = None) -> Path:
    if custom_path is not None:
        return custom_path.expanduser()
    env_path = os.getenv("SCRIBEFLOW_OUTPUT_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_OUTPUT_DIR


def resolve_log_file(custom_path: Path | None = None) -> Path | None:
    if custom_path is not None:
        return custom_path.expanduser()
    env_path = os.getenv("SCRIBEFLOW_LOG_FILE")
    return Path(env_path).expanduser() if env_path else None


def build_app_config(
    *,
    model: str = DEFAULT_MODEL,
    language: str = "auto",
    device: str = "cpu",
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    output_dir: Path | None = None,
    log_level: str | None = None,
    log_file: Path | None = None,
) -> AppConfig:
    return AppConfig(
        whisper_bin=os.getenv("SCRIBEFLOW_WHISPER_BIN", "whisper"),
        ffmpeg_bin=os.getenv("SCRIBEFLOW_FFMPEG_BIN", "ffmpeg"),
        ffprobe_bin=os.getenv("SCRIBEFLOW_FFPROBE_BIN", "ffprobe"),
        python_bin=os.getenv("SCRIBEFLOW_PYTHON_BIN", sys.executable),
        model=normalize_model(model),
        language=normalize_language(language),
        device=normalize_device(device),
        output_format=normalize_output_format(output_format),
        output_dir=resolve_output_dir(output_dir),
        log_level=normalize_log_level(
            log_level or os.getenv("SCRIBEFLOW_LOG_LEVEL", "INFO")
        ),
        log_file=resolve_log_file(log_file),
    )


def build_batch_config(
    *,
    output_dir: Path,
    concurrency: int = 1,
    continue_on_error: bool = True,
    job_timeout: float | None = None,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
) -> BatchConfig:
    return BatchConfig(
        output_dir=output_dir,
        concurrency=normalize_concurrency(concurrency),
        continue_on_error=continue_on_error,
        job_timeout=normalize_job_timeout(job_timeout),
        output_format=normalize_output_format(output_format),
    )
