from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

from scribeflow.infra.config import AppConfig, normalize_output_format, normalize_task
from scribeflow.infra.device import choose_device, detect_available_devices
from scribeflow.infra.language import is_auto
from scribeflow.infra.storage import ensure_directory
from scribeflow.schemas.audio import TranscriptResult, TranscriptSegment

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 5


class TranscriptionError(RuntimeError):
    """The external transcription run failed or produced unreadable output."""


@dataclass(frozen=True)
class ModelInfo:
    name: str
    size: str
    speed: str
    accuracy: str


AVAILABLE_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(name="tiny", size="39 MB", speed="Fastest", accuracy="Lowest"),
    ModelInfo(name="base", size="74 MB", speed="Fast", accuracy="Good"),
    ModelInfo(name="small", size="244 MB", speed="Medium", accuracy="Better"),
    ModelInfo(name="medium", size="769 MB", speed="Slow", accuracy="Great"),
    ModelInfo(name="large", size="1550 MB", speed="Slowest", accuracy="Best"),
)


@dataclass(frozen=True)
class TranscribeOptions:
    output_dir: Path
    model: str = "base"
    language: str = "auto"
    task: str = "transcribe"
    output_format: str = "json"
    device: str = "cpu"
    timestamps: bool = True
    word_timestamps: bool = False
    verbose: bool = False
    timeout: float | None = None


class Transcriber(Protocol):
    def transcribe(self, input_path: Path, options: TranscribeOptions) -> TranscriptResult:
        ...


def options_from_config(config: AppConfig, **overrides: Any) -> TranscribeOptions:
    options = TranscribeOptions(
        output_dir=config.output_dir,
        model=config.model,
        language=config.language,
        output_format=config.output_format,
        device=config.device,
    )
    return replace(options, **overrides) if overrides else options


def build_whisper_command(
    whisper_bin: str, input_path: Path, options: TranscribeOptions
) -> list[str]:
    device = choose_device(options.device, detect_available_devices())
    command = [
        whisper_bin,
        str(input_path),
        "--model",
        options.model,
        "--output_format",
        normalize_output_format(options.output_format),
        "--output_dir",
        str(options.output_dir),
        "--task",
        normalize_task(options.task),
        "--device",
        device,
        "--verbose",
        str(options.verbose),
    ]
    if not is_auto(options.language):
        command += ["--language", options.language]
    if device == "cpu":
        command += ["--fp16", "False"]
    if options.word_timestamps:
        command += ["--word_timestamps", "True"]
    return command


def artifact_path(input_path: Path, output_dir: Path, output_format: str) -> Path:
    return output_dir / f"{input_path.stem}.{output_format}"


def parse_whisper_json(payload: dict[str, Any], output_path: Path, *, timestamps: bool = True) -> TranscriptResult:
    segments: tuple[TranscriptSegment, ...] = ()
    if timestamps:
        segments = tuple(
            TranscriptSegment(
                start=float(seg.get("start", 0.0)),
                end=float(seg.get("end", 0.0)),
                text=str(seg.get("text", "")).strip(),
            )
            for seg in payload.get("segments") or []
        )
    return TranscriptResult(
        output_path=output_path,
        text=str(payload.get("text") or "").strip(),
        language=payload.get("language"),
        segments=segments,
    )


def _stderr_tail(stderr: str | None) -> str:
    lines = [line for line in (stderr or "").splitlines() if line.strip()]
    return "\n".join(lines[-STDERR_TAIL_LINES:]) or "unknown whisper error"


class WhisperCliTranscriber:
    """Runs the `whisper` command-line tool as a subprocess."""

    def __init__(self, whisper_bin: str = "whisper") -> None:
        self.whisper_bin = whisper_bin

    def transcribe(self, input_path: Path, options: TranscribeOptions) -> TranscriptResult:
        if not input_path.is_file():
            raise TranscriptionError(f"Audio file not found: {input_path}")
        ensure_directory(options.output_dir)
        command = build_whisper_command(self.whisper_bin, input_path, options)
        logger.debug("Executing: %s", " ".join(command))
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=options.timeout,
            )
        except FileNotFoundError as exc:
            raise TranscriptionError(
                f"whisper executable '{self.whisper_bin}' not found. "
                "Install it with `pip install openai-whisper`."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise TranscriptionError(
                f"Transcription timed out after {options.timeout:g}s: {input_path.name}"
            ) from exc
        if proc.returncode != 0:
            raise TranscriptionError(f"Transcription error: {_stderr_tail(proc.stderr)}")

        output_path = artifact_path(input_path, options.output_dir, options.output_format)
        if options.output_format != "json":
            return TranscriptResult(output_path=output_path)
        try:
            payload = json.loads(output_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise TranscriptionError(
                f"Could not read whisper output {output_path}: {exc}"
            ) from exc
        return parse_whisper_json(payload, output_path, timestamps=options.timestamps)

    def translate(self, input_path: Path, options: TranscribeOptions) -> TranscriptResult:
        return self.transcribe(input_path, replace(options, task="translate"))


def download_model(model_name: str, *, python_bin: str) -> None:
    """Fetch model weights into the whisper cache by loading the model once."""
    proc = subprocess.run(
        [python_bin, "-c", f"import whisper; whisper.load_model({model_name!r})"],
        capture_output=True,
        text=True,
        check=False,
    )
    if proc.returncode != 0:
        raise RuntimeError(f"Failed to download model {model_name}: {_stderr_tail(proc.stderr)}")
    logger.info("Model %s downloaded", model_name)
