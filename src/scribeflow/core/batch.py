from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence, TypeVar

from scribeflow.core.report import build_report, compute_speed_ratio, save_report
from scribeflow.core.transcriber import TranscribeOptions, Transcriber
from scribeflow.infra.config import BatchConfig
from scribeflow.infra.ffmpeg import AudioProber
from scribeflow.infra.storage import ensure_directory
from scribeflow.schemas.audio import AudioMetadata
from scribeflow.schemas.job import BatchReport, Job, JobError, JobResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_PROBING = "probing"
STAGE_METADATA = "metadata"
STAGE_TRANSCRIBING = "transcribing"
STAGE_COMPLETE = "complete"
STAGE_ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    job: Job
    stage: str
    message: str
    data: dict[str, Any] | None = None


ProgressCallback = Callable[[ProgressEvent], None]


def notify(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
    """Deliver an event; listener failures never affect the run."""
    if on_progress is None:
        return
    try:
        on_progress(event)
    except Exception:
        logger.debug("Progress listener failed for %s", event.job.name, exc_info=True)


def probe_metadata(prober: AudioProber, path: Path) -> AudioMetadata | None:
    """Best-effort metadata; a failing prober means metadata is unavailable."""
    try:
        return prober.probe(path)
    except Exception as exc:
        logger.warning("Metadata unavailable for %s: %s", path.name, exc)
        return None


class BatchAbortedError(RuntimeError):
    """Raised when a job fails and the batch does not continue on error."""

    def __init__(
        self,
        error: JobError,
        results: Sequence[JobResult],
        errors: Sequence[JobError],
    ) -> None:
        super().__init__(f"Batch aborted after failure in {error.file}: {error.error}")
        self.error = error
        self.results = tuple(results)
        self.errors = tuple(errors)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_groups(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError(f"group size must be > 0, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchRunner:
    """Fans jobs out in fixed-size groups with a barrier between groups.

    At most `config.concurrency` jobs are in flight. Each job resolves to
    exactly one JobResult or JobError; outcomes are collected on the calling
    thread in completion order.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        prober: AudioProber,
        config: BatchConfig,
        options: TranscribeOptions,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.transcriber = transcriber
        self.prober = prober
        self.config = config
        self.options = replace(
            options,
            output_dir=config.output_dir,
            output_format=config.output_format,
            timeout=config.job_timeout,
        )
        self.on_progress = on_progress

    def _emit(self, job: Job, stage: str, message: str, data: dict[str, Any] | None = None) -> None:
        notify(self.on_progress, ProgressEvent(job=job, stage=stage, message=message, data=data))

    def process_job(self, job: Job) -> JobResult:
        logger.info("Processing: %s", job.name)
        self._emit(job, STAGE_PROBING, "Checking audio file...")
        metadata = probe_metadata(self.prober, job.path)
        if metadata is not None:
            self._emit(job, STAGE_METADATA, f"Duration: {metadata.duration}", metadata.to_dict())

        self._emit(
            job,
            STAGE_TRANSCRIBING,
            f"Starting transcription with {self.options.model} model...",
        )
        started = time.perf_counter()
        transcript = self.transcriber.transcribe(job.path, self.options)
        processing_time = time.perf_counter() - started

        duration = metadata.duration_seconds if metadata is not None else None
        result = JobResult(
            file=job.path,
            file_name=job.name,
            output_file=transcript.output_path,
            duration=duration,
            processing_time=processing_time,
            speed_ratio=compute_speed_ratio(duration, processing_time),
            text=transcript.text,
            language=transcript.language,
            timestamp=_now(),
        )
        logger.info("Completed: %s (%.1fs)", job.name, processing_time)
        self._emit(job, STAGE_COMPLETE, "Transcription completed successfully")
        return result

    def _run_job(self, job: Job) -> JobResult | JobError:
        try:
            return self.process_job(job)
        except Exception as exc:
            error = JobError(file=job.path, error=str(exc), timestamp=_now())
            logger.error("Failed: %s - %s", job.name, error.error)
            self._emit(job, STAGE_ERROR, error.error)
            return error

    def run(self, jobs: Sequence[Job]) -> BatchReport:
        started = time.perf_counter()
        ensure_directory(self.config.output_dir)
        results: list[JobResult] = []
        errors: list[JobError] = []
        groups = create_groups(jobs, self.config.concurrency)

        with ThreadPoolExecutor(max_workers=self.config.concurrency) as executor:
            for index, group in enumerate(groups, start=1):
                logger.info("Processing batch %d/%d (%d files)", index, len(groups), len(group))
                futures = [executor.submit(self._run_job, job) for job in group]
                group_errors: list[JobError] = []
                for future in as_completed(futures):
                    outcome = future.result()
                    if isinstance(outcome, JobError):
                        errors.append(outcome)
                        group_errors.append(outcome)
                    else:
                        results.append(outcome)
                if group_errors and not self.config.continue_on_error:
                    raise BatchAbortedError(group_errors[0], results, errors)

        return build_report(
            results,
            errors,
            duration=time.perf_counter() - started,
            total_files=len(jobs),
        )


def run_batch(
    jobs: Sequence[Job],
    *,
    transcriber: Transcriber,
    prober: AudioProber,
    config: BatchConfig,
    options: TranscribeOptions,
    on_progress: ProgressCallback | None = None,
) -> BatchReport:
    """Run every job and persist the report and summary into the output directory."""
    if not jobs:
        logger.warning("No audio files to process")
    else:
        logger.info("Found %d audio files to process", len(jobs))
    runner = BatchRunner(transcriber, prober, config, options, on_progress=on_progress)
    report = runner.run(jobs)
    save_report(report, config.output_dir)
    return report
