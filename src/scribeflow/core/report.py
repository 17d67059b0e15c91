from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from scribeflow.infra.storage import ensure_directory, read_json, write_json, write_text
from scribeflow.schemas.job import BatchReport, JobError, JobResult

logger = logging.getLogger(__name__)

REPORT_FILENAME = "transcription_report.json"
SUMMARY_FILENAME = "summary.txt"
MERGED_FILENAME = "merged_transcript.txt"
RULE = "=" * 60
PREVIEW_CHARS = 100
LISTING_PREVIEW_CHARS = 200


def compute_speed_ratio(duration: float | None, processing_time: float | None) -> float | None:
    """Audio seconds transcribed per wall-clock second, if both are known."""
    if duration is None or processing_time is None or processing_time <= 0:
        return None
    return duration / processing_time


def format_speed_ratio(ratio: float | None) -> str | None:
    return None if ratio is None else f"{ratio:.2f}"


def build_report(
    results: Sequence[JobResult],
    errors: Sequence[JobError],
    *,
    duration: float,
    total_files: int,
) -> BatchReport:
    if total_files != len(results) + len(errors):
        raise RuntimeError(
            f"Batch outcome count mismatch: total={total_files} "
            f"results={len(results)} errors={len(errors)}"
        )
    return BatchReport(
        results=tuple(results),
        errors=tuple(errors),
        duration=duration,
        total_files=total_files,
    )


def result_to_dict(result: JobResult) -> dict[str, Any]:
    return {
        "file": str(result.file),
        "fileName": result.file_name,
        "outputFile": str(result.output_file),
        "duration": result.duration,
        "processingTime": result.processing_time,
        "speedRatio": format_speed_ratio(result.speed_ratio),
        "text": result.text,
        "language": result.language,
        "timestamp": result.timestamp,
    }


def error_to_dict(error: JobError) -> dict[str, Any]:
    return {"file": str(error.file), "error": error.error, "timestamp": error.timestamp}


def report_to_dict(report: BatchReport) -> dict[str, Any]:
    return {
        "results": [result_to_dict(r) for r in report.results],
        "errors": [error_to_dict(e) for e in report.errors],
        "duration": report.duration,
        "totalFiles": report.total_files,
        "successful": report.successful,
        "failed": report.failed,
        "averageSpeedRatio": format_speed_ratio(report.average_speed_ratio),
    }


def _preview(text: str, limit: int) -> str:
    return f"{text[:limit]}..." if text else "No text"


def render_summary(report: BatchReport) -> str:
    average = format_speed_ratio(report.average_speed_ratio)
    lines = [
        RULE,
        "TRANSCRIPTION BATCH PROCESSING SUMMARY",
        RULE,
        "",
        f"Total Files Processed: {report.total_files}",
        f"Successful: {report.successful}",
        f"Failed: {report.failed}",
        f"Total Duration: {report.duration:.2f} seconds",
        f"Average Speed Ratio: {average + 'x' if average else 'N/A'}",
        "",
        RULE,
        "SUCCESSFULLY PROCESSED FILES:",
        RULE,
        "",
    ]
    for index, result in enumerate(report.results, start=1):
        ratio = format_speed_ratio(result.speed_ratio)
        lines.append(f"{index}. {result.file_name}")
        lines.append(
            f"   Duration: {f'{result.duration:.1f}s' if result.duration is not None else 'N/A'}"
        )
        lines.append(f"   Processing Time: {result.processing_time:.1f}s")
        lines.append(f"   Speed Ratio: {ratio + 'x' if ratio else 'N/A'}")
        lines.append(f"   Text Preview: {_preview(result.text, PREVIEW_CHARS)}")
        lines.append("")

    if report.errors:
        lines += [RULE, "FAILED FILES:", RULE, ""]
        for index, error in enumerate(report.errors, start=1):
            lines.append(f"{index}. {error.file}")
            lines.append(f"   Error: {error.error}")
            lines.append("")

    return "\n".join(lines)


def save_report(report: BatchReport, output_dir: Path) -> tuple[Path, Path]:
    ensure_directory(output_dir)
    report_path = output_dir / REPORT_FILENAME
    summary_path = output_dir / SUMMARY_FILENAME
    write_json(report_path, report_to_dict(report))
    write_text(summary_path, render_summary(report))
    logger.info("Report saved to: %s", report_path)
    logger.info("Summary saved to: %s", summary_path)
    return report_path, summary_path


def _transcript_artifacts(output_dir: Path) -> list[Path]:
    return sorted(
        path
        for path in output_dir.glob("*.json")
        if path.is_file() and path.name != REPORT_FILENAME
    )


def merge_transcripts(output_dir: Path, output_name: str = MERGED_FILENAME) -> Path:
    """Concatenate every transcript artifact into one text file.

    Artifacts are read in sorted filename order so repeated runs over the
    same directory write identical bytes.
    """
    if not output_dir.is_dir():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")
    blocks: list[str] = []
    for path in _transcript_artifacts(output_dir):
        try:
            data = read_json(path)
        except ValueError:
            logger.warning("Skipping unreadable transcript %s", path.name)
            continue
        text = data.get("text") if isinstance(data, dict) else None
        if text:
            blocks.append(f"[{path.name}]\n{text}\n")

    output_path = output_dir / output_name
    write_text(output_path, f"\n{RULE}\n".join(blocks))
    logger.info("Merged %d transcripts to: %s", len(blocks), output_path)
    return output_path


def list_transcripts(output_dir: Path) -> list[dict[str, Any]]:
    """Summaries of transcript artifacts, newest first."""
    if not output_dir.is_dir():
        return []
    entries: list[tuple[float, dict[str, Any]]] = []
    for path in _transcript_artifacts(output_dir):
        try:
            data = read_json(path)
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        mtime = path.stat().st_mtime
        entries.append(
            (
                mtime,
                {
                    "filename": path.name,
                    "text": _preview(str(data.get("text") or ""), LISTING_PREVIEW_CHARS),
                    "language": data.get("language"),
                    "timestamp": datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
                },
            )
        )
    entries.sort(key=lambda entry: entry[0], reverse=True)
    return [entry for _, entry in entries]
