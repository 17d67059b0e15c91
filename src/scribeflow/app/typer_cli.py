from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from scribeflow.core.batch import (
    STAGE_COMPLETE,
    STAGE_ERROR,
    BatchAbortedError,
    ProgressEvent,
    run_batch,
)
from scribeflow.core.discovery import DiscoveryError, discover_jobs, expand_inputs
from scribeflow.core.report import MERGED_FILENAME, format_speed_ratio, merge_transcripts
from scribeflow.core.transcriber import (
    AVAILABLE_MODELS,
    TranscriptionError,
    WhisperCliTranscriber,
    download_model,
    options_from_config,
)
from scribeflow.infra.config import (
    AppConfig,
    BatchConfig,
    build_app_config,
    build_batch_config,
    normalize_model,
)
from scribeflow.infra.doctor import collect_doctor_report, render_doctor_report
from scribeflow.infra.ffmpeg import FfprobeAudioProber, probe_audio, split_audio
from scribeflow.infra.logging_config import setup_logging
from scribeflow.infra.storage import ensure_directory
from scribeflow.schemas.job import BatchReport, Job

app = typer.Typer(
    name="scribeflow",
    add_completion=False,
    help="Transcribe audio files with the whisper CLI, one file or a whole directory.",
)
console = Console()


def _build_config(**kwargs: Any) -> AppConfig:
    try:
        return build_app_config(**kwargs)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_batch_config(**kwargs: Any) -> BatchConfig:
    try:
        return build_batch_config(**kwargs)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _run_with_progress(
    jobs: list[Job],
    *,
    config: AppConfig,
    batch_config: BatchConfig,
    task: str,
    timestamps: bool,
    word_timestamps: bool,
) -> BatchReport:
    options = options_from_config(
        config,
        task=task,
        timestamps=timestamps,
        word_timestamps=word_timestamps,
    )
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("[red]failed: {task.fields[failed]}"),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    ) as progress:
        task_id = progress.add_task("Transcribing...", total=len(jobs), failed=0)
        failed = 0

        def _on_progress(event: ProgressEvent) -> None:
            nonlocal failed
            if event.stage == STAGE_ERROR:
                failed += 1
                progress.update(task_id, advance=1, failed=failed)
            elif event.stage == STAGE_COMPLETE:
                progress.update(task_id, advance=1)

        return run_batch(
            jobs,
            transcriber=WhisperCliTranscriber(config.whisper_bin),
            prober=FfprobeAudioProber(config.ffprobe_bin),
            config=batch_config,
            options=options,
            on_progress=_on_progress,
        )


def _echo_batch_result(report: BatchReport, output_dir: Path) -> None:
    average = format_speed_ratio(report.average_speed_ratio)
    typer.echo(
        f"[done] Batch transcription complete.\n"
        f"- files discovered: {report.total_files}\n"
        f"- succeeded: {report.successful}\n"
        f"- failed: {report.failed}\n"
        f"- average speed ratio: {average + 'x' if average else 'N/A'}\n"
        f"- elapsed: {report.duration:.2f}s\n"
        f"- report: {output_dir / 'transcription_report.json'}"
    )
    for error in report.errors:
        typer.echo(f"  - {error.file}: {error.error}")


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, "--log-level", help="DEBUG|INFO|WARNING|ERROR (default: SCRIBEFLOW_LOG_LEVEL or INFO)."
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Also write DEBUG logs to this rotating file."
    ),
) -> None:
    config = _build_config(log_level=log_level, log_file=log_file)
    setup_logging(config.log_level, config.log_file)


@app.command("transcribe")
def transcribe_command(
    audio: str = typer.Argument(..., help="Audio file, directory, or glob pattern."),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Output directory (default: ./output)."
    ),
    model: str = typer.Option("base", "--model", "-m", help="tiny|base|small|medium|large"),
    language: str = typer.Option("auto", "--language", "-l", help="Language code or 'auto'."),
    output_format: str = typer.Option(
        "json", "--format", "-f", help="json|txt|srt|vtt|tsv"
    ),
    translate: bool = typer.Option(
        False, "--translate", help="Translate to English instead of transcribing."
    ),
    timestamps: bool = typer.Option(
        True, "--timestamps/--no-timestamps", help="Keep segment timestamps in the result."
    ),
    word_timestamps: bool = typer.Option(
        False, "--word-timestamps", help="Include word-level timestamps."
    ),
    device: str = typer.Option("cpu", "--device", help="auto|cpu|cuda"),
    concurrency: int = typer.Option(1, "--concurrency", "-c", help="Files processed at once."),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-file timeout in seconds."
    ),
) -> None:
    """Transcribe an audio file or every file matching a pattern."""
    config = _build_config(
        model=model,
        language=language,
        device=device,
        output_format=output_format,
        output_dir=output_dir,
    )
    try:
        jobs = expand_inputs(audio)
    except DiscoveryError as exc:
        raise typer.BadParameter(str(exc), param_hint="AUDIO") from exc
    if not jobs:
        typer.echo(f"No files matching pattern: {audio}")
        raise typer.Exit(code=1)

    task = "translate" if translate else "transcribe"
    typer.echo(
        f"- model: {config.model}\n- language: {config.language}\n"
        f"- output: {config.output_dir}\n- format: {config.output_format}"
    )

    if len(jobs) == 1:
        input_path = jobs[0].path
        metadata = probe_audio(input_path, ffprobe_bin=config.ffprobe_bin)
        if metadata is not None:
            typer.echo(
                f"Audio information:\n- duration: {metadata.duration}\n"
                f"- size: {metadata.size}\n- codec: {metadata.codec}\n"
                f"- sample rate: {metadata.sample_rate} Hz"
            )
        options = options_from_config(
            config,
            task=task,
            timestamps=timestamps,
            word_timestamps=word_timestamps,
            timeout=timeout,
        )
        ensure_directory(config.output_dir)
        try:
            with console.status(f"Transcribing {input_path.name}..."):
                result = WhisperCliTranscriber(config.whisper_bin).transcribe(input_path, options)
        except TranscriptionError as exc:
            typer.echo(f"[failed] {exc}")
            raise typer.Exit(code=2) from exc
        if config.output_format == "json" and result.text:
            typer.echo(f"[done] Transcription complete.\n\n{result.text}\n")
            typer.echo(f"Full output saved to: {result.output_path}")
        else:
            typer.echo(f"[done] Transcription saved to: {result.output_path}")
        return

    batch_config = _build_batch_config(
        output_dir=config.output_dir,
        concurrency=concurrency,
        job_timeout=timeout,
        output_format=config.output_format,
    )
    report = _run_with_progress(
        jobs,
        config=config,
        batch_config=batch_config,
        task=task,
        timestamps=timestamps,
        word_timestamps=word_timestamps,
    )
    _echo_batch_result(report, config.output_dir)
    if report.failed:
        raise typer.Exit(code=2)


@app.command("batch")
def batch_command(
    input_dir: Path = typer.Argument(..., help="Directory scanned recursively for audio files."),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Output directory (default: ./output)."
    ),
    model: str = typer.Option("base", "--model", "-m", help="tiny|base|small|medium|large"),
    language: str = typer.Option("auto", "--language", "-l", help="Language code or 'auto'."),
    device: str = typer.Option("cpu", "--device", help="auto|cpu|cuda"),
    concurrency: int = typer.Option(1, "--concurrency", "-c", help="Files processed at once."),
    continue_on_error: bool = typer.Option(
        True,
        "--continue-on-error/--stop-on-error",
        help="Keep going after a failed file, or stop launching new files.",
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Per-file timeout in seconds."
    ),
    merge: bool = typer.Option(
        False, "--merge", help="Write merged_transcript.txt when the batch finishes."
    ),
) -> None:
    """Transcribe every audio file under a directory and write a batch report."""
    config = _build_config(model=model, language=language, device=device, output_dir=output_dir)
    batch_config = _build_batch_config(
        output_dir=config.output_dir,
        concurrency=concurrency,
        continue_on_error=continue_on_error,
        job_timeout=timeout,
    )
    try:
        jobs = discover_jobs(input_dir)
    except DiscoveryError as exc:
        raise typer.BadParameter(str(exc), param_hint="INPUT_DIR") from exc
    if not jobs:
        typer.echo(f"No audio files found in {input_dir}")

    try:
        report = _run_with_progress(
            jobs,
            config=config,
            batch_config=batch_config,
            task="transcribe",
            timestamps=True,
            word_timestamps=False,
        )
    except BatchAbortedError as exc:
        typer.echo(
            f"[failed] {exc}\n"
            f"- completed before abort: {len(exc.results)}\n"
            f"- failed before abort: {len(exc.errors)}"
        )
        raise typer.Exit(code=2) from exc

    _echo_batch_result(report, config.output_dir)
    if merge:
        merged = merge_transcripts(config.output_dir)
        typer.echo(f"- merged transcript: {merged}")
    if report.failed:
        raise typer.Exit(code=2)


@app.command("merge")
def merge_command(
    output_dir: Path = typer.Argument(Path("./output"), help="Directory holding transcript JSON files."),
    output_name: str = typer.Option(MERGED_FILENAME, "--name", help="Merged file name."),
) -> None:
    """Merge every transcript in an output directory into one text file."""
    try:
        merged = merge_transcripts(output_dir, output_name)
    except FileNotFoundError as exc:
        raise typer.BadParameter(str(exc), param_hint="OUTPUT_DIR") from exc
    typer.echo(f"[done] Merged transcript: {merged}")


@app.command("models")
def models_command() -> None:
    """List available whisper models."""
    table = Table(title="Available Whisper Models")
    for column in ("Model", "Size", "Speed", "Accuracy"):
        table.add_column(column)
    for info in AVAILABLE_MODELS:
        table.add_row(info.name, info.size, info.speed, info.accuracy)
    console.print(table)
    typer.echo("Tip: Larger models provide better accuracy but are slower.")


@app.command("download")
def download_command(
    model: str = typer.Argument(..., help="Model name to fetch into the whisper cache."),
) -> None:
    """Download a whisper model ahead of time."""
    try:
        model = normalize_model(model)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="MODEL") from exc
    config = _build_config(model=model)
    try:
        with console.status(f"Downloading model: {model}..."):
            download_model(model, python_bin=config.python_bin)
    except (OSError, RuntimeError) as exc:
        typer.echo(f"[failed] {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"[done] Model {model} is ready to use.")


@app.command("info")
def info_command(
    audio: Path = typer.Argument(..., help="Audio file to inspect."),
) -> None:
    """Show duration, codec and size information for an audio file."""
    if not audio.is_file():
        raise typer.BadParameter(f"File not found: {audio}", param_hint="AUDIO")
    config = _build_config()
    metadata = probe_audio(audio, ffprobe_bin=config.ffprobe_bin)
    if metadata is None:
        typer.echo("Could not read audio file information")
        raise typer.Exit(code=1)
    bitrate = f"{metadata.bitrate / 1000:.0f} kbps" if metadata.bitrate else "N/A"
    typer.echo(
        f"File: {audio.name}\n"
        f"Duration: {metadata.duration}\n"
        f"Size: {metadata.size}\n"
        f"Codec: {metadata.codec}\n"
        f"Sample Rate: {metadata.sample_rate} Hz\n"
        f"Channels: {metadata.channels}\n"
        f"Bitrate: {bitrate}"
    )


@app.command("split")
def split_command(
    audio: Path = typer.Argument(..., help="Audio file to split."),
    duration: int = typer.Option(300, "--duration", "-d", help="Chunk duration in seconds."),
) -> None:
    """Split audio into smaller chunks for processing."""
    if not audio.is_file():
        raise typer.BadParameter(f"File not found: {audio}", param_hint="AUDIO")
    config = _build_config()
    try:
        chunks = split_audio(audio, chunk_seconds=duration, ffmpeg_bin=config.ffmpeg_bin)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--duration") from exc
    except RuntimeError as exc:
        typer.echo(f"[failed] {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"[done] Audio split into {len(chunks)} chunks:")
    for chunk in chunks:
        typer.echo(f"  - {chunk.name}")


@app.command("doctor")
def doctor_command(
    device: str = typer.Option("cpu", "--device", help="auto|cpu|cuda"),
    output_dir: Path | None = typer.Option(None, "--output", "-o", help="Output directory to check."),
) -> None:
    """Check runtime readiness (Python/whisper/ffmpeg/device/output)."""
    config = _build_config(device=device, output_dir=output_dir)
    report = collect_doctor_report(config)
    typer.echo(render_doctor_report(report))
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address."),
    port: int = typer.Option(3000, "--port", envvar="PORT", help="Bind port."),
    output_dir: Path | None = typer.Option(
        None, "--output", "-o", help="Output directory (default: ./output)."
    ),
    model: str = typer.Option("base", "--model", "-m", help="Default model for requests."),
) -> None:
    """Serve the JSON HTTP API and WebSocket progress channel."""
    import uvicorn

    from scribeflow.app.web import create_app

    config = _build_config(model=model, output_dir=output_dir)
    typer.echo(f"Server running at http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def run() -> None:
    """Console-script entrypoint."""
    app()
