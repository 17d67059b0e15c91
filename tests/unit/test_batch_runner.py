from __future__ import annotations

import json
from pathlib import Path

import pytest

from fakes import FakeProber, FakeTranscriber, make_audio_files
from scribeflow.core.batch import (
    BatchAbortedError,
    BatchRunner,
    ProgressEvent,
    create_groups,
    run_batch,
)
from scribeflow.core.discovery import discover_jobs
from scribeflow.core.report import REPORT_FILENAME, SUMMARY_FILENAME
from scribeflow.core.transcriber import TranscribeOptions
from scribeflow.infra.config import build_batch_config
from scribeflow.infra.ffmpeg import AudioProber


def _runner(
    output_dir: Path,
    transcriber: FakeTranscriber,
    *,
    concurrency: int = 1,
    continue_on_error: bool = True,
    prober: AudioProber | None = None,
    on_progress=None,
) -> BatchRunner:
    config = build_batch_config(
        output_dir=output_dir,
        concurrency=concurrency,
        continue_on_error=continue_on_error,
    )
    return BatchRunner(
        transcriber,
        prober or FakeProber(),
        config,
        TranscribeOptions(output_dir=output_dir),
        on_progress=on_progress,
    )


def test_create_groups_keeps_order_and_short_tail() -> None:
    assert create_groups([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert create_groups([], 3) == []


def test_create_groups_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError, match="group size"):
        create_groups([1], 0)


def test_single_failure_is_isolated(audio_dir: Path, tmp_path: Path) -> None:
    transcriber = FakeTranscriber(fail_names={"job3.mp3"})
    jobs = discover_jobs(audio_dir)

    report = _runner(tmp_path / "out", transcriber, concurrency=2).run(jobs)

    assert report.total_files == 5
    assert report.successful == 4
    assert report.failed == 1
    assert report.total_files == len(report.results) + len(report.errors)
    assert report.errors[0].file == (audio_dir / "job3.mp3").resolve()
    assert "boom" in report.errors[0].error


def test_every_job_has_exactly_one_outcome(audio_dir: Path, tmp_path: Path) -> None:
    transcriber = FakeTranscriber(fail_names={"job2.mp3", "job5.mp3"})
    jobs = discover_jobs(audio_dir)
    assert len(jobs) == 5

    report = _runner(tmp_path / "out", transcriber, concurrency=3).run(jobs)

    succeeded = {r.file for r in report.results}
    failed = {e.file for e in report.errors}
    assert succeeded.isdisjoint(failed)
    assert succeeded | failed == {job.path for job in jobs}


def test_in_flight_jobs_never_exceed_concurrency(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 7)
    transcriber = FakeTranscriber(delay=0.05)
    jobs = discover_jobs(tmp_path / "audio")

    _runner(tmp_path / "out", transcriber, concurrency=3).run(jobs)

    assert transcriber.max_in_flight <= 3
    assert len(transcriber.calls) == 7


def test_groups_are_separated_by_a_barrier(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 6)
    transcriber = FakeTranscriber(delay=0.03)
    jobs = discover_jobs(tmp_path / "audio")
    assert len(jobs) == 6

    _runner(tmp_path / "out", transcriber, concurrency=2).run(jobs)

    groups = create_groups([job.name for job in jobs], 2)
    assert len(groups) == 3
    for previous, following in zip(groups, groups[1:]):
        previous_end = max(transcriber.spans[name][1] for name in previous)
        following_start = min(transcriber.spans[name][0] for name in following)
        assert following_start >= previous_end


def test_stop_on_error_halts_later_groups(audio_dir: Path, tmp_path: Path) -> None:
    transcriber = FakeTranscriber(fail_names={"job1.mp3"})
    jobs = discover_jobs(audio_dir)

    with pytest.raises(BatchAbortedError) as excinfo:
        _runner(tmp_path / "out", transcriber, concurrency=2, continue_on_error=False).run(jobs)

    assert sorted(transcriber.calls) == ["job1.mp3", "job2.mp3"]
    assert excinfo.value.error.file.name == "job1.mp3"
    assert len(excinfo.value.results) == 1
    assert len(excinfo.value.errors) == 1


def test_missing_metadata_still_succeeds_without_speed_ratio(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 1)
    transcriber = FakeTranscriber()
    jobs = discover_jobs(tmp_path / "audio")

    report = _runner(
        tmp_path / "out", transcriber, prober=FakeProber(default=None)
    ).run(jobs)

    assert report.successful == 1
    assert report.results[0].duration is None
    assert report.results[0].speed_ratio is None
    assert report.average_speed_ratio is None


class CrashingProber:
    def probe(self, input_path: Path) -> None:
        raise OSError("probe crashed")


def test_prober_crash_only_loses_metadata(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 1)
    events: list[ProgressEvent] = []
    jobs = discover_jobs(tmp_path / "audio")

    report = _runner(
        tmp_path / "out", FakeTranscriber(), prober=CrashingProber(), on_progress=events.append
    ).run(jobs)

    assert (report.successful, report.failed) == (1, 0)
    assert report.results[0].duration is None
    assert [e.stage for e in events] == ["probing", "transcribing", "complete"]


def test_result_carries_transcript_and_speed_ratio(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 1)
    jobs = discover_jobs(tmp_path / "audio")

    report = _runner(tmp_path / "out", FakeTranscriber()).run(jobs)

    result = report.results[0]
    assert result.file_name == "job1.mp3"
    assert result.text == "text of job1"
    assert result.language == "en"
    assert result.output_file == tmp_path / "out" / "job1.json"
    assert result.duration == 120.0
    assert result.speed_ratio is not None and result.speed_ratio > 0


def test_progress_events_are_ordered_per_job(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 2)
    events: list[ProgressEvent] = []
    jobs = discover_jobs(tmp_path / "audio")

    _runner(
        tmp_path / "out",
        FakeTranscriber(fail_names={"job2.mp3"}),
        on_progress=events.append,
    ).run(jobs)

    stages = {
        name: [e.stage for e in events if e.job.name == name]
        for name in ("job1.mp3", "job2.mp3")
    }
    assert stages["job1.mp3"] == ["probing", "metadata", "transcribing", "complete"]
    assert stages["job2.mp3"] == ["probing", "metadata", "transcribing", "error"]


def test_failing_progress_listener_does_not_break_batch(tmp_path: Path) -> None:
    make_audio_files(tmp_path / "audio", 2)

    def explode(_: ProgressEvent) -> None:
        raise RuntimeError("listener down")

    report = _runner(
        tmp_path / "out", FakeTranscriber(), on_progress=explode
    ).run(discover_jobs(tmp_path / "audio"))

    assert report.successful == 2


def test_run_batch_writes_report_and_summary(audio_dir: Path, tmp_path: Path) -> None:
    output_dir = tmp_path / "nested" / "out"
    config = build_batch_config(output_dir=output_dir, concurrency=2)

    report = run_batch(
        discover_jobs(audio_dir),
        transcriber=FakeTranscriber(fail_names={"job4.mp3"}),
        prober=FakeProber(),
        config=config,
        options=TranscribeOptions(output_dir=output_dir),
    )

    payload = json.loads((output_dir / REPORT_FILENAME).read_text(encoding="utf-8"))
    assert payload["totalFiles"] == 5
    assert payload["successful"] == 4
    assert payload["failed"] == 1
    assert payload["errors"][0]["file"].endswith("job4.mp3")
    summary = (output_dir / SUMMARY_FILENAME).read_text(encoding="utf-8")
    assert "Failed: 1" in summary
    assert report.failed == 1


def test_empty_batch_reports_zero_counts(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    output_dir = tmp_path / "out"

    report = run_batch(
        discover_jobs(empty),
        transcriber=FakeTranscriber(),
        prober=FakeProber(),
        config=build_batch_config(output_dir=output_dir),
        options=TranscribeOptions(output_dir=output_dir),
    )

    assert (report.total_files, report.successful, report.failed) == (0, 0, 0)
    assert (output_dir / REPORT_FILENAME).exists()


def test_batch_config_rejects_invalid_concurrency(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="concurrency"):
        build_batch_config(output_dir=tmp_path, concurrency=0)
