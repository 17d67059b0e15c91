from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from fakes import FakeProber, FakeTranscriber
from scribeflow.app.typer_cli import app
from scribeflow.core.report import MERGED_FILENAME, REPORT_FILENAME

runner = CliRunner()


@pytest.fixture
def fake_transcriber(monkeypatch) -> FakeTranscriber:
    transcriber = FakeTranscriber(fail_names={"job3.mp3"})
    monkeypatch.setattr("scribeflow.app.typer_cli.WhisperCliTranscriber", lambda _: transcriber)
    monkeypatch.setattr("scribeflow.app.typer_cli.FfprobeAudioProber", lambda _: FakeProber())
    monkeypatch.setattr("scribeflow.app.typer_cli.probe_audio", lambda *_, **__: None)
    return transcriber


def test_batch_command_writes_report_and_exits_on_failures(
    audio_dir: Path, tmp_path: Path, fake_transcriber: FakeTranscriber
) -> None:
    output_dir = tmp_path / "out"

    result = runner.invoke(
        app, ["batch", str(audio_dir), "--output", str(output_dir), "--concurrency", "2", "--merge"]
    )

    assert result.exit_code == 2, result.output
    assert "- succeeded: 4" in result.output
    assert "- failed: 1" in result.output
    payload = json.loads((output_dir / REPORT_FILENAME).read_text(encoding="utf-8"))
    assert payload["totalFiles"] == 5
    assert (output_dir / MERGED_FILENAME).exists()


def test_batch_command_stop_on_error(
    audio_dir: Path, tmp_path: Path, fake_transcriber: FakeTranscriber
) -> None:
    result = runner.invoke(
        app,
        ["batch", str(audio_dir), "-o", str(tmp_path / "out"), "-c", "1", "--stop-on-error"],
    )

    assert result.exit_code == 2
    assert "Batch aborted" in result.output
    assert "job4.mp3" not in fake_transcriber.calls


def test_batch_command_on_empty_directory_reports_zero(tmp_path: Path, fake_transcriber: FakeTranscriber) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()

    result = runner.invoke(app, ["batch", str(empty), "-o", str(tmp_path / "out")])

    assert result.exit_code == 0, result.output
    assert "No audio files found" in result.output
    assert "- files discovered: 0" in result.output


def test_batch_command_rejects_missing_directory(tmp_path: Path) -> None:
    result = runner.invoke(app, ["batch", str(tmp_path / "missing")])
    assert result.exit_code == 2


def test_batch_command_rejects_zero_concurrency(audio_dir: Path, tmp_path: Path) -> None:
    result = runner.invoke(app, ["batch", str(audio_dir), "-o", str(tmp_path), "-c", "0"])
    assert result.exit_code == 2


def test_transcribe_command_single_file(tmp_path: Path, fake_transcriber: FakeTranscriber) -> None:
    audio = tmp_path / "solo.mp3"
    audio.write_bytes(b"x")

    result = runner.invoke(app, ["transcribe", str(audio), "-o", str(tmp_path / "out")])

    assert result.exit_code == 0, result.output
    assert "text of solo" in result.output
    assert fake_transcriber.calls == ["solo.mp3"]


def test_merge_command(tmp_path: Path) -> None:
    (tmp_path / "a.json").write_text(json.dumps({"text": "alpha"}), encoding="utf-8")

    result = runner.invoke(app, ["merge", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert (tmp_path / MERGED_FILENAME).read_text(encoding="utf-8") == "[a.json]\nalpha\n"


def test_models_command_lists_catalogue() -> None:
    result = runner.invoke(app, ["models"])
    assert result.exit_code == 0
    for name in ("tiny", "base", "small", "medium", "large"):
        assert name in result.output
