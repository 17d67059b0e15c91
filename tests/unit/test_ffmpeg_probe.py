from __future__ import annotations

import json
import subprocess
from pathlib import Path

from scribeflow.infra.ffmpeg import FfprobeAudioProber, parse_probe_output, probe_audio
from scribeflow.schemas.audio import AudioMetadata, format_duration, format_file_size

FFPROBE_OUTPUT = {
    "streams": [
        {"codec_type": "video", "codec_name": "h264"},
        {"codec_type": "audio", "codec_name": "aac", "sample_rate": "44100", "channels": 2},
    ],
    "format": {"duration": "3725.5", "bit_rate": "128000", "size": "5242880"},
}


def test_parse_probe_output_reads_audio_stream() -> None:
    metadata = parse_probe_output(json.dumps(FFPROBE_OUTPUT))

    assert metadata == AudioMetadata(
        duration_seconds=3725.5,
        codec="aac",
        sample_rate=44100,
        channels=2,
        bitrate=128000,
        size_bytes=5242880,
    )
    assert metadata.duration == "1h 2m 5s"
    assert metadata.size == "5.00 MB"


def test_parse_probe_output_without_duration_is_unavailable() -> None:
    assert parse_probe_output(json.dumps({"format": {}})) is None
    assert parse_probe_output("not json") is None


def test_probe_audio_is_unavailable_without_ffprobe(monkeypatch) -> None:
    monkeypatch.setattr("scribeflow.infra.ffmpeg.get_binary_path", lambda _: None)
    assert probe_audio(Path("a.mp3")) is None


def test_probe_audio_is_unavailable_on_ffprobe_failure(monkeypatch) -> None:
    monkeypatch.setattr(
        "scribeflow.infra.ffmpeg.get_binary_path", lambda _: Path("/usr/bin/ffprobe")
    )
    monkeypatch.setattr(
        "scribeflow.infra.ffmpeg.subprocess.run",
        lambda command, **_: subprocess.CompletedProcess(command, 1, stdout="", stderr="invalid data"),
    )
    assert probe_audio(Path("a.mp3")) is None


def test_probe_audio_is_unavailable_when_ffprobe_hangs(monkeypatch) -> None:
    seen: list[object] = []

    def fake_run(command: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        seen.append(kwargs["timeout"])
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(
        "scribeflow.infra.ffmpeg.get_binary_path", lambda _: Path("/usr/bin/ffprobe")
    )
    monkeypatch.setattr("scribeflow.infra.ffmpeg.subprocess.run", fake_run)

    assert FfprobeAudioProber(timeout=2.5).probe(Path("a.mp3")) is None
    assert seen == [2.5]


def test_probe_audio_parses_ffprobe_stdout(monkeypatch) -> None:
    monkeypatch.setattr(
        "scribeflow.infra.ffmpeg.get_binary_path", lambda _: Path("/usr/bin/ffprobe")
    )
    monkeypatch.setattr(
        "scribeflow.infra.ffmpeg.subprocess.run",
        lambda command, **_: subprocess.CompletedProcess(
            command, 0, stdout=json.dumps(FFPROBE_OUTPUT), stderr=""
        ),
    )
    metadata = probe_audio(Path("a.mp3"))
    assert metadata is not None
    assert metadata.codec == "aac"


def test_duration_and_size_rendering() -> None:
    assert format_duration(42.9) == "42s"
    assert format_duration(125) == "2m 5s"
    assert format_file_size(512) == "512.00 B"
    assert format_file_size(1536) == "1.50 KB"
