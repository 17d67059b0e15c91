from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from scribeflow.infra.config import MINIMUM_PYTHON, AppConfig, python_version_ok
from scribeflow.infra.device import detect_device_report
from scribeflow.infra.ffmpeg import get_binary_path, get_ffmpeg_version


@dataclass(frozen=True)
class DoctorCheck:
    name: str
    ok: bool
    detail: str


@dataclass(frozen=True)
class DoctorReport:
    checks: tuple[DoctorCheck, ...]

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)

    @property
    def failures(self) -> tuple[DoctorCheck, ...]:
        return tuple(check for check in self.checks if not check.ok)


def _output_dir_check(path: Path) -> DoctorCheck:
    target = path if path.exists() else path.parent
    ok = target.is_dir() and os.access(target, os.W_OK)
    return DoctorCheck(name="Output directory", ok=ok, detail=f"path={path.resolve()}")


def _binary_check(name: str, command: str, hint: str) -> DoctorCheck:
    path = get_binary_path(command)
    detail = f"path={path}" if path else f"'{command}' not found. {hint}"
    return DoctorCheck(name=name, ok=path is not None, detail=detail)


def collect_doctor_report(config: AppConfig) -> DoctorReport:
    current = (sys.version_info.major, sys.version_info.minor)
    python_check = DoctorCheck(
        name="Python",
        ok=python_version_ok(current),
        detail=f"{current[0]}.{current[1]} (minimum {MINIMUM_PYTHON[0]}.{MINIMUM_PYTHON[1]})",
    )
    whisper_check = _binary_check(
        "Whisper", config.whisper_bin, "Install it with: pip install openai-whisper"
    )

    ffmpeg_check = _binary_check(
        "FFmpeg", config.ffmpeg_bin, "Install from https://ffmpeg.org/download.html"
    )
    if ffmpeg_check.ok:
        version = get_ffmpeg_version(config.ffmpeg_bin) or "unknown"
        ffmpeg_check = DoctorCheck(
            name=ffmpeg_check.name, ok=True, detail=f"{ffmpeg_check.detail} version={version}"
        )
    ffprobe_check = _binary_check(
        "FFprobe", config.ffprobe_bin, "It ships with FFmpeg."
    )

    device_report = detect_device_report(config.device)
    device_check = DoctorCheck(
        name="Device",
        ok=device_report.request_satisfied,
        detail=(
            f"requested={device_report.requested} selected={device_report.selected} "
            f"available={','.join(device_report.available)}"
        ),
    )

    return DoctorReport(
        checks=(
            python_check,
            whisper_check,
            ffmpeg_check,
            ffprobe_check,
            device_check,
            _output_dir_check(config.output_dir),
        ),
    )


def render_doctor_report(report: DoctorReport) -> str:
    header = "scribeflow doctor: OK" if report.ok else "scribeflow doctor: FAIL"
    lines = [header]
    for check in report.checks:
        status = "PASS" if check.ok else "FAIL"
        lines.append(f"- [{status}] {check.name}: {check.detail}")
    return "\n".join(lines)
