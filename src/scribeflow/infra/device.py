from __future__ import annotations

import shutil
from dataclasses import dataclass


@dataclass(frozen=True)
class DeviceReport:
    requested: str
    available: tuple[str, ...]
    selected: str
    request_satisfied: bool


def _has_command(command: str) -> bool:
    return shutil.which(command) is not None


def detect_available_devices() -> tuple[str, ...]:
    devices = ["cpu"]
    if _has_command("nvidia-smi"):
        devices.append("cuda")
    return tuple(devices)


def choose_device(requested: str, available: tuple[str, ...]) -> str:
    """Resolve `auto` to a concrete whisper `--device` value."""
    if requested != "auto":
        return requested
    return "cuda" if "cuda" in available else "cpu"


def detect_device_report(requested: str) -> DeviceReport:
    available = detect_available_devices()
    return DeviceReport(
        requested=requested,
        available=available,
        selected=choose_device(requested, available),
        request_satisfied=requested == "auto" or requested in available,
    )
