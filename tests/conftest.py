from __future__ import annotations

from pathlib import Path

import pytest

from fakes import make_audio_files


@pytest.fixture
def audio_dir(tmp_path: Path) -> Path:
    root = tmp_path / "audio"
    make_audio_files(root, 5)
    return root
