from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from messenger_cli.core.settings import Settings


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path / "data-dir", _env_file=None)


@pytest.fixture()
def terminal_size():
    return lambda: os.terminal_size((88, 34))
