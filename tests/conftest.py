"""Pytest configuration and fixtures for genpack tests"""

import os
import sys
from pathlib import Path

import pytest

# Ensure src directory is in Python path before any imports
project_root = Path(__file__).resolve().parent.parent
src_path = project_root / "src"
tests_path = project_root / "tests"

for path in (src_path, tests_path):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from genpack.config import GenerationSettings  # noqa: E402
from genpack.progress import ProgressNotifier  # noqa: E402

from helpers import RecordingApplySink, RecordingLogSink, RecordingTimers  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_genpack_env(monkeypatch):
    """Keep GENPACK_* variables from the developer's shell out of tests"""
    for key in list(os.environ):
        if key.startswith("GENPACK_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings():
    return GenerationSettings(_env_file=None, inter_batch_delay_ms=0)


@pytest.fixture
def notifier():
    return ProgressNotifier()


@pytest.fixture
def timers():
    return RecordingTimers()


@pytest.fixture
def apply_sink():
    return RecordingApplySink()


@pytest.fixture
def log_sink():
    return RecordingLogSink()
