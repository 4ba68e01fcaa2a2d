from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from verifyci.environment import LocalProvisioner  # noqa: E402
from verifyci.ui.console import Console  # noqa: E402


def py(code: str) -> str:
    """Shell command running `code` with the test interpreter (no double quotes in code)."""
    return f'"{sys.executable}" -c "{code}"'


class RecordingReporter:
    def __init__(self):
        self.outcomes = []

    def report(self, outcome) -> None:
        self.outcomes.append(outcome)


@pytest.fixture
def console() -> Console:
    return Console(stream=io.StringIO(), err_stream=io.StringIO())


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def provisioner(tmp_path, console) -> LocalProvisioner:
    return LocalProvisioner(tmp_path, console=console)
