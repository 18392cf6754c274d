"""
Shared fixtures for the conversion pipeline tests.

The transcoding executable is simulated by a generated script in tmp_path;
the conversion engine by an in-memory fake.
"""

import sys
import textwrap

import pytest

from proofbridge_core.artifacts.models import ArtifactPattern
from tests.app.conversion.fakes import TRANSCODER_OK, FakeEngine


@pytest.fixture
def make_executable(tmp_path):
    """Create an executable wrapping a Python body; returns its path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        script = bin_dir / f"{name}.py"
        script.write_text(textwrap.dedent(body))
        wrapper = bin_dir / name
        wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
        wrapper.chmod(0o755)
        return str(wrapper)

    return _make


@pytest.fixture
def transcoder_ok(make_executable):
    return make_executable("sp1-proof-to-json", TRANSCODER_OK)


@pytest.fixture
def missing_candidates(tmp_path):
    """Candidate locations that do not exist."""
    return [str(tmp_path / "nowhere" / "release"), str(tmp_path / "nowhere" / "debug")]


@pytest.fixture
def pattern():
    return ArtifactPattern(delimiter="-", extension="proof")


@pytest.fixture
def dirs(tmp_path):
    """Input, output and scratch directories."""
    paths = {name: tmp_path / name for name in ("saved", "converted", "scratch")}
    for path in paths.values():
        path.mkdir()
    return paths


@pytest.fixture
def fake_engine():
    return FakeEngine()
