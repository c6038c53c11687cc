"""
Shared fixtures for the evaluator tests.

Solutions in these tests are shell scripts and the "compiler" is a script
that copies the source to the output path, so no C toolchain is needed.
"""

import stat
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from evaluator.config_loader import load_specification_from_dict

FAKE_COMPILER = """#!/bin/sh
out=""
src=""
while [ $# -gt 0 ]; do
  case "$1" in
    -o) out="$2"; shift 2 ;;
    -*) shift ;;
    *) src="$1"; shift ;;
  esac
done
if grep -q COMPILE_ERROR "$src"; then
  echo "$src: error: expected ';'" >&2
  exit 1
fi
cp "$src" "$out" && chmod +x "$out"
"""


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def project_dir(tmp_path):
    """Empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def fake_compiler(tmp_path):
    """Compiler script that 'compiles' by copying the source."""
    return write_executable(tmp_path / "fake-cc", FAKE_COMPILER)


@pytest.fixture
def add_solution(project_dir):
    """Create a solution directory containing `proj.c` with the given text."""

    def _add(name: str, source: str | None) -> Path:
        solution_dir = project_dir / name
        solution_dir.mkdir()
        if source is not None:
            (solution_dir / "proj.c").write_text(source, encoding="utf-8")
        return solution_dir

    return _add


@pytest.fixture
def make_spec(project_dir, fake_compiler):
    """Build a Specification for the project from configuration data."""

    def _make(**config):
        data = {"source": "proj.c", "compiler": {"CC": str(fake_compiler)}}
        data.update(config)
        return load_specification_from_dict(data, project_dir).specification

    return _make
