"""
Tests for external process execution.

Tests output capture, stdin handling, timeouts and process group cleanup.
"""

import time

import pytest
from pydantic import ValidationError

from evaluator.process import ProcessResult, decode_output, display_output, run_process


class TestRunProcess:
    """Test normal command execution."""

    def test_stdout_and_stderr_are_separate(self):
        result = run_process(["sh", "-c", "echo out; echo err >&2"])

        assert result.exited
        assert result.returncode == 0
        assert result.stdout == b"out\n"
        assert result.stderr == b"err\n"

    def test_stdin_is_fed(self):
        result = run_process(["cat"], stdin=b"hello\nworld\n")

        assert result.stdout == b"hello\nworld\n"

    def test_empty_stdin_by_default(self):
        result = run_process(["cat"], timeout=5)

        assert result.exited
        assert result.stdout == b""

    def test_non_zero_exit(self):
        result = run_process(["sh", "-c", "exit 3"])

        assert result.exited
        assert result.returncode == 3

    def test_large_output_does_not_block(self):
        result = run_process(["sh", "-c", "head -c 1000000 /dev/zero; head -c 500000 /dev/zero >&2"], timeout=30)

        assert result.exited
        assert len(result.stdout) == 1000000
        assert len(result.stderr) == 500000

    def test_working_directory(self, tmp_path):
        result = run_process(["pwd"], cwd=tmp_path)

        assert result.stdout.decode().strip() == str(tmp_path.resolve())


class TestRunProcessFailures:
    """Test spawn failures and timeouts."""

    def test_missing_program(self, tmp_path):
        result = run_process([tmp_path / "missing-binary"])

        assert not result.exited
        assert result.returncode is None
        assert result.spawn_error

    def test_timeout(self):
        start = time.monotonic()
        result = run_process(["sleep", "10"], timeout=0.2)

        assert result.timed_out
        assert not result.exited
        assert time.monotonic() - start < 5

    def test_timeout_keeps_partial_output(self):
        result = run_process(["sh", "-c", "echo partial; sleep 10"], timeout=0.5)

        assert result.timed_out
        assert result.stdout == b"partial\n"

    def test_timeout_kills_process_group(self):
        """Background children holding the pipes are killed with the leader."""
        start = time.monotonic()
        result = run_process(["sh", "-c", "sleep 30 & sleep 30 & wait"], timeout=0.3)

        assert result.timed_out
        assert time.monotonic() - start < 10


class TestProcessResult:
    """Test the process result model."""

    def test_is_immutable(self):
        result = run_process(["true"])

        with pytest.raises(ValidationError):
            result.returncode = 1

    def test_exited(self):
        assert ProcessResult(returncode=0).exited
        assert not ProcessResult(returncode=None, timed_out=True).exited
        assert not ProcessResult(returncode=None, spawn_error="missing").exited


class TestDecoding:
    """Test output decoding."""

    def test_invalid_bytes_stay_distinct(self):
        assert decode_output(b"\xff") != decode_output(b"\xfe")

    def test_display_replaces_invalid_bytes(self):
        assert display_output(b"ok\xff") == "ok�"
