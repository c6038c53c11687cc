"""
Local execution runner for solution binaries.

Runs a compiled solution against the configured test cases and
decides which tests are satisfied.
"""

import logging
from pathlib import Path
from typing import Iterable

from .config import DEFAULT_TEST_TIMEOUT_MS
from .models import CaseResult, CaseStatus, Requirement, Test, TestCase, TestOutcome
from .process import ProcessResult, decode_output, display_output, run_process

logger = logging.getLogger(__name__)


def outputs_match(expected: str, actual: str, case_insensitive: bool = False) -> bool:
    """
    Compare expected and actual output.

    The comparison is exact unless `case_insensitive` is set, in which case
    both sides are lower-cased first.
    """
    if case_insensitive:
        return expected.lower() == actual.lower()
    return expected == actual


def case_passed(case: TestCase, result: ProcessResult) -> bool:
    """
    Decide whether a finished process satisfies a test case.

    The process must have exited within the time limit. Only the expectations
    set on the case are checked; the exit status is checked only when the case
    sets `exit_code`.
    """
    if not result.exited:
        return False
    if case.exit_code is not None and result.returncode != case.exit_code:
        return False
    if case.expected_stdout is not None and not outputs_match(
        case.expected_stdout, decode_output(result.stdout), case.case_insensitive
    ):
        return False
    if case.expected_stderr is not None and not outputs_match(
        case.expected_stderr, decode_output(result.stderr), case.case_insensitive
    ):
        return False
    return True


def requirement_satisfied(requirement: Requirement, passed: Iterable[bool]) -> bool:
    """Combine the results of a test's cases: all for ALL, at least one for ANY."""
    if requirement == Requirement.ANY:
        return any(passed)
    return all(passed)


class LocalRunner:
    """
    Runs a solution binary on the host machine.

    Each case runs in a fresh process with its own pipes; cases of one
    solution run one after another.
    """

    def __init__(self, timeout_ms: int = DEFAULT_TEST_TIMEOUT_MS) -> None:
        """
        Initialize the runner.

        Args:
            timeout_ms: Wall-clock limit of a single case, in milliseconds.
        """
        self.timeout_ms = timeout_ms

    def run_case(self, binary: Path, case: TestCase, cwd: Path | None = None) -> CaseResult:
        """
        Run the binary on one test case.

        Args:
            binary: Path to the solution binary.
            case: Test case to run.
            cwd: Working directory of the binary.

        Returns:
            CaseResult describing the run.
        """
        stdin = case.stdin.encode("utf-8") if case.stdin is not None else b""
        result = run_process(
            [binary.resolve(), *case.args],
            stdin=stdin,
            timeout=self.timeout_ms / 1000.0,
            cwd=cwd,
        )

        if result.spawn_error is not None:
            return CaseResult(status=CaseStatus.SPAWN_ERROR, message=result.spawn_error)

        if result.timed_out:
            status = CaseStatus.TIMEOUT
            message = f"Process exceeded time limit of {self.timeout_ms} ms"
        else:
            status = CaseStatus.PASSED if case_passed(case, result) else CaseStatus.FAILED
            message = ""

        return CaseResult(
            status=status,
            exit_code=result.returncode,
            stdout=display_output(result.stdout),
            stderr=display_output(result.stderr),
            elapsed_ms=result.elapsed_ms,
            message=message,
        )

    def run_test(self, binary: Path | None, test: Test, cwd: Path | None = None) -> TestOutcome:
        """
        Run every case of a test and decide whether the test is satisfied.

        Args:
            binary: Path to the solution binary, None if compilation failed.
            test: Test to run.
            cwd: Working directory of the binary.

        Returns:
            TestOutcome with the result of each case.
        """
        if binary is None:
            cases = [
                CaseResult(status=CaseStatus.NOT_COMPILED, message="No binary to run")
                for _ in test.cases
            ]
        else:
            cases = [self.run_case(binary, case, cwd) for case in test.cases]

        satisfied = requirement_satisfied(test.requirement, (c.passed for c in cases))
        logger.debug("Test '%s': %s", test.name, "satisfied" if satisfied else "not satisfied")
        return TestOutcome(
            name=test.name,
            weight=test.weight,
            requirement=test.requirement,
            satisfied=satisfied,
            cases=cases,
        )
