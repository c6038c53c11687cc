"""
Evaluation stages.

Every solution passes through the same fixed sequence of stages:
compile, extract, test, analyse, scripts. A stage receives the solution
state and returns an updated copy; failures are recorded on the state and
never raised, so later stages always run.
"""

import logging
import math
from pathlib import Path

from .analyses import evaluate_rules, extract_includes
from .config import COMPILE_TIMEOUT_SECONDS, SCRIPT_TIMEOUT_SECONDS
from .local_runner import LocalRunner
from .models import Solution, SolutionStatus, Specification
from .process import display_output, run_process

logger = logging.getLogger(__name__)


def _advance(solution: Solution, status: SolutionStatus, error: str | None = None, **update) -> Solution:
    """Return a copy of `solution` moved to `status`, with an optional recorded error."""
    update["status"] = status
    if error is not None:
        logger.info("%s: %s", solution.name, error)
        update["errors"] = [*solution.errors, error]
    return solution.model_copy(update=update)


class Stage:
    """A step of the evaluation pipeline."""

    name: str = "stage"
    status: SolutionStatus = SolutionStatus.CREATED

    def execute(self, solution: Solution) -> Solution:
        raise NotImplementedError

    def fail(self, solution: Solution, error: str) -> Solution:
        """Record an error that escaped `execute` and move past this stage."""
        return _advance(solution, self.status, error)


class CompileStage(Stage):
    """Builds the solution binary with the configured compiler."""

    name = "compile"
    status = SolutionStatus.COMPILED

    def __init__(self, spec: Specification) -> None:
        self.settings = spec.compiler

    def command(self, solution: Solution) -> list[str]:
        """Compiler command line, run inside the solution directory."""
        return [
            self.settings.compiler,
            *self.settings.c_flags,
            "-o",
            solution.bin_file.name,
            str(solution.src_file.relative_to(solution.path)),
            *self.settings.ld_flags,
        ]

    def execute(self, solution: Solution) -> Solution:
        try:
            if not solution.src_file.is_file():
                return _advance(
                    solution,
                    SolutionStatus.COMPILED,
                    f"Compilation skipped: source file '{solution.src_file.name}' not found",
                    compiled=False,
                )
            # A binary left over from an earlier build must never be scored
            solution.bin_file.unlink(missing_ok=True)
        except OSError as e:
            return _advance(solution, SolutionStatus.COMPILED, f"Cannot prepare compilation: {e}", compiled=False)

        result = run_process(self.command(solution), timeout=COMPILE_TIMEOUT_SECONDS, cwd=solution.path)

        if result.spawn_error is not None:
            error = f"Compiler could not be started: {result.spawn_error}"
        elif result.timed_out:
            error = f"Compilation timed out after {COMPILE_TIMEOUT_SECONDS} s"
        elif result.returncode != 0:
            error = f"Compilation failed (exit code {result.returncode}): {display_output(result.stderr).strip()[:500]}"
        elif not solution.bin_file.is_file():
            error = f"Compiler did not produce '{solution.bin_file.name}'"
        else:
            return _advance(solution, SolutionStatus.COMPILED, compiled=True)

        return _advance(solution, SolutionStatus.COMPILED, error, compiled=False)


class ExtractStage(Stage):
    """Reads the source text and the names of the included headers."""

    name = "extract"
    status = SolutionStatus.EXTRACTED

    def execute(self, solution: Solution) -> Solution:
        try:
            raw = solution.src_file.read_bytes()
        except OSError as e:
            return _advance(solution, SolutionStatus.EXTRACTED, f"Cannot read source: {e}")

        source_text = raw.decode("utf-8", errors="replace")
        return _advance(
            solution,
            SolutionStatus.EXTRACTED,
            source_text=source_text,
            included_names=extract_includes(source_text),
        )


class TestStage(Stage):
    """Runs the binary on every test and adds the weights of satisfied tests."""

    __test__ = False

    name = "test"
    status = SolutionStatus.TESTED

    def __init__(self, spec: Specification) -> None:
        self.tests = spec.tests
        self.runner = LocalRunner(timeout_ms=spec.timeout_ms)

    def execute(self, solution: Solution) -> Solution:
        binary = solution.bin_file if solution.compiled else None
        outcomes = [self.runner.run_test(binary, test, cwd=solution.path) for test in self.tests]
        return _advance(
            solution,
            SolutionStatus.TESTED,
            test_outcomes=outcomes,
            score=solution.score + sum(o.awarded for o in outcomes),
        )


class AnalysisStage(Stage):
    """Applies the analysis rules to the extracted source."""

    name = "analyse"
    status = SolutionStatus.ANALYSED

    def __init__(self, spec: Specification) -> None:
        self.rules = spec.rules

    def execute(self, solution: Solution) -> Solution:
        if solution.source_text is None:
            error = "Analysis skipped: no source text" if self.rules else None
            return _advance(solution, SolutionStatus.ANALYSED, error)

        outcomes = evaluate_rules(self.rules, solution.source_text, solution.included_names)
        return _advance(
            solution,
            SolutionStatus.ANALYSED,
            rule_outcomes=outcomes,
            score=solution.score + sum(o.applied for o in outcomes),
        )


def parse_score_delta(output: str) -> float | None:
    """Interpret script output as a score delta; None if it is not a finite number."""
    try:
        value = float(output.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


class ScriptStage(Stage):
    """Runs the auxiliary scripts; a number printed by a script is added to the score."""

    name = "scripts"
    status = SolutionStatus.SCRIPTED

    def __init__(self, spec: Specification) -> None:
        self.scripts: tuple[Path, ...] = spec.scripts

    def execute(self, solution: Solution) -> Solution:
        deltas = list(solution.script_deltas)
        errors = list(solution.errors)
        score = solution.score

        for script in self.scripts:
            result = run_process(
                [script.resolve(), solution.path.resolve()],
                timeout=SCRIPT_TIMEOUT_SECONDS,
                cwd=solution.path,
            )
            if result.spawn_error is not None:
                errors.append(f"Script '{script.name}' could not be started: {result.spawn_error}")
                continue
            if result.timed_out:
                errors.append(f"Script '{script.name}' timed out")
                continue
            if result.returncode != 0:
                errors.append(f"Script '{script.name}' failed (exit code {result.returncode})")
                continue
            delta = parse_score_delta(display_output(result.stdout))
            if delta is not None:
                deltas.append(delta)
                score += delta

        return _advance(
            solution,
            SolutionStatus.SCRIPTED,
            script_deltas=deltas,
            errors=errors,
            score=score,
        )


def build_stages(spec: Specification) -> list[Stage]:
    """Create the stage sequence run on every solution."""
    return [
        CompileStage(spec),
        ExtractStage(),
        TestStage(spec),
        AnalysisStage(spec),
        ScriptStage(spec),
    ]
