"""
Evaluation orchestrator.

Discovers the solution directories of a project, drives each solution
through the stage sequence and reports its final score. Solutions are
independent, so they are evaluated by a bounded pool of worker threads.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Callable

from .config import SCORE_SEPARATOR
from .models import Solution, SolutionReport, SolutionStatus, Specification
from .stages import Stage, build_stages

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


def round_score(score: float) -> Decimal:
    """
    Round a score to two decimal places.

    The shortest decimal representation of the float is rounded half up,
    so 1.005 becomes 1.01 and -0.125 becomes -0.13.
    """
    rounded = Decimal(repr(score)).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return rounded if rounded != 0 else Decimal("0.00")


def format_score(score: float) -> str:
    """Format a score with exactly two decimal places."""
    return str(round_score(score))


def format_report_line(report: SolutionReport) -> str:
    """One line of the run output: the solution label and its score."""
    return f"{report.name}{SCORE_SEPARATOR}{format_score(report.raw_score)}"


def find_solutions(spec: Specification, solution_filter: str | None = None) -> list[Solution]:
    """
    Find all solution directories of a project.

    Solutions are sub-directories of the project directory whose name starts
    with the configured prefix and which are not excluded.

    Args:
        spec: Loaded specification.
        solution_filter: Only return the solution with this name.

    Returns:
        List of initial Solution states, sorted by name.
    """
    settings = spec.solutions
    solutions: list[Solution] = []

    for item in sorted(spec.project_path.iterdir()):
        if not item.is_dir():
            continue
        if not item.name.startswith(settings.prefix) or item.name in settings.exclude_dirs:
            continue
        if solution_filter is not None and item.name != solution_filter:
            continue
        solutions.append(Solution.create(item, spec))

    return solutions


def make_report(solution: Solution) -> SolutionReport:
    """Summarize a fully evaluated solution."""
    return SolutionReport(
        name=solution.name,
        path=str(solution.path),
        score=float(round_score(solution.score)),
        raw_score=solution.score,
        compiled=solution.compiled,
        tests_passed=sum(1 for t in solution.test_outcomes if t.satisfied),
        tests_total=len(solution.test_outcomes),
        tests=solution.test_outcomes,
        rules=solution.rule_outcomes,
        script_deltas=solution.script_deltas,
        errors=solution.errors,
    )


def evaluate_solution(solution: Solution, stages: list[Stage]) -> Solution:
    """
    Run every stage on one solution, in order.

    A stage failure is recorded on the solution and the next stage still runs,
    including a filesystem error raised out of the stage itself.

    Returns:
        The final solution state, marked as reported.
    """
    for stage in stages:
        logger.debug("%s: running stage '%s'", solution.name, stage.name)
        try:
            solution = stage.execute(solution)
        except OSError as e:
            solution = stage.fail(solution, f"Stage '{stage.name}' failed: {e}")
    return solution.model_copy(update={"status": SolutionStatus.REPORTED})


def run_evaluation(
    spec: Specification,
    solution_filter: str | None = None,
    jobs: int = 1,
    on_report: Callable[[SolutionReport], None] | None = None,
) -> dict[str, float]:
    """
    Evaluate all solutions of a project.

    Args:
        spec: Loaded specification.
        solution_filter: Evaluate only the solution with this name.
        jobs: Maximum number of solutions evaluated concurrently.
        on_report: Called with each report as soon as its solution is done.
            Calls are made from the calling thread, one at a time.

    Returns:
        Mapping of solution name to its score rounded to two decimal places.
    """
    stages = build_stages(spec)
    solutions = find_solutions(spec, solution_filter)
    logger.info("Found %d solutions in %s", len(solutions), spec.project_path)

    results: dict[str, float] = {}
    with ThreadPoolExecutor(max_workers=max(jobs, 1), thread_name_prefix="evaluator") as executor:
        futures = [executor.submit(evaluate_solution, solution, stages) for solution in solutions]
        try:
            for future in as_completed(futures):
                report = make_report(future.result())
                results[report.name] = report.score
                if on_report is not None:
                    on_report(report)
        except KeyboardInterrupt:
            executor.shutdown(wait=True, cancel_futures=True)
            raise

    return results
