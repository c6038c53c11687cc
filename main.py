"""
Solution evaluator: compile, test and analyse student solutions

Usage:
  main.py <project> [--config=PATH] [--solution=NAME] [--jobs=N] [--grades-dir=PATH] [--verbose]
  main.py (-h | --help)

Options:
  --config=PATH      Configuration file, relative to the project directory [default: config.yaml].
  --solution=NAME    Evaluate only the solution in directory NAME.
  --jobs=N           Number of solutions evaluated in parallel [default: 1].
  --grades-dir=PATH  Save JSON and CSV summaries of all results to PATH.
  --verbose          Print per-test and per-rule results.
  -h --help          Show this screen.
"""

import logging
import sys
from pathlib import Path

from docopt import docopt

from evaluator.config_loader import ConfigError, load_specification
from evaluator.grades_aggregator import GradesAggregator
from evaluator.models import SolutionReport
from evaluator.pipeline import format_report_line, run_evaluation


def print_report_details(report: SolutionReport) -> None:
    """
    Print the breakdown of a solution's score to console.

    Args:
        report: SolutionReport to describe.
    """
    print(f"  Compiled: {'Yes' if report.compiled else 'No'}")
    for test in report.tests:
        status = "+" if test.satisfied else "-"
        passed = sum(1 for c in test.cases if c.passed)
        print(f"  [{status}] {test.name or 'test'}: {test.awarded:g}/{test.weight:g} ({passed}/{len(test.cases)} cases)")
        for i, case in enumerate(test.cases, 1):
            if not case.passed:
                detail = f" - {case.message}" if case.message else ""
                print(f"      case {i}: {case.status.value}{detail}")
    for rule in report.rules:
        if rule.violated:
            print(f"  [!] {rule.analyser}: {rule.penalty:g}")
    for delta in report.script_deltas:
        print(f"  [s] script: {delta:+g}")
    for error in report.errors:
        print(f"  Error: {error}")


def main() -> int:
    """
    Main CLI entrypoint.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    arguments = docopt(__doc__)
    project_path = Path(arguments["<project>"])
    verbose = arguments["--verbose"]

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s - %(message)s",
    )

    if not project_path.is_dir():
        print(f"Error: Project directory not found: {project_path}")
        return 1

    try:
        jobs = int(arguments["--jobs"])
        if jobs < 1:
            raise ValueError(jobs)
    except ValueError:
        print(f"Error: --jobs must be a positive integer, got '{arguments['--jobs']}'")
        return 1

    try:
        loaded = load_specification(project_path, Path(arguments["--config"]))
    except ConfigError as e:
        print(f"Error loading config: {e}")
        return 1

    for diagnostic in loaded.diagnostics:
        print(f"Warning: {diagnostic}")

    grades_dir = Path(arguments["--grades-dir"]) if arguments["--grades-dir"] else None
    aggregator = GradesAggregator(output_dir=grades_dir) if grades_dir else None

    def on_report(report: SolutionReport) -> None:
        print(format_report_line(report))
        if verbose:
            print_report_details(report)
        if aggregator:
            aggregator.add_report(report)

    try:
        results = run_evaluation(
            loaded.specification,
            solution_filter=arguments["--solution"],
            jobs=jobs,
            on_report=on_report,
        )
    except KeyboardInterrupt:
        print("\nEvaluation interrupted by user.")
        return 1

    if arguments["--solution"] and not results:
        print(f"Error: Solution not found: {arguments['--solution']}")
        return 1

    if aggregator and results:
        output_files = aggregator.save_all()
        print(f"\nSummary JSON: {output_files.get('summary_json')}")
        print(f"Summary CSV:  {output_files.get('summary_csv')}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
