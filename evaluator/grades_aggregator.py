"""
Grades aggregator for collecting and exporting all solution reports.

Saves reports to a centralized folder with JSON and CSV summaries.
"""

import csv
import json
import threading
from datetime import datetime
from pathlib import Path

from .config import (
    DEFAULT_GRADES_DIR,
    GRADES_CSV_FILENAME,
    GRADES_SUMMARY_FILENAME,
)
from .models import SolutionReport


class GradesAggregator:
    """
    Aggregates reports from multiple solutions and exports to various formats.

    Reports may be added from several threads.
    """

    def __init__(self, output_dir: Path | None = None) -> None:
        """
        Initialize the grades aggregator.

        Args:
            output_dir: Directory to save aggregated grades. Defaults to ./grades/
        """
        self.output_dir = output_dir or DEFAULT_GRADES_DIR
        self.reports: list[SolutionReport] = []
        self.timestamp = datetime.now().isoformat()
        self._lock = threading.Lock()

    def add_report(self, report: SolutionReport) -> None:
        """
        Add a solution report to the aggregator.

        Args:
            report: SolutionReport to add.
        """
        with self._lock:
            self.reports.append(report)

    def save_all(self) -> dict[str, Path]:
        """
        Save all reports to the output directory.

        Creates:
        - Individual JSON files per solution
        - Summary JSON with all reports
        - Summary CSV for easy import to gradebook

        Returns:
            Dictionary of output file paths.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        output_files: dict[str, Path] = {}

        with self._lock:
            reports = sorted(self.reports, key=lambda r: r.name)

        for report in reports:
            individual_path = self.output_dir / f"{report.name}.json"
            with open(individual_path, "w", encoding="utf-8") as f:
                f.write(report.model_dump_json(indent=2))
            output_files[report.name] = individual_path

        summary_path = self.output_dir / GRADES_SUMMARY_FILENAME
        summary_data = {
            "timestamp": self.timestamp,
            "total_solutions": len(reports),
            "statistics": self._calculate_statistics(reports),
            "grades": [report.model_dump(mode="json") for report in reports],
        }
        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(summary_data, f, indent=2)
        output_files["summary_json"] = summary_path

        csv_path = self.output_dir / GRADES_CSV_FILENAME
        self._save_csv(csv_path, reports)
        output_files["summary_csv"] = csv_path

        return output_files

    @staticmethod
    def _calculate_statistics(reports: list[SolutionReport]) -> dict:
        """
        Calculate summary statistics for all reports.

        Returns:
            Dictionary with statistics.
        """
        if not reports:
            return {}

        scores = [r.score for r in reports]
        compiled = sum(1 for r in reports if r.compiled)

        return {
            "average_score": round(sum(scores) / len(scores), 2),
            "highest_score": max(scores),
            "lowest_score": min(scores),
            "compiled_count": compiled,
            "compiled_percent": (compiled / len(reports)) * 100,
        }

    @staticmethod
    def _save_csv(csv_path: Path, reports: list[SolutionReport]) -> None:
        """
        Save reports as CSV file.

        Args:
            csv_path: Path to save CSV file.
            reports: Reports to write, one row each.
        """
        if not reports:
            return

        # Every report has the same tests; rules are missing where analysis was skipped
        test_names = [t.name or f"test {i}" for i, t in enumerate(reports[0].tests, 1)]
        rule_names = [r.analyser for r in max(reports, key=lambda r: len(r.rules)).rules]

        header = ["solution", "score", "compiled", "tests_passed", "tests_total"]
        header.extend(test_names)
        header.extend(rule_names)
        header.append("errors")

        with open(csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)

            for report in reports:
                row = [
                    report.name,
                    f"{report.score:.2f}",
                    "Yes" if report.compiled else "No",
                    report.tests_passed,
                    report.tests_total,
                ]
                row.extend(f"{t.awarded}/{t.weight}" for t in report.tests)
                applied = [r.applied for r in report.rules]
                row.extend(applied + [""] * (len(rule_names) - len(applied)))
                row.append(" | ".join(report.errors)[:200])
                writer.writerow(row)
