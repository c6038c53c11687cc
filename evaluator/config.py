"""
Configuration constants for the solution evaluator.
"""

from pathlib import Path


# Project layout
CONFIG_FILENAME: str = "config.yaml"
SOLUTION_PREFIX: str = "x"

# Compiler defaults
DEFAULT_COMPILER: str = "gcc"
OBJECT_SUFFIX: str = ".o"

# Execution configuration
DEFAULT_TEST_TIMEOUT_MS: int = 5000
COMPILE_TIMEOUT_SECONDS: int = 120
SCRIPT_TIMEOUT_SECONDS: int = 120
KILL_GRACE_SECONDS: float = 5.0

# Reference prefixes inside test case strings
FILE_REFERENCE_PREFIX: str = "<"
COMMAND_REFERENCE_PREFIX: str = "$("

# Source scanning patterns
# Matches: `#include <stdio.h>` or `  #  include "list.h"`
INCLUDE_PATTERN: str = r'^[ \t]*#[ \t]*include[ \t]*[<"]([^>"\n]+)[>"]'
CALL_PATTERN_TEMPLATE: str = r"(?<![\w.>]){name}\s*\("

# Report output
DEFAULT_GRADES_DIR: Path = Path("grades")
GRADES_SUMMARY_FILENAME: str = "grades_summary.json"
GRADES_CSV_FILENAME: str = "grades_summary.csv"
SCORE_SEPARATOR: str = ": "
