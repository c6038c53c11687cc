"""
Pydantic models for the solution evaluator.

Defines the immutable specification parsed from the project configuration,
the per-solution state threaded through the evaluation stages, and the
result types reported for each solution.
"""

import shlex
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from .config import DEFAULT_COMPILER, DEFAULT_TEST_TIMEOUT_MS, OBJECT_SUFFIX, SOLUTION_PREFIX


class SpecModel(BaseModel):
    """Base for the read-only specification models (YAML keys are aliases, numbers are finite)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore", allow_inf_nan=False)


# ===== SPECIFICATION =====


class Requirement(str, Enum):
    """Policy deriving a test's result from the results of its cases."""

    ANY = "any"
    ALL = "all"


class TestCase(SpecModel):
    """
    One invocation of the solution binary and its expected output.

    Attributes:
        args: Command line arguments passed to the binary.
        stdin: Text fed to standard input (empty input when unset).
        expected_stdout: Expected standard output, not checked when unset.
        expected_stderr: Expected standard error, not checked when unset.
        exit_code: Expected exit status, not checked when unset.
        case_insensitive: Compare outputs after lower-casing both sides.
    """

    __test__ = False

    args: tuple[str, ...] = Field(default=(), description="Arguments of the binary")
    stdin: str | None = Field(default=None, description="Resolved standard input")
    expected_stdout: str | None = Field(default=None, alias="stdout")
    expected_stderr: str | None = Field(default=None, alias="stderr")
    exit_code: int | None = Field(default=None, alias="exit-code")
    case_insensitive: bool = Field(default=False, alias="case-insensitive")

    @field_validator("args", mode="before")
    @classmethod
    def _split_args(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(value.split())
        return value


class Test(SpecModel):
    """
    A named, weighted group of test cases.

    Attributes:
        name: Test name used in reports.
        weight: Score awarded when the test is satisfied.
        cases: Test cases (at least one).
        requirement: Whether all or any of the cases must pass.
    """

    __test__ = False

    name: str = Field(default="", description="Test name")
    weight: float = Field(..., alias="score", description="Score awarded when satisfied")
    cases: tuple[TestCase, ...] = Field(..., alias="test-cases", min_length=1)
    requirement: Requirement = Field(default=Requirement.ALL, alias="require")


class NoCallRule(SpecModel):
    """Penalise calls of any of the listed functions."""

    analyser: Literal["no-call"] = "no-call"
    functions: frozenset[str] = Field(..., alias="funs")
    penalty: float


class NoHeaderRule(SpecModel):
    """Penalise inclusion of a header."""

    analyser: Literal["no-header"] = "no-header"
    header: str
    penalty: float


class NoGlobalsRule(SpecModel):
    """Penalise top-level variable declarations not listed in `exceptions`."""

    analyser: Literal["no-globals"] = "no-globals"
    penalty: float
    exceptions: frozenset[str] = Field(default=frozenset(), alias="except")


Rule = Annotated[Union[NoCallRule, NoHeaderRule, NoGlobalsRule], Field(discriminator="analyser")]

RULE_FIELDS: dict[str, tuple[str, ...]] = {
    "no-call": ("analyser", "funs", "penalty"),
    "no-header": ("analyser", "header", "penalty"),
    "no-globals": ("analyser", "penalty", "except"),
}


class CompilerSettings(SpecModel):
    """Compiler invocation template."""

    compiler: str = Field(default=DEFAULT_COMPILER, alias="CC")
    c_flags: tuple[str, ...] = Field(default=(), alias="CFLAGS")
    ld_flags: tuple[str, ...] = Field(default=(), alias="LDFLAGS")

    @field_validator("c_flags", "ld_flags", mode="before")
    @classmethod
    def _split_flags(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            return tuple(shlex.split(value))
        return value


class SolutionsSettings(SpecModel):
    """How solution directories are discovered in the project directory."""

    exclude_dirs: tuple[str, ...] = Field(default=(), alias="exclude-dirs")
    prefix: str = Field(default=SOLUTION_PREFIX)


class TestSettings(SpecModel):
    """Test execution settings."""

    __test__ = False

    timeout: PositiveInt = Field(default=DEFAULT_TEST_TIMEOUT_MS, description="Timeout in ms")


class Specification(SpecModel):
    """
    Validated description of one evaluation run.

    Built once by the loader and shared read-only by all solutions.
    """

    project_path: Path
    source: str = Field(..., min_length=1, description="Name of the solution source file")
    solutions: SolutionsSettings = Field(default_factory=SolutionsSettings)
    compiler: CompilerSettings = Field(default_factory=CompilerSettings)
    timeout_ms: PositiveInt = Field(default=DEFAULT_TEST_TIMEOUT_MS)
    tests: tuple[Test, ...] = ()
    rules: tuple[Rule, ...] = ()
    scripts: tuple[Path, ...] = ()

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


class LoadResult(BaseModel):
    """A loaded specification with the non-fatal diagnostics found while loading it."""

    specification: Specification
    diagnostics: list[str] = Field(default_factory=list)


# ===== SOLUTION STATE =====


class SolutionStatus(str, Enum):
    """Last stage completed for a solution."""

    CREATED = "created"
    COMPILED = "compiled"
    EXTRACTED = "extracted"
    TESTED = "tested"
    ANALYSED = "analysed"
    SCRIPTED = "scripted"
    REPORTED = "reported"


class CaseStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SPAWN_ERROR = "spawn_error"
    NOT_COMPILED = "not_compiled"


class CaseResult(BaseModel):
    """
    Result of running the binary on one test case.

    Attributes:
        status: Outcome of the case.
        exit_code: Exit status of the process, None if it did not exit.
        stdout: Captured standard output.
        stderr: Captured standard error.
        elapsed_ms: Wall-clock duration of the run.
        message: Diagnostic for spawn errors and timeouts.
    """

    status: CaseStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = Field(default=0, ge=0)
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASSED


class TestOutcome(BaseModel):
    """Result of one test: its cases and the score awarded for it."""

    __test__ = False

    name: str
    weight: float
    requirement: Requirement
    satisfied: bool
    cases: list[CaseResult] = Field(default_factory=list)

    @property
    def awarded(self) -> float:
        return self.weight if self.satisfied else 0.0


class RuleOutcome(BaseModel):
    """Result of one analysis rule."""

    analyser: str
    violated: bool
    penalty: float

    @property
    def applied(self) -> float:
        return self.penalty if self.violated else 0.0


class Solution(BaseModel):
    """
    State of one solution as it moves through the evaluation stages.

    Stages never modify a Solution in place: each returns an updated copy.

    Attributes:
        name: Solution directory name, used as the report label.
        path: Solution directory.
        src_file: Source file of the solution.
        obj_file: Object file derived from the source name.
        bin_file: Binary produced by the compile stage.
        status: Last completed stage.
        compiled: Whether the compile stage produced the binary.
        source_text: Source text read by the extract stage.
        included_names: Headers included by the source.
        score: Running score, only ever changed by addition.
        errors: Recoverable stage errors.
    """

    name: str
    path: Path
    src_file: Path
    obj_file: Path
    bin_file: Path
    status: SolutionStatus = SolutionStatus.CREATED
    compiled: bool = False
    source_text: str | None = None
    included_names: frozenset[str] = frozenset()
    score: float = 0.0
    test_outcomes: list[TestOutcome] = Field(default_factory=list)
    rule_outcomes: list[RuleOutcome] = Field(default_factory=list)
    script_deltas: list[float] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def create(cls, path: Path, spec: Specification) -> "Solution":
        """Create the initial state for the solution in directory `path`."""
        src_file = path / spec.source
        bin_file = path / Path(spec.source).stem
        if bin_file == src_file:
            bin_file = bin_file.with_suffix(".out")
        return cls(
            name=path.name,
            path=path,
            src_file=src_file,
            obj_file=src_file.with_suffix(OBJECT_SUFFIX),
            bin_file=bin_file,
        )


class SolutionReport(BaseModel):
    """
    Final report of a solution.

    Attributes:
        name: Solution label.
        path: Solution directory.
        score: Score rounded to two decimal places.
        raw_score: Unrounded sum of all stage contributions.
        compiled: Whether compilation succeeded.
        tests_passed: Number of satisfied tests.
        tests_total: Number of tests.
        tests: Per-test outcomes.
        rules: Per-rule outcomes.
        script_deltas: Score deltas reported by scripts.
        errors: Recoverable stage errors.
    """

    name: str
    path: str
    score: float
    raw_score: float
    compiled: bool
    tests_passed: int = Field(default=0, ge=0)
    tests_total: int = Field(default=0, ge=0)
    tests: list[TestOutcome] = Field(default_factory=list)
    rules: list[RuleOutcome] = Field(default_factory=list)
    script_deltas: list[float] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
