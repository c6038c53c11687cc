"""
Configuration loader for the solution evaluator.

Parses the project's YAML configuration into a validated, immutable
Specification. Unknown options and analysers are reported as diagnostics
on the load result; anything malformed raises ConfigError.
"""

import shlex
import subprocess
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, TypeAdapter, ValidationError

from .config import COMMAND_REFERENCE_PREFIX, CONFIG_FILENAME, FILE_REFERENCE_PREFIX
from .models import (
    RULE_FIELDS,
    CompilerSettings,
    LoadResult,
    Rule,
    SolutionsSettings,
    Specification,
    Test,
    TestCase,
    TestSettings,
)

TOP_LEVEL_OPTIONS: tuple[str, ...] = (
    "source",
    "solutions",
    "compiler",
    "test-config",
    "analyses",
    "tests",
    "scripts",
)
CASE_FIELDS: tuple[str, ...] = ("args", "stdin", "stdout", "stderr", "exit-code", "case-insensitive")
TEST_FIELDS: tuple[str, ...] = ("name", "score", "require", "test-cases") + CASE_FIELDS

_RULE_ADAPTER = TypeAdapter(Rule)


class ConfigError(Exception):
    """Raised when the configuration cannot be turned into a Specification."""


def _describe(error: ValidationError) -> str:
    details = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "value"
        details.append(f"'{location}': {err['msg']}")
    return "; ".join(details)


def _validate(model: type[BaseModel], data: Any, option: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"'{option}' is invalid: {_describe(e)}") from e


def _check_fields(data: Any, option: str, fields: tuple[str, ...], diagnostics: list[str]) -> dict:
    """
    Ensure `data` is a mapping and report keys not listed in `fields`.

    Returns:
        The mapping itself.
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{option}' has invalid value (dictionary expected)")
    for key in data:
        if key not in fields:
            diagnostics.append(f"Configuration of '{option}' has unsupported option '{key}'")
    return data


# ===== REFERENCE EXPANSION =====


def expand_from_file(value: str, project_path: Path) -> str:
    """
    Expand a `<file` reference to the contents of the file.

    The file name is relative to the project directory. The contents are kept
    byte for byte (no newline translation). Any other string is returned
    unchanged.

    Raises:
        ConfigError: If the referenced file cannot be read or is not UTF-8.
    """
    if not value.startswith(FILE_REFERENCE_PREFIX):
        return value
    file_path = project_path / value.strip()[len(FILE_REFERENCE_PREFIX):].strip()
    try:
        return file_path.read_bytes().decode("utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read referenced file '{file_path}': {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"referenced file '{file_path}' is not valid UTF-8: {e}") from e


def expand_from_command(value: str, project_path: Path | None = None) -> str:
    """
    Expand a `$(command)` reference to the standard output of the command.

    Any other string is returned unchanged.

    Raises:
        ConfigError: If the reference is malformed or the command cannot be run.
    """
    if not value.startswith(COMMAND_REFERENCE_PREFIX):
        return value
    if not value.endswith(")"):
        raise ConfigError("command passed to stdin: missing trailing ')'")

    command = shlex.split(value[len(COMMAND_REFERENCE_PREFIX):-1])
    if not command:
        raise ConfigError("command passed to stdin: empty command")

    try:
        process = subprocess.run(
            command,
            cwd=str(project_path) if project_path else None,
            capture_output=True,
            check=False,
        )
    except OSError as e:
        raise ConfigError(f"command passed to stdin: {e}") from e

    try:
        return process.stdout.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(f"command passed to stdin: {e}") from e


def _resolve_case(case: TestCase, project_path: Path) -> TestCase:
    update: dict[str, str] = {}
    if case.stdin is not None:
        if case.stdin.startswith(FILE_REFERENCE_PREFIX):
            update["stdin"] = expand_from_file(case.stdin, project_path)
        elif case.stdin.startswith(COMMAND_REFERENCE_PREFIX):
            update["stdin"] = expand_from_command(case.stdin, project_path)
    if case.expected_stdout is not None:
        update["expected_stdout"] = expand_from_file(case.expected_stdout, project_path)
    if case.expected_stderr is not None:
        update["expected_stderr"] = expand_from_file(case.expected_stderr, project_path)
    return case.model_copy(update=update) if update else case


# ===== SECTIONS =====


def tests_from_yaml(data: Any, project_path: Path, diagnostics: list[str]) -> list[Test]:
    """
    Parse the `tests` section.

    A test either lists its cases under `test-cases` or is itself a single
    case. File and command references of every case are expanded here, once.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError("'tests' has invalid value (list expected)")

    tests = []
    for index, raw in enumerate(data):
        name = raw.get("name", f"#{index + 1}") if isinstance(raw, dict) else f"#{index + 1}"
        raw = _check_fields(raw, f"test {name}", TEST_FIELDS, diagnostics)
        if "score" not in raw:
            raise ConfigError(f"'test {name}' is missing a mandatory field 'score'")

        test_data = {key: raw[key] for key in ("name", "score", "require") if key in raw}
        if "test-cases" in raw:
            cases = raw["test-cases"]
            if not isinstance(cases, list):
                raise ConfigError(f"'test {name}' has invalid value of field 'test-cases' (list expected)")
            test_data["test-cases"] = [
                _check_fields(case, f"test {name}", CASE_FIELDS, diagnostics) for case in cases
            ]
        else:
            test_data["test-cases"] = [{key: raw[key] for key in CASE_FIELDS if key in raw}]

        test = _validate(Test, test_data, f"test {name}")
        cases = tuple(_resolve_case(case, project_path) for case in test.cases)
        tests.append(test.model_copy(update={"cases": cases}))
    return tests


def rules_from_yaml(data: Any, diagnostics: list[str]) -> list[Rule]:
    """
    Parse the `analyses` section.

    Entries naming an unknown analyser are skipped with a diagnostic.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigError("'analyses' has invalid value (list expected)")

    rules = []
    for raw in data:
        if not isinstance(raw, dict) or "analyser" not in raw:
            raise ConfigError("'analysis' is missing a mandatory field 'analyser'")
        name = raw["analyser"]
        if name not in RULE_FIELDS:
            diagnostics.append(f"Configuration contains an unsupported analysis '{name}'")
            continue
        _check_fields(raw, f"analyser {name}", RULE_FIELDS[name], diagnostics)
        try:
            rules.append(_RULE_ADAPTER.validate_python(raw))
        except ValidationError as e:
            raise ConfigError(f"'analyser {name}' is invalid: {_describe(e)}") from e
    return rules


def scripts_from_yaml(data: Any, project_path: Path) -> list[Path]:
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(s, str) for s in data):
        raise ConfigError("'scripts' has invalid value (list of strings expected)")
    return [project_path / script for script in data]


# ===== ENTRY POINTS =====


def load_specification_from_dict(data: Any, project_path: Path) -> LoadResult:
    """
    Build a Specification from already parsed configuration data.

    Args:
        data: Parsed YAML document.
        project_path: Project directory; relative references resolve against it.

    Returns:
        LoadResult with the Specification and any non-fatal diagnostics.

    Raises:
        ConfigError: If the configuration is malformed.
    """
    if not isinstance(data, dict):
        raise ConfigError("invalid format (should be a YAML dictionary)")

    diagnostics: list[str] = []
    _check_fields(data, "config", TOP_LEVEL_OPTIONS, diagnostics)

    source = data.get("source")
    if source is None:
        raise ConfigError("'config' is missing a mandatory field 'source'")
    if not isinstance(source, str) or not source.strip():
        raise ConfigError("'config' has invalid value of field 'source' (string expected)")

    solutions_data = _check_fields(data.get("solutions"), "solutions", ("exclude-dirs", "prefix"), diagnostics)
    compiler_data = _check_fields(data.get("compiler"), "compiler", ("CC", "CFLAGS", "LDFLAGS"), diagnostics)
    test_config = _check_fields(data.get("test-config"), "test-config", ("timeout",), diagnostics)

    solutions = _validate(SolutionsSettings, solutions_data, "solutions")
    compiler = _validate(CompilerSettings, compiler_data, "compiler")
    settings = _validate(TestSettings, test_config, "test-config")

    specification = Specification(
        project_path=project_path,
        source=source.strip(),
        solutions=solutions,
        compiler=compiler,
        timeout_ms=settings.timeout,
        tests=tuple(tests_from_yaml(data.get("tests"), project_path, diagnostics)),
        rules=tuple(rules_from_yaml(data.get("analyses"), diagnostics)),
        scripts=tuple(scripts_from_yaml(data.get("scripts"), project_path)),
    )
    return LoadResult(specification=specification, diagnostics=diagnostics)


def load_specification(project_path: Path, config_file: Path | None = None) -> LoadResult:
    """
    Load the project configuration from a YAML file.

    Args:
        project_path: Project directory containing the solutions.
        config_file: Configuration file, relative to `project_path` unless
            absolute. Defaults to `config.yaml`.

    Returns:
        LoadResult with the Specification and any non-fatal diagnostics.

    Raises:
        ConfigError: If the file cannot be read or the configuration is invalid.
    """
    config_path = project_path / (config_file or CONFIG_FILENAME)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing error: {e}") from e
    except OSError as e:
        raise ConfigError(f"cannot read configuration: {e}") from e

    return load_specification_from_dict(data, project_path)
