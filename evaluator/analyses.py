"""
Pattern-based source analyses.

Scans C source text without parsing it, so that sources which do not compile
can still be analysed. Provides include extraction for the extract stage and
the rule engine applied by the analysis stage.
"""

import re
from typing import Callable, Iterable

from .config import CALL_PATTERN_TEMPLATE, INCLUDE_PATTERN
from .models import NoCallRule, NoGlobalsRule, NoHeaderRule, Rule, RuleOutcome

_INCLUDE_RE = re.compile(INCLUDE_PATTERN, re.MULTILINE)
_IDENTIFIER_RE = re.compile(r"[A-Za-z_]\w*")
_FUNCTION_POINTER_RE = re.compile(r"^[^(]*\(\s*\*+\s*(?:const\s+)?([A-Za-z_]\w*)\s*\)")
_FUNCTION_BODY_RE = re.compile(r"\)[\w\s]*\{\}$")
_BRACKETS_RE = re.compile(r"\[[^\]]*\]")
_INITIALIZER_LIST_RE = re.compile(r"=\s*\{\}")

# Top-level statements starting with these never declare variables
_NON_DECLARATIONS = {
    "typedef", "using", "template", "namespace", "static_assert", "_Static_assert", "asm",
}
_TAG_KEYWORDS = {"struct", "union", "enum", "class"}
_KEYWORDS = {
    "auto", "char", "const", "double", "extern", "float", "int", "long", "register",
    "short", "signed", "static", "unsigned", "void", "volatile", "_Bool", "bool",
    "inline", "restrict", "_Thread_local", "thread_local",
} | _TAG_KEYWORDS


# ===== SOURCE SCANNING =====


def strip_comments(source: str, strip_literals: bool = False) -> str:
    """
    Remove comments from C source, keeping line structure.

    Args:
        source: Source text.
        strip_literals: Also empty string and character literals
            (the quotes are kept).

    Returns:
        Source text with comments replaced by whitespace.
    """
    out: list[str] = []
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = source.find("\n", i)
            i = n if end == -1 else end
        elif ch == "/" and nxt == "*":
            end = source.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append(" ")
            out.append("\n" * source.count("\n", i, end))
            i = end
        elif ch in "\"'":
            j = i + 1
            while j < n and source[j] != ch and source[j] != "\n":
                j += 2 if source[j] == "\\" else 1
            # unterminated literals end before the newline
            end = j + 1 if j < n and source[j] == ch else min(j, n)
            out.append(ch + ch if strip_literals else source[i:end])
            i = end
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def strip_preprocessor(source: str) -> str:
    """Blank out preprocessor lines, including their continuation lines."""
    lines = source.split("\n")
    continued = False
    for idx, line in enumerate(lines):
        if continued or line.lstrip().startswith("#"):
            continued = line.rstrip().endswith("\\")
            lines[idx] = ""
    return "\n".join(lines)


def extract_includes(source: str) -> frozenset[str]:
    """
    Find the names of all headers included by `source`.

    Both `<header.h>` and `"header.h"` forms are recognised; includes inside
    comments are ignored.
    """
    return frozenset(m.group(1).strip() for m in _INCLUDE_RE.finditer(strip_comments(source)))


def _code_only(source: str) -> str:
    return strip_preprocessor(strip_comments(source, strip_literals=True))


def _top_level_statements(code: str) -> list[str]:
    """
    Split code into statements at brace depth zero.

    Brace groups are collapsed to `{}` and function definitions are dropped.
    """
    statements: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in code:
        if ch == "{":
            if depth == 0:
                current.append("{")
            depth += 1
        elif ch == "}":
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                current.append("}")
                if _FUNCTION_BODY_RE.search("".join(current).rstrip()):
                    current = []
        elif depth > 0:
            continue
        elif ch == ";":
            statements.append(" ".join("".join(current).split()))
            current = []
        else:
            current.append(ch)
    return [s for s in statements if s]


def _split_top_level(text: str, sep: str = ",") -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in text:
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(depth - 1, 0)
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts]


def _declarator_name(declarator: str) -> str | None:
    declarator = _split_top_level(declarator, "=")[0]
    declarator = _BRACKETS_RE.sub("", declarator)
    if "(" in declarator:
        match = _FUNCTION_POINTER_RE.match(declarator)
        return match.group(1) if match else None
    names = [w for w in _IDENTIFIER_RE.findall(declarator) if w not in _KEYWORDS]
    return names[-1] if names else None


def _declared_variables(statement: str) -> list[str]:
    statement = _INITIALIZER_LIST_RE.sub("= 0", statement)
    words = _IDENTIFIER_RE.findall(statement)
    if not words or words[0] in _NON_DECLARATIONS:
        return []

    if "{}" in statement:
        # struct/union/enum body followed by its declarators
        declarators = _split_top_level(statement[statement.rindex("{}") + 2:])
        if not declarators[0]:
            return []
    else:
        declarators = _split_top_level(statement)
        head = _BRACKETS_RE.sub("", _split_top_level(declarators[0], "=")[0])
        head_words = _IDENTIFIER_RE.findall(head)
        if len(head_words) < 2:
            return []
        if head_words[0] in _TAG_KEYWORDS and len(head_words) == 2 and not re.search(r"[*(]", head):
            return []
        if "(" in head and not _FUNCTION_POINTER_RE.match(head):
            # function prototype or macro invocation
            return []

    names = []
    for declarator in declarators:
        name = _declarator_name(declarator)
        if name:
            names.append(name)
    return names


def find_global_variables(source: str) -> list[str]:
    """
    List the variables declared at file scope, in source order.

    Declarations inside function bodies, type definitions, prototypes and
    preprocessor lines are not reported.
    """
    names: list[str] = []
    for statement in _top_level_statements(_code_only(source)):
        names.extend(_declared_variables(statement))
    return names


# ===== RULE ENGINE =====


def _no_call_violated(rule: NoCallRule, code: str, included_names: frozenset[str]) -> bool:
    for name in sorted(rule.functions):
        pattern = CALL_PATTERN_TEMPLATE.format(name=re.escape(name))
        if re.search(pattern, code):
            return True
    return False


def _no_header_violated(rule: NoHeaderRule, code: str, included_names: frozenset[str]) -> bool:
    return rule.header in included_names


def _no_globals_violated(rule: NoGlobalsRule, code: str, included_names: frozenset[str]) -> bool:
    for statement in _top_level_statements(code):
        if any(name not in rule.exceptions for name in _declared_variables(statement)):
            return True
    return False


RULE_EVALUATORS: dict[str, Callable[..., bool]] = {
    "no-call": _no_call_violated,
    "no-header": _no_header_violated,
    "no-globals": _no_globals_violated,
}


def evaluate_rules(
    rules: Iterable[Rule],
    source: str,
    included_names: frozenset[str],
) -> list[RuleOutcome]:
    """
    Apply every rule to the source.

    Each rule contributes its penalty at most once, however many times the
    violation occurs.

    Returns:
        One RuleOutcome per rule, in rule order.
    """
    code = _code_only(source)
    outcomes = []
    for rule in rules:
        violated = RULE_EVALUATORS[rule.analyser](rule, code, included_names)
        outcomes.append(RuleOutcome(analyser=rule.analyser, violated=violated, penalty=rule.penalty))
    return outcomes
