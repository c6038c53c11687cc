"""
Tests for the source analyses.

Tests include extraction, file-scope variable detection and the rule
engine, including sources that would not compile.
"""

import pytest

from evaluator.analyses import (
    evaluate_rules,
    extract_includes,
    find_global_variables,
    strip_comments,
)
from evaluator.models import NoCallRule, NoGlobalsRule, NoHeaderRule


def violated(rule, source, included_names=frozenset()):
    return evaluate_rules([rule], source, included_names)[0].violated


COUNTER_SOURCE = """#include <stdio.h>

int counter;

void bump(void) { counter++; counter++; counter++; }

int main(void) {
    counter = 0;
    bump(); bump();
    counter += 1; counter += 1; counter += 1;
    printf("%d\\n", counter);
    return counter;
}
"""


class TestExtractIncludes:
    """Test header name extraction."""

    def test_angle_and_quoted_includes(self):
        source = '#include <stdio.h>\n#include "list.h"\nint main(void) { return 0; }\n'
        assert extract_includes(source) == {"stdio.h", "list.h"}

    def test_spacing_variants(self):
        source = "  #  include   <stdlib.h>\n#include<string.h>\n"
        assert extract_includes(source) == {"stdlib.h", "string.h"}

    def test_commented_includes_ignored(self):
        source = "// #include <math.h>\n/* #include <time.h> */\n#include <stdio.h>\n"
        assert extract_includes(source) == {"stdio.h"}

    def test_no_includes(self):
        assert extract_includes("int main(void) { return 0; }") == frozenset()


class TestStripComments:
    """Test comment and literal removal."""

    def test_keeps_line_structure(self):
        source = "a /* one\ntwo */ b\nc // tail\nd"
        assert strip_comments(source).count("\n") == 3

    def test_comment_markers_in_strings_are_kept(self):
        source = 'char *url = "http://example.com";'
        assert strip_comments(source) == source

    def test_strip_literals(self):
        source = "char *s = \"a;b{\"; char c = '}';"
        assert strip_comments(source, strip_literals=True) == "char *s = \"\"; char c = '';"

    def test_unterminated_literal(self):
        assert strip_comments('x = "open\ny', strip_literals=True) == 'x = ""\ny'


class TestFindGlobalVariables:
    """Test detection of variables declared at file scope."""

    def test_simple_global(self):
        assert find_global_variables(COUNTER_SOURCE) == ["counter"]

    def test_locals_are_ignored(self):
        source = "int main(void) {\n    int local = 3;\n    static int kept;\n    return local;\n}\n"
        assert find_global_variables(source) == []

    def test_prototypes_are_ignored(self):
        source = "int add(int a, int b);\nvoid run(void (*cb)(int));\n"
        assert find_global_variables(source) == []

    def test_type_definitions_are_ignored(self):
        source = (
            "struct node { int value; struct node *next; };\n"
            "typedef struct { int x; } pair_t;\n"
            "enum color { RED, GREEN };\n"
            "struct node;\n"
        )
        assert find_global_variables(source) == []

    def test_struct_with_declarator(self):
        source = "struct point { int x; int y; } origin, *cursor;\n"
        assert find_global_variables(source) == ["origin", "cursor"]

    def test_multiple_declarators_and_initializers(self):
        source = "int a = 1, *b;\nstatic const char *names[3] = {\"x\", \"y\"};\nint primes[] = {2, 3, 5};\n"
        assert find_global_variables(source) == ["a", "b", "names", "primes"]

    def test_function_pointer(self):
        source = "int (*handler)(int, int) = 0;\n"
        assert find_global_variables(source) == ["handler"]

    def test_literals_do_not_confuse_scanner(self):
        source = 'char *s = "};{";\nint main(void) { puts("int x;"); return 0; }\n'
        assert find_global_variables(source) == ["s"]

    def test_preprocessor_lines_are_ignored(self):
        source = "#define MAX 10\n#define SQUARE(x) \\\n    ((x) * (x))\nint main(void) { return MAX; }\n"
        assert find_global_variables(source) == []

    def test_malformed_source(self):
        """Unbalanced braces and garbage never raise."""
        source = "int main( {\n}} int x\n\x00\xff;;;{"
        find_global_variables(source)


class TestNoCallRule:
    """Test the forbidden call rule."""

    def test_call_found(self):
        rule = NoCallRule(functions={"system"}, penalty=-1.0)
        assert violated(rule, 'int main(void) { system("ls"); }', frozenset())

    def test_call_with_whitespace(self):
        rule = NoCallRule(functions={"printf"}, penalty=-1.0)
        assert violated(rule, 'int main(void) { printf  ("x"); }', frozenset())

    def test_name_without_call_is_not_a_violation(self):
        rule = NoCallRule(functions={"printf"}, penalty=-1.0)
        assert not violated(rule, "int (*p)(const char *, ...) = printf;", frozenset())

    def test_longer_identifier_is_not_a_violation(self):
        rule = NoCallRule(functions={"printf"}, penalty=-1.0)
        assert not violated(rule, 'my_printf("x"); sprintf(buf, "x");', frozenset())

    def test_comments_and_strings_are_ignored(self):
        rule = NoCallRule(functions={"system"}, penalty=-1.0)
        source = '// system("rm")\n/* system("rm") */\nputs("system(x)");\n'
        assert not violated(rule, source, frozenset())

    def test_any_of_several_names(self):
        rule = NoCallRule(functions={"malloc", "calloc", "realloc"}, penalty=-1.0)
        assert violated(rule, "p = calloc(1, 4);", frozenset())


class TestNoHeaderRule:
    """Test the forbidden header rule."""

    def test_included_header(self):
        rule = NoHeaderRule(header="string.h", penalty=-0.5)
        assert violated(rule, "", frozenset({"stdio.h", "string.h"}))

    def test_header_not_included(self):
        rule = NoHeaderRule(header="string.h", penalty=-0.5)
        assert not violated(rule, "", frozenset({"stdio.h"}))


class TestNoGlobalsRule:
    """Test the global variable rule."""

    def test_global_found(self):
        rule = NoGlobalsRule(penalty=-2.0)
        assert violated(rule, COUNTER_SOURCE, frozenset())

    def test_excepted_global(self):
        rule = NoGlobalsRule(penalty=-2.0, exceptions={"counter"})
        assert not violated(rule, COUNTER_SOURCE, frozenset())

    def test_partially_excepted(self):
        rule = NoGlobalsRule(penalty=-2.0, exceptions={"a"})
        assert violated(rule, "int a, b;", frozenset())


class TestEvaluateRules:
    """Test rule evaluation over a whole source."""

    def test_penalty_applied_once_per_rule(self):
        rules = [
            NoCallRule(functions={"printf"}, penalty=-1.0),
            NoGlobalsRule(penalty=-2.0),
        ]
        source = COUNTER_SOURCE + 'void more(void) { printf("a"); printf("b"); }\nint other;\n'

        outcomes = evaluate_rules(rules, source, extract_includes(source))

        assert [o.violated for o in outcomes] == [True, True]
        assert sum(o.applied for o in outcomes) == pytest.approx(-3.0)

    def test_scenario_single_global_referenced_many_times(self):
        outcomes = evaluate_rules([NoGlobalsRule(penalty=-2.0)], COUNTER_SOURCE, frozenset())

        assert len(outcomes) == 1
        assert outcomes[0].applied == -2.0

    def test_outcomes_follow_rule_order(self):
        rules = [
            NoHeaderRule(header="math.h", penalty=-1.0),
            NoHeaderRule(header="stdio.h", penalty=-0.5),
        ]
        outcomes = evaluate_rules(rules, COUNTER_SOURCE, extract_includes(COUNTER_SOURCE))

        assert [(o.violated, o.applied) for o in outcomes] == [(False, 0.0), (True, -0.5)]
