"""Tests for the sandboxed condition evaluator."""

import pytest

from core.exceptions import ExpressionSyntaxError, ValidationError
from workflow.conditions import (
    ConditionEvaluator,
    evaluate_condition,
    interpret,
    parse_expression,
    tokenize,
    truthy,
)
from workflow.models import NodeOutput


def outputs_of(**data_by_id):
    return {key: NodeOutput(label=key, data=value) for key, value in data_by_id.items()}


def _eval(text, **env):
    return interpret(parse_expression(text, list(env)), env)


@pytest.mark.unit
class TestTokenizer:
    def test_operators_and_words(self):
        kinds = [(t.kind, t.value) for t in tokenize("a === 'x' and not b")]
        assert kinds == [
            ("name", "a"), ("op", "==="), ("str", "x"),
            ("op", "&&"), ("op", "!"), ("name", "b"), ("eof", None),
        ]

    def test_numbers(self):
        values = [t.value for t in tokenize("1 2.5 1e3")][:-1]
        assert values == [1, 2.5, 1000.0]

    def test_unterminated_string(self):
        with pytest.raises(ExpressionSyntaxError):
            tokenize("'abc")

    def test_rejects_unknown_characters(self):
        with pytest.raises(ExpressionSyntaxError):
            tokenize("a; b")


@pytest.mark.unit
class TestGrammar:
    @pytest.mark.parametrize(
        "text",
        [
            "__import__('os')",
            "a.constructor",
            "a = 1",
            "1 < 2 < 3",
            "",
            "(1",
            "x + 1",
        ],
    )
    def test_rejected(self, text):
        with pytest.raises(ValidationError):
            parse_expression(text, ["a"])

    def test_unknown_identifier(self):
        with pytest.raises(ExpressionSyntaxError, match="Unknown identifier"):
            parse_expression("b > 1", ["a"])


@pytest.mark.unit
class TestInterpreter:
    def test_comparisons(self):
        assert _eval("a > 3", a=5) is True
        assert _eval("a <= 3", a=5) is False
        assert _eval("'b' > 'a'") is True

    def test_strict_and_loose_equality(self):
        assert _eval("a == '5'", a=5) is True
        assert _eval("a === '5'", a=5) is False
        assert _eval("a === 5", a=5) is True
        assert _eval("a !== null", a=None) is False
        assert _eval("a == undefined", a=None) is True

    def test_logic(self):
        assert truthy(_eval("a && b", a=1, b=0)) is False
        assert truthy(_eval("a || b", a=0, b="x")) is True
        assert _eval("!a", a="") is True
        assert _eval("not (a > 1)", a=0) is True

    def test_length_and_methods(self):
        assert _eval("a.length", a=[1, 2, 3]) == 3
        assert _eval("a.includes('ell')", a="hello") is True
        assert _eval("a.includes(2)", a=[1, 2]) is True
        assert _eval("a.toLowerCase().startsWith('he')", a="HELLO") is True
        assert _eval("a.trim().endsWith('o')", a="  hello ") is True
        assert _eval("a.indexOf('l')", a="hello") == 2

    def test_index(self):
        assert _eval("a[1]", a=["x", "y"]) == "y"
        assert _eval("a['k']", a={"k": 7}) == 7
        assert _eval("a[9]", a=["x"]) is None

    def test_truthiness(self):
        assert truthy([]) is True
        assert truthy({}) is True
        assert truthy(0) is False
        assert truthy("") is False
        assert truthy(None) is False


@pytest.mark.unit
class TestConditionEvaluator:
    def test_reference_values_are_bound(self):
        outputs = outputs_of(http_1={"success": True, "data": {"status": 200}})
        result = evaluate_condition("{{@http-1:Fetch.status}} === 200", outputs)
        assert result.result is True
        assert result.resolved_values == {"Fetch.status": 200}

    def test_string_values_are_not_parsed(self):
        # A hostile value stays data; it is never spliced into the expression
        outputs = outputs_of(a={"name": "x') || true || ('"})
        result = evaluate_condition("{{@a:A.name}} === 'admin'", outputs)
        assert result.result is False

    def test_unresolved_reference_is_false(self):
        result = evaluate_condition("{{@ghost:G.x}} > 1", outputs_of())
        assert result.result is False
        assert result.resolved_values == {}

    def test_prevalidation_rejects_before_lookup(self):
        outputs = outputs_of(a={"n": 1})
        result = evaluate_condition("{{@a:A.n}}.constructor", outputs)
        assert result.result is False
        assert result.resolved_values == {}

    def test_evaluation_errors_are_false(self):
        outputs = outputs_of(a={"n": 1})
        assert evaluate_condition("{{@a:A.n}}.toUpperCase() === '1'", outputs).result is False

    def test_max_length(self):
        evaluator = ConditionEvaluator(max_length=10)
        assert evaluator.evaluate("1 < 2 && 2 < 3 && 3 < 4", outputs_of()).result is False
        assert evaluator.evaluate("1 < 2", outputs_of()).result is True

    def test_non_string_conditions(self):
        evaluator = ConditionEvaluator()
        assert evaluator.evaluate(True, outputs_of()).result is True
        assert evaluator.evaluate(False, outputs_of()).result is False
        assert evaluator.evaluate(None, outputs_of()).result is False
        assert evaluator.evaluate(1, outputs_of()).result is True

    def test_empty_array_reference_is_truthy(self):
        outputs = outputs_of(a={"rows": []})
        assert evaluate_condition("{{@a:A.rows}}", outputs).result is True
        assert evaluate_condition("{{@a:A.rows}}.length > 0", outputs).result is False

    def test_length_segment_in_reference(self):
        outputs = outputs_of(http_1={"success": True, "data": {"users": [1, 2, 3]}})
        result = ConditionEvaluator().evaluate("{{@http-1:Fetch users.users.length}} > 0", outputs)
        assert result.result is True
        assert result.resolved_values == {"Fetch users.users.length": 3}
