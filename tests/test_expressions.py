"""Tests for the sandboxed expression evaluator."""

import pytest

from nodeflow.core.exceptions import ExpressionError
from nodeflow.core.expressions import (
    MAX_EXPRESSION_LENGTH, evaluate, evaluate_condition, fill_placeholders, render_template
)


class TestEvaluate:
    """Allowed and rejected constructs."""

    @pytest.mark.parametrize("expression,expected", [
        ("1 + 2 * 3", 7),
        ("10 // 3", 3),
        ("10 % 3", 1),
        ("-amount", -5),
        ("amount > 3 and amount < 10", True),
        ("1 < amount < 4", False),
        ("status == 'paid' or amount > 100", True),
        ("not flag", True),
        ("'b' in tags", True),
        ("order['total']", 42),
        ("order.total", 42),
        ("items[1]", 20),
        ("'big' if amount > 3 else 'small'", "big"),
        ("[amount, 1]", [5, 1]),
        ("{'k': amount}", {"k": 5}),
        ("true", True),
        ("null", None),
    ])
    def test_supported_expressions(self, expression, expected):
        variables = {
            "amount": 5,
            "status": "paid",
            "flag": False,
            "tags": ["a", "b"],
            "order": {"total": 42},
            "items": [10, 20],
        }

        assert evaluate(expression, variables) == expected

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('true')",
        "open('/etc/passwd')",
        "[x for x in range(3)]",
        "lambda: 1",
        "(1).__class__",
    ])
    def test_rejects_unsafe_constructs(self, expression):
        with pytest.raises(ExpressionError):
            evaluate(expression, {})

    def test_unknown_variable(self):
        with pytest.raises(ExpressionError, match="Unknown variable"):
            evaluate("missing + 1", {})

    def test_syntax_error(self):
        with pytest.raises(ExpressionError, match="Invalid expression syntax"):
            evaluate("1 +", {})

    def test_empty_expression(self):
        with pytest.raises(ExpressionError):
            evaluate("   ", {})

    def test_length_limit(self):
        with pytest.raises(ExpressionError, match="too long"):
            evaluate("1" * (MAX_EXPRESSION_LENGTH + 1), {})

    def test_runtime_error_is_wrapped(self):
        """Errors raised while evaluating become ExpressionError with the source attached."""
        with pytest.raises(ExpressionError) as exc_info:
            evaluate("1 / 0", {})

        assert exc_info.value.context["expression"] == "1 / 0"


class TestPlaceholders:
    """Placeholder rendering and condition evaluation."""

    def test_render_binds_values(self):
        rendered, bindings = render_template("{amount} > 100", {"amount": 150})

        assert rendered == "_p0 > 100"
        assert bindings == {"_p0": 150}

    def test_string_values_are_not_spliced(self):
        """A placeholder value is bound, never parsed as source."""
        variables = {"name": "x') or ('1"}

        assert evaluate_condition("{name} == 'admin'", variables) is False

    def test_dotted_placeholder(self):
        assert evaluate_condition("{order.total} >= 10", {"order": {"total": 10}}) is True

    def test_unknown_placeholder(self):
        with pytest.raises(ExpressionError, match="Unknown placeholder"):
            evaluate_condition("{missing} == 1", {})

    def test_bare_names_also_work(self):
        assert evaluate_condition("status == 'paid'", {"status": "paid"}) is True

    def test_fill_placeholders(self):
        text = fill_placeholders("Hello {user.name}, you owe {amount}", {"user": {"name": "Ada"}, "amount": 3})

        assert text == "Hello Ada, you owe 3"
