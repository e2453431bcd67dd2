"""Sandboxed expression evaluation for conditional and code nodes.

Expressions are parsed with ``ast`` and walked by a restricted evaluator.
Only literals, variable names, comparisons, boolean logic, basic arithmetic,
subscripts and mapping attribute access are allowed. Function calls,
comprehensions, lambdas and imports are rejected.

Conditions written for the editor may reference input fields with
``{name}`` placeholders (``{amount} > 100 and {status} == "paid"``);
``render_template`` turns each placeholder into a bound variable so the
value is never spliced into the source text.
"""

import ast
import operator
import re
from typing import Any, Dict, Mapping, Tuple

from .exceptions import ExpressionError
from .logging import get_logger

logger = get_logger(__name__)

MAX_EXPRESSION_LENGTH = 1000

_PLACEHOLDER = re.compile(r"\{\s*([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)\s*\}")

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_NAME_CONSTANTS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "none": None,
    "None": None,
}


def evaluate(expression: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate an expression against a mapping of variables.

    Args:
        expression: The expression source
        variables: Names visible to the expression

    Returns:
        The value of the expression

    Raises:
        ExpressionError: If the expression is empty, malformed, uses an
            unsupported construct or fails while evaluating
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Expression cannot be empty", expression=expression)

    expression = expression.strip()
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})",
            expression=expression
        )

    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression syntax: {e.msg}", expression=expression) from e

    try:
        return _eval_node(tree.body, variables)
    except ExpressionError as e:
        e.add_context(expression=expression)
        raise
    except Exception as e:
        raise ExpressionError(f"Evaluation error: {e}", expression=expression) from e


def render_template(template: str, variables: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Replace ``{name}`` placeholders with bound variable references.

    Dotted placeholders (``{order.total}``) walk nested mappings.

    Args:
        template: Expression text containing placeholders
        variables: Values available for substitution

    Returns:
        The rewritten expression and the bindings it refers to

    Raises:
        ExpressionError: If a placeholder names a value that does not exist
    """
    bindings: Dict[str, Any] = {}

    def substitute(match: "re.Match") -> str:
        path = match.group(1)
        value = _resolve_path(path, variables)
        binding = f"_p{len(bindings)}"
        bindings[binding] = value
        return binding

    rendered = _PLACEHOLDER.sub(substitute, template)
    return rendered, bindings


def fill_placeholders(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` placeholders with the string form of their values.

    For free text such as prompts; nothing is evaluated.

    Raises:
        ExpressionError: If a placeholder names a value that does not exist
    """
    return _PLACEHOLDER.sub(lambda match: str(_resolve_path(match.group(1), variables)), template)


def evaluate_condition(condition: str, variables: Mapping[str, Any]) -> bool:
    """Render placeholders in ``condition`` and evaluate it to a boolean."""
    rendered, bindings = render_template(condition, variables)
    scope = dict(variables) if isinstance(variables, Mapping) else {}
    scope.update(bindings)
    result = evaluate(rendered, scope)
    logger.debug(f"Condition '{condition}' evaluated to {result!r}")
    return bool(result)


def _resolve_path(path: str, variables: Mapping[str, Any]) -> Any:
    current: Any = variables
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            raise ExpressionError(f"Unknown placeholder: '{{{path}}}'")
    return current


def _eval_node(node: ast.AST, variables: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id in variables:
            return variables[node.id]
        if node.id in _NAME_CONSTANTS:
            return _NAME_CONSTANTS[node.id]
        raise ExpressionError(f"Unknown variable: '{node.id}'")

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, variables)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _COMPARE_OPS.get(type(op))
            if op_func is None:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval_node(comparator, variables)
            if not op_func(left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = _eval_node(value, variables)
                if not result:
                    return result
            return result
        if isinstance(node.op, ast.Or):
            result = False
            for value in node.values:
                result = _eval_node(value, variables)
                if result:
                    return result
            return result
        raise ExpressionError(f"Unsupported boolean op: {type(node.op).__name__}")

    if isinstance(node, ast.UnaryOp):
        op_func = _UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise ExpressionError(f"Unsupported unary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.operand, variables))

    if isinstance(node, ast.BinOp):
        op_func = _BIN_OPS.get(type(node.op))
        if op_func is None:
            raise ExpressionError(f"Unsupported binary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.left, variables), _eval_node(node.right, variables))

    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, variables)
        key = _eval_node(node.slice, variables)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise ExpressionError(f"Subscript access failed: {e}") from e

    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, variables)
        if isinstance(value, Mapping):
            if node.attr in value:
                return value[node.attr]
            raise ExpressionError(f"Key '{node.attr}' not found")
        raise ExpressionError("Attribute access is only supported on mappings")

    if isinstance(node, ast.List):
        return [_eval_node(elt, variables) for elt in node.elts]

    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, variables) for elt in node.elts)

    if isinstance(node, ast.Dict):
        if any(k is None for k in node.keys):
            raise ExpressionError("Dict unpacking is not allowed")
        return {
            _eval_node(k, variables): _eval_node(v, variables)
            for k, v in zip(node.keys, node.values)
        }

    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, variables):
            return _eval_node(node.body, variables)
        return _eval_node(node.orelse, variables)

    raise ExpressionError(f"Unsupported expression type: {type(node).__name__}")
