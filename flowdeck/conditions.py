"""Safe evaluation of decision and loop conditions.

Conditions are Python-flavoured boolean expressions over named context
values, for example::

    score >= 0.8 and step_2.status == "ok"
    "urgent" in tags or not ${review.approved}

Only a small node whitelist is interpreted: literals, names, attribute and
subscript access into mappings and sequences, comparisons, ``and``/``or``/
``not``, arithmetic on numbers and list/tuple literals. Calls, lambdas,
comprehensions and dunder access are rejected. ``${name}`` placeholders are
accepted as plain name references.
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Callable, Dict, Mapping

from .errors import ConfigurationError

_PLACEHOLDER = re.compile(r"\$\{\s*([A-Za-z_][\w.\-]*)\s*\}")
_MISSING = object()

_COMPARATORS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_BINARY: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_NAMED_CONSTANTS = {"true": True, "false": False, "null": None, "none": None}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize(expression: str) -> str:
    """Turn ``${a.b}`` placeholders into name references.

    Hyphens are common in step ids (``step-1``) and are mapped to underscores;
    ``_lookup_name`` resolves both spellings.
    """

    def replace(match: re.Match[str]) -> str:
        return match.group(1).replace("-", "_")

    return _PLACEHOLDER.sub(replace, expression).strip()


def compile_condition(expression: str) -> ast.Expression:
    """Parse and whitelist-check ``expression``.

    Raises:
        ConfigurationError: On syntax errors or disallowed constructs.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise ConfigurationError("Condition must be a non-empty string")
    try:
        tree = ast.parse(_normalize(expression), mode="eval")
    except SyntaxError as e:
        raise ConfigurationError(f"Invalid condition {expression!r}: {e.msg}") from e

    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ConfigurationError(f"Private attribute access not allowed: {node.attr}")
        if not isinstance(node, _ALLOWED_NODES):
            raise ConfigurationError(
                f"Unsupported syntax in condition {expression!r}: {type(node).__name__}"
            )
    return tree


def evaluate_condition(expression: Any, context: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` against ``context`` and coerce to ``bool``.

    Booleans pass through unchanged, so step configs may hard-code a branch.
    Missing names resolve to ``None``; ordering comparisons between
    incompatible values are ``False`` rather than errors.
    """
    if isinstance(expression, bool):
        return expression
    tree = compile_condition(expression)
    return bool(_Evaluator(context).visit(tree.body))


class _Evaluator:
    def __init__(self, context: Mapping[str, Any]) -> None:
        self.context = context

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}")
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        value = _lookup_name(self.context, node.id)
        if value is _MISSING:
            return _NAMED_CONSTANTS.get(node.id.lower())
        return value

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        return _get_item(self.visit(node.value), node.attr)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return _get_item(self.visit(node.value), self.visit(node.slice))

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(element) for element in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(element) for element in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub) and isinstance(operand, (int, float)):
            return -operand
        if isinstance(node.op, ast.UAdd) and isinstance(operand, (int, float)):
            return operand
        return None

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        # numbers only
        if not (_is_number(left) and _is_number(right)):
            return None
        try:
            return _BINARY[type(node.op)](left, right)
        except (ZeroDivisionError, OverflowError):
            return None

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            try:
                ok = _COMPARATORS[type(op)](left, right)
            except TypeError:
                return False
            if not ok:
                return False
            left = right
        return True


_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Subscript,
    ast.List,
    ast.Tuple,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    *_BINARY.keys(),
    ast.Compare,
    *_COMPARATORS.keys(),
)


def _lookup_name(context: Mapping[str, Any], name: str) -> Any:
    if name in context:
        return context[name]
    hyphenated = name.replace("_", "-")
    if hyphenated in context:
        return context[hyphenated]
    return _MISSING


def _get_item(container: Any, key: Any) -> Any:
    if isinstance(container, Mapping):
        if key in container:
            return container[key]
        if isinstance(key, str):
            value = _lookup_name(container, key)
            return None if value is _MISSING else value
        return None
    if isinstance(container, (list, tuple, str)) and isinstance(key, int):
        try:
            return container[key]
        except IndexError:
            return None
    return None


__all__ = ["compile_condition", "evaluate_condition"]
