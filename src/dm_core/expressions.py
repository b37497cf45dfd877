"""Restricted expression trees for filters, derived columns and aggregates.

Filters and column derivations are not arbitrary Python callables: they are
small immutable trees (column reference, literal, comparison, membership,
null check, boolean combinators, arithmetic, aggregates) that every backend
knows how to compile -- to a boolean ``Series`` for pandas, to a column
expression for SQLAlchemy.

Expressions are built either programmatically or from Python-syntax text:

    from dm_core.expressions import col, parse_expression

    expr = col("name").eq("John F Kennedy Intl")
    expr = col("month").eq(3) & col("day").le(15)
    expr = parse_expression("month == 3 and day <= 15")
    expr = parse_expression("engine in ['Reciprocating', '4 Cycle']")
    agg = parse_expression("mean(dep_delay)")

``parse_expression`` is built on the ``ast`` module and never evaluates the
text; anything outside the grammar raises ``ExpressionError``.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Any, Iterator

from dm_core.errors import ExpressionError

COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")
ARITHMETIC_OPS = ("+", "-", "*", "/")
AGGREGATE_FUNCS = ("count", "sum", "mean", "min", "max", "n_distinct")


# ============================================================================
# Expression nodes
# ============================================================================


@dataclass(frozen=True)
class Expression:
    """Base class of all expression nodes."""

    def __and__(self, other: Expression) -> And:
        return And((self, _wrap(other)))

    def __or__(self, other: Expression) -> Or:
        return Or((self, _wrap(other)))

    def __invert__(self) -> Not:
        return Not(self)

    def __add__(self, other: Any) -> Arithmetic:
        return Arithmetic("+", self, _wrap(other))

    def __sub__(self, other: Any) -> Arithmetic:
        return Arithmetic("-", self, _wrap(other))

    def __mul__(self, other: Any) -> Arithmetic:
        return Arithmetic("*", self, _wrap(other))

    def __truediv__(self, other: Any) -> Arithmetic:
        return Arithmetic("/", self, _wrap(other))

    def eq(self, other: Any) -> Compare:
        return Compare("==", self, _wrap(other))

    def ne(self, other: Any) -> Compare:
        return Compare("!=", self, _wrap(other))

    def lt(self, other: Any) -> Compare:
        return Compare("<", self, _wrap(other))

    def le(self, other: Any) -> Compare:
        return Compare("<=", self, _wrap(other))

    def gt(self, other: Any) -> Compare:
        return Compare(">", self, _wrap(other))

    def ge(self, other: Any) -> Compare:
        return Compare(">=", self, _wrap(other))

    def isin(self, values: Any) -> IsIn:
        return IsIn(self, tuple(values))

    def is_null(self) -> IsNull:
        return IsNull(self)

    def __str__(self) -> str:
        return to_text(self)


@dataclass(frozen=True)
class Column(Expression):
    """Reference to a column of the table the expression is evaluated on."""

    name: str


@dataclass(frozen=True)
class Literal(Expression):
    """Constant value (str, int, float, bool or None)."""

    value: Any


@dataclass(frozen=True)
class Compare(Expression):
    """Binary comparison; ``op`` is one of ``COMPARISON_OPS``."""

    op: str
    left: Expression
    right: Expression

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPS:
            raise ExpressionError(f"Unsupported comparison operator: {self.op}")


@dataclass(frozen=True)
class IsIn(Expression):
    """Membership test against a fixed tuple of literal values."""

    operand: Expression
    values: tuple


@dataclass(frozen=True)
class IsNull(Expression):
    """True where the operand is missing."""

    operand: Expression


@dataclass(frozen=True)
class And(Expression):
    operands: tuple[Expression, ...]


@dataclass(frozen=True)
class Or(Expression):
    operands: tuple[Expression, ...]


@dataclass(frozen=True)
class Not(Expression):
    operand: Expression


@dataclass(frozen=True)
class Arithmetic(Expression):
    """Binary arithmetic; ``op`` is one of ``ARITHMETIC_OPS``."""

    op: str
    left: Expression
    right: Expression

    def __post_init__(self) -> None:
        if self.op not in ARITHMETIC_OPS:
            raise ExpressionError(f"Unsupported arithmetic operator: {self.op}")


@dataclass(frozen=True)
class Aggregate(Expression):
    """Aggregate over a group; ``operand`` is None for a plain row count."""

    func: str
    operand: Expression | None = None

    def __post_init__(self) -> None:
        if self.func not in AGGREGATE_FUNCS:
            raise ExpressionError(f"Unsupported aggregate function: {self.func}")


def col(name: str) -> Column:
    """Shorthand for ``Column(name)``."""
    return Column(name)


def lit(value: Any) -> Literal:
    """Shorthand for ``Literal(value)``."""
    return Literal(value)


def _wrap(value: Any) -> Expression:
    if isinstance(value, Expression):
        return value
    return Literal(value)


# ============================================================================
# Inspection
# ============================================================================


def children(expr: Expression) -> Iterator[Expression]:
    """Yield the direct sub-expressions of a node."""
    if isinstance(expr, (Compare, Arithmetic)):
        yield expr.left
        yield expr.right
    elif isinstance(expr, (IsIn, IsNull, Not)):
        yield expr.operand
    elif isinstance(expr, (And, Or)):
        yield from expr.operands
    elif isinstance(expr, Aggregate) and expr.operand is not None:
        yield expr.operand


def columns_of(expr: Expression) -> set[str]:
    """Return the names of all columns referenced by an expression."""
    if isinstance(expr, Column):
        return {expr.name}
    names: set[str] = set()
    for child in children(expr):
        names |= columns_of(child)
    return names


def contains_aggregate(expr: Expression) -> bool:
    if isinstance(expr, Aggregate):
        return True
    return any(contains_aggregate(child) for child in children(expr))


def to_text(expr: Expression) -> str:
    """Render an expression in the syntax accepted by ``parse_expression``."""
    if isinstance(expr, Column):
        return expr.name
    if isinstance(expr, Literal):
        return repr(expr.value)
    if isinstance(expr, (Compare, Arithmetic)):
        return f"{_nested_text(expr.left)} {expr.op} {_nested_text(expr.right)}"
    if isinstance(expr, IsIn):
        values = ", ".join(repr(v) for v in expr.values)
        return f"{_nested_text(expr.operand)} in [{values}]"
    if isinstance(expr, IsNull):
        return f"{_nested_text(expr.operand)} is None"
    if isinstance(expr, And):
        return " and ".join(_nested_text(op) for op in expr.operands)
    if isinstance(expr, Or):
        return " or ".join(_nested_text(op) for op in expr.operands)
    if isinstance(expr, Not):
        return f"not {_nested_text(expr.operand)}"
    if isinstance(expr, Aggregate):
        inner = to_text(expr.operand) if expr.operand is not None else ""
        return f"{expr.func}({inner})"
    raise ExpressionError(f"Unknown expression node: {type(expr).__name__}")


def _nested_text(expr: Expression) -> str:
    text = to_text(expr)
    if isinstance(expr, (Column, Literal, Aggregate)):
        return text
    return f"({text})"


# ============================================================================
# Parsing
# ============================================================================

_AST_COMPARE = {
    ast.Eq: "==",
    ast.NotEq: "!=",
    ast.Lt: "<",
    ast.LtE: "<=",
    ast.Gt: ">",
    ast.GtE: ">=",
}

_AST_ARITHMETIC = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
}


def parse_expression(text: str) -> Expression:
    """Parse Python-syntax text into an expression tree.

    Supported: column names, str/number/bool/None literals, comparisons
    (chained comparisons become conjunctions), ``in`` / ``not in`` with a
    literal list, ``is None`` / ``is not None``, ``and`` / ``or`` / ``not``,
    ``+ - * /`` and the aggregate calls ``count() sum(x) mean(x) min(x)
    max(x) n_distinct(x)``.

    Raises:
        ExpressionError: If the text is not valid Python or uses anything
            outside the grammar above.

    Examples:
        >>> parse_expression("name == 'John F Kennedy Intl'")
        Compare(op='==', left=Column(name='name'), right=Literal(value='John F Kennedy Intl'))
        >>> to_text(parse_expression("month in [1, 2] and not day > 3"))
        '(month in [1, 2]) and (not (day > 3))'
    """
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression {text!r}: {e.msg}") from e
    return _convert(tree.body, text)


def as_expression(value: Expression | str) -> Expression:
    """Accept either an expression or its text form."""
    if isinstance(value, Expression):
        return value
    if isinstance(value, str):
        return parse_expression(value)
    raise ExpressionError(f"Expected an expression or a string, got {type(value).__name__}")


def _convert(node: ast.AST, text: str) -> Expression:
    if isinstance(node, ast.Name):
        return Column(node.id)

    if isinstance(node, ast.Constant):
        if not isinstance(node.value, (str, int, float, bool, type(None))):
            raise ExpressionError(f"Unsupported literal in {text!r}: {node.value!r}")
        return Literal(node.value)

    if isinstance(node, ast.BoolOp):
        operands = tuple(_convert(v, text) for v in node.values)
        return And(operands) if isinstance(node.op, ast.And) else Or(operands)

    if isinstance(node, ast.UnaryOp):
        if isinstance(node.op, ast.Not):
            return Not(_convert(node.operand, text))
        if isinstance(node.op, ast.USub):
            operand = _convert(node.operand, text)
            if isinstance(operand, Literal) and isinstance(operand.value, (int, float)):
                return Literal(-operand.value)
            return Arithmetic("-", Literal(0), operand)

    if isinstance(node, ast.BinOp) and type(node.op) in _AST_ARITHMETIC:
        return Arithmetic(
            _AST_ARITHMETIC[type(node.op)],
            _convert(node.left, text),
            _convert(node.right, text),
        )

    if isinstance(node, ast.Compare):
        parts: list[Expression] = []
        left = node.left
        for op, right in zip(node.ops, node.comparators):
            parts.append(_convert_comparison(left, op, right, text))
            left = right
        return parts[0] if len(parts) == 1 else And(tuple(parts))

    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
        func = node.func.id
        if func == "n":
            func = "count"
        if func not in AGGREGATE_FUNCS or node.keywords or len(node.args) > 1:
            raise ExpressionError(f"Unsupported call in {text!r}: {func}()")
        if not node.args:
            if func != "count":
                raise ExpressionError(f"{func}() needs a column argument")
            return Aggregate("count")
        return Aggregate(func, _convert(node.args[0], text))

    raise ExpressionError(
        f"Unsupported syntax in {text!r}: {type(node).__name__}"
    )


def _convert_comparison(left: ast.AST, op: ast.cmpop, right: ast.AST, text: str) -> Expression:
    if type(op) in _AST_COMPARE:
        return Compare(_AST_COMPARE[type(op)], _convert(left, text), _convert(right, text))

    if isinstance(op, (ast.In, ast.NotIn)):
        if not isinstance(right, (ast.List, ast.Tuple, ast.Set)):
            raise ExpressionError(f"'in' needs a literal list in {text!r}")
        values = []
        for element in right.elts:
            converted = _convert(element, text)
            if not isinstance(converted, Literal):
                raise ExpressionError(f"'in' list must contain literals only in {text!r}")
            values.append(converted.value)
        membership = IsIn(_convert(left, text), tuple(values))
        return membership if isinstance(op, ast.In) else Not(membership)

    if isinstance(op, (ast.Is, ast.IsNot)):
        if not (isinstance(right, ast.Constant) and right.value is None):
            raise ExpressionError(f"'is' is only supported with None in {text!r}")
        check = IsNull(_convert(left, text))
        return check if isinstance(op, ast.Is) else Not(check)

    raise ExpressionError(f"Unsupported comparison in {text!r}")
