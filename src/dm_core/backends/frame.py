"""In-memory pandas implementation of the ``TableBackend`` protocol.

Handles are plain ``pandas.DataFrame`` objects.  Every operation returns a
new frame; input frames are never modified, so a handle stored in a table
definition stays valid for as long as the definition exists.

Usage:
    import pandas as pd
    from dm_core.backends.frame import FrameBackend

    backend = FrameBackend({
        "airports": pd.DataFrame({"faa": ["JFK", "LGA"], "name": [...]}),
        "flights": pd.DataFrame({"origin": ["JFK", "LGA", "JFK"]}),
    })
    flights = backend.restrict_by_match(
        backend.get_table("flights"), backend.get_table("airports"), "origin", "faa"
    )
"""

import operator
from collections.abc import Mapping, Sequence
from typing import Any

import pandas as pd

from dm_core.errors import ExpressionError
from dm_core.expressions import (
    Aggregate,
    And,
    Arithmetic,
    Column,
    Compare,
    Expression,
    IsIn,
    IsNull,
    Literal,
    Not,
    Or,
)

_COMPARE = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITHMETIC = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}

_AGGREGATE = {
    "count": "count",
    "sum": "sum",
    "mean": "mean",
    "min": "min",
    "max": "max",
    "n_distinct": "nunique",
}


def evaluate(expr: Expression, frame: pd.DataFrame) -> Any:
    """Evaluate a row-wise expression against a frame.

    Returns a ``Series`` aligned with *frame* or a scalar when the expression
    references no column.  Predicates use SQL three-valued logic: they come
    back in the nullable ``"boolean"`` dtype, a comparison or ``in`` test
    involving a missing value is NA, and ``not``/``and``/``or`` propagate NA
    the way SQL does.  Only ``filter_rows`` turns NA into "no match".
    """
    if isinstance(expr, Column):
        if expr.name not in frame.columns:
            raise ExpressionError(f"Unknown column '{expr.name}'")
        return frame[expr.name]

    if isinstance(expr, Literal):
        return expr.value

    if isinstance(expr, Compare):
        left = evaluate(expr.left, frame)
        right = evaluate(expr.right, frame)
        if left is None or right is None:
            return _logical(None, frame)
        missing = _missing(left, right)
        result = _COMPARE[expr.op](left, right)
        if missing is None:
            return bool(result)
        return result.astype("boolean").mask(missing)

    if isinstance(expr, IsIn):
        operand = evaluate(expr.operand, frame)
        if isinstance(operand, pd.Series):
            return operand.isin(list(expr.values)).astype("boolean").mask(operand.isna())
        if operand is None:
            return None
        return operand in expr.values

    if isinstance(expr, IsNull):
        operand = evaluate(expr.operand, frame)
        if isinstance(operand, pd.Series):
            return operand.isna().astype("boolean")
        return operand is None

    if isinstance(expr, And):
        result = _logical(evaluate(expr.operands[0], frame), frame)
        for operand in expr.operands[1:]:
            result = result & _logical(evaluate(operand, frame), frame)
        return result

    if isinstance(expr, Or):
        result = _logical(evaluate(expr.operands[0], frame), frame)
        for operand in expr.operands[1:]:
            result = result | _logical(evaluate(operand, frame), frame)
        return result

    if isinstance(expr, Not):
        return ~_logical(evaluate(expr.operand, frame), frame)

    if isinstance(expr, Arithmetic):
        return _ARITHMETIC[expr.op](evaluate(expr.left, frame), evaluate(expr.right, frame))

    if isinstance(expr, Aggregate):
        raise ExpressionError(f"Aggregate '{expr}' is only allowed in summarise")

    raise ExpressionError(f"Unknown expression node: {type(expr).__name__}")


def _missing(*values: Any) -> pd.Series | None:
    """Rows where any Series among *values* is missing (None without Series)."""
    missing = None
    for value in values:
        if isinstance(value, pd.Series):
            missing = value.isna() if missing is None else missing | value.isna()
    return missing


def _logical(value: Any, frame: pd.DataFrame) -> pd.Series:
    """Broadcast a truth value to a nullable boolean Series over *frame*."""
    if isinstance(value, pd.Series):
        return value.astype("boolean")
    if value is None or value is pd.NA:
        return pd.Series(pd.NA, index=frame.index, dtype="boolean")
    return pd.Series(bool(value), index=frame.index, dtype="boolean")


def _as_mask(value: Any, frame: pd.DataFrame) -> pd.Series:
    return _logical(value, frame).fillna(False).astype(bool)


class FrameBackend:
    """pandas implementation of the ``TableBackend`` protocol.

    Args:
        tables: Optional mapping of table name to ``DataFrame``.  The
            frames are stored as given and treated as read-only.
    """

    def __init__(self, tables: Mapping[str, pd.DataFrame] | None = None) -> None:
        self._tables: dict[str, pd.DataFrame] = dict(tables or {})

    def __repr__(self) -> str:
        return f"FrameBackend(tables={list(self._tables)})"

    # ------------------------------------------------------------------
    # Source access
    # ------------------------------------------------------------------

    def list_tables(self) -> list[str]:
        return list(self._tables)

    def get_table(self, name: str) -> pd.DataFrame:
        return self._tables[name]

    def store(self, name: str, frame: pd.DataFrame) -> pd.DataFrame:
        """Register *frame* under *name*, replacing any existing table."""
        stored = frame.reset_index(drop=True)
        self._tables[name] = stored
        return stored

    # ------------------------------------------------------------------
    # Row operations
    # ------------------------------------------------------------------

    def restrict_by_match(
        self,
        left: pd.DataFrame,
        right: pd.DataFrame,
        left_column: str,
        right_column: str,
    ) -> pd.DataFrame:
        keys = right[right_column].dropna()
        return left[left[left_column].isin(keys)]

    def filter_rows(self, handle: pd.DataFrame, predicate: Expression) -> pd.DataFrame:
        mask = _as_mask(evaluate(predicate, handle), handle)
        return handle[mask]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def column_names(self, handle: pd.DataFrame) -> list[str]:
        return [str(c) for c in handle.columns]

    def is_unique_column(self, handle: pd.DataFrame, column: str) -> bool:
        values = handle[column]
        return bool(values.notna().all() and values.is_unique)

    def is_subset(
        self,
        left: pd.DataFrame,
        right: pd.DataFrame,
        left_column: str,
        right_column: str,
    ) -> bool:
        keys = right[right_column].dropna()
        return bool(left[left_column].dropna().isin(keys).all())

    def nrow(self, handle: pd.DataFrame) -> int:
        return len(handle)

    def collect(self, handle: pd.DataFrame) -> pd.DataFrame:
        return handle.reset_index(drop=True)

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------

    def select_columns(self, handle: pd.DataFrame, columns: Mapping[str, str]) -> pd.DataFrame:
        result = handle.loc[:, list(columns.values())].copy()
        result.columns = list(columns.keys())
        return result

    def mutate(self, handle: pd.DataFrame, assignments: Mapping[str, Expression]) -> pd.DataFrame:
        result = handle.copy()
        for name, expr in assignments.items():
            result[name] = evaluate(expr, result)
        return result

    def summarise(
        self,
        handle: pd.DataFrame,
        by: Sequence[str],
        aggregations: Mapping[str, Expression],
    ) -> pd.DataFrame:
        by = list(by)
        if not aggregations:
            return handle.loc[:, by].drop_duplicates().reset_index(drop=True)

        if not by:
            row = {name: [self._aggregate(handle, expr)] for name, expr in aggregations.items()}
            return pd.DataFrame(row)

        grouped = handle.groupby(by, sort=True, dropna=False)
        pieces = {name: self._aggregate(grouped, expr) for name, expr in aggregations.items()}
        return pd.DataFrame(pieces).reset_index()

    def _aggregate(self, source: Any, expr: Expression) -> Any:
        """Apply one aggregate to a frame (scalar) or a groupby (Series)."""
        if not isinstance(expr, Aggregate):
            raise ExpressionError(f"Expected an aggregate such as mean(x), got '{expr}'")
        if expr.operand is None:
            return len(source) if isinstance(source, pd.DataFrame) else source.size()
        if not isinstance(expr.operand, Column):
            raise ExpressionError(f"Aggregates take a single column, got '{expr}'")
        return getattr(source[expr.operand.name], _AGGREGATE[expr.func])()
