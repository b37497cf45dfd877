"""Tabular backend protocol definition.

Defines the ``TableBackend`` Protocol that every storage/query engine must
implement.  The data model never looks inside a table: it only holds opaque
*handles* (a ``pandas.DataFrame`` for ``FrameBackend``, a SQLAlchemy
``Select`` for ``SQLBackend``) and asks the backend to combine them.

All methods are synchronous; a remote backend blocks inside the call.

Usage:
    from dm_core.backends.base import TableBackend

    def row_counts(backend: TableBackend) -> dict[str, int]:
        return {
            name: backend.nrow(backend.get_table(name))
            for name in backend.list_tables()
        }
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import pandas as pd

from dm_core.expressions import Expression


class TableBackend(Protocol):
    """Interface the data model needs from a tabular engine.

    Handles returned by one backend are only valid for the same backend.
    Operations never mutate their input handles.
    """

    def list_tables(self) -> list[str]:
        """Names of the tables available in the source, in a stable order."""
        ...

    def get_table(self, name: str) -> Any:
        """Return a handle to the rows of a source table.

        Raises:
            KeyError: If the source has no table with that name.
        """
        ...

    def restrict_by_match(
        self,
        left: Any,
        right: Any,
        left_column: str,
        right_column: str,
    ) -> Any:
        """Semi-join: keep rows of *left* whose key appears in *right*.

        Missing key values never match.

        Example:
            flights = backend.restrict_by_match(flights, airports, "origin", "faa")
        """
        ...

    def filter_rows(self, handle: Any, predicate: Expression) -> Any:
        """Keep rows for which *predicate* is true (missing counts as false)."""
        ...

    def column_names(self, handle: Any) -> list[str]:
        ...

    def is_unique_column(self, handle: Any, column: str) -> bool:
        """True if *column* has no duplicate and no missing values."""
        ...

    def is_subset(
        self,
        left: Any,
        right: Any,
        left_column: str,
        right_column: str,
    ) -> bool:
        """True if every non-missing value of the left column occurs on the right."""
        ...

    def nrow(self, handle: Any) -> int:
        ...

    def collect(self, handle: Any) -> pd.DataFrame:
        """Fetch the rows of a handle into a ``pandas.DataFrame``."""
        ...

    def select_columns(self, handle: Any, columns: Mapping[str, str]) -> Any:
        """Keep and rename columns; *columns* maps new name -> existing name.

        Output columns follow the mapping's order.
        """
        ...

    def mutate(self, handle: Any, assignments: Mapping[str, Expression]) -> Any:
        """Add or overwrite columns computed from row-wise expressions.

        Assignments are applied in order; later ones may use earlier ones.
        """
        ...

    def summarise(
        self,
        handle: Any,
        by: Sequence[str],
        aggregations: Mapping[str, Expression],
    ) -> Any:
        """One row per distinct *by* combination with the aggregated columns.

        With an empty *by* the result has exactly one row.
        """
        ...

    def store(self, name: str, frame: pd.DataFrame) -> Any:
        """Persist *frame* as table *name* in this backend and return its handle."""
        ...
