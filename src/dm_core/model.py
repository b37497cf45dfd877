"""Definition store: table definitions and the two data model variants.

A data model is an immutable value.  Every operation in ``dm_core`` reads
the current definitions, builds new ones and returns a new model; the input
model, its table mapping and its definitions are never modified, so old
references stay valid after any operation.

The model is a sum type:

- ``DataModel``: the normal state.
- ``ZoomedDataModel``: one table is isolated for transformation; carries a
  ``ZoomState`` with the working copy and the key tracker.

Both derive from ``BaseDataModel``, which implements the store contract
(``get``, ``set``, ``list_tables``).

Usage:
    from dm_core.model import DataModel
    from dm_core.backends import FrameBackend

    model = DataModel.from_backend(FrameBackend({"airports": airports_df}))
    definition = model.get("airports")
    model2 = model.set(definition.replace(primary_key="faa"))
    assert model.get("airports").primary_key is None
"""

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from dm_core.backends.base import TableBackend
from dm_core.errors import NotAllowedWhileZoomedError, NotZoomedError, UnknownTableError
from dm_core.expressions import Expression


class ForeignKey(BaseModel):
    """Foreign key of a child table: ``column`` references ``parent``'s primary key."""

    model_config = ConfigDict(frozen=True)

    column: str         # FK column in the child table
    parent: str         # parent table name


@dataclass(frozen=True)
class FilterEntry:
    """A pending filter; ``zoomed`` marks filters added while zoomed."""

    predicate: Expression
    zoomed: bool = False


@dataclass(frozen=True, eq=False)
class TableDefinition:
    """Everything the model knows about one table.

    Attributes:
        name: Unique table name.
        data: Backend handle to the table's rows.  Never altered by filters.
        primary_key: Primary key column, or None.
        foreign_keys: Outgoing foreign keys, in declaration order.
        filters: Pending filters, in declaration order.
        filtered_data: ``data`` with this table's own filters evaluated, or
            None when no filter was declared since ``data`` was last set.
    """

    name: str
    data: Any
    primary_key: str | None = None
    foreign_keys: tuple[ForeignKey, ...] = ()
    filters: tuple[FilterEntry, ...] = ()
    filtered_data: Any = None

    @property
    def current_data(self) -> Any:
        """Rows with local filters applied (``data`` if there are none)."""
        return self.data if self.filtered_data is None else self.filtered_data

    @property
    def is_filtered(self) -> bool:
        return bool(self.filters)

    def fks_to(self, parent: str) -> list[ForeignKey]:
        """Outgoing foreign keys pointing at *parent*."""
        return [fk for fk in self.foreign_keys if fk.parent == parent]

    def replace(self, **changes: Any) -> "TableDefinition":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, eq=False)
class ZoomState:
    """Working state of a zoomed table.

    Attributes:
        table: Name of the isolated table.
        data: Working copy being transformed.
        key_tracker: Original column -> current column, for every
            key-bearing column that is still present in the working copy.
        groups: Current grouping columns (for ``zoom_summarise``).
    """

    table: str
    data: Any
    key_tracker: Mapping[str, str]
    groups: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "key_tracker", MappingProxyType(dict(self.key_tracker)))

    def replace(self, **changes: Any) -> "ZoomState":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, eq=False)
class BaseDataModel:
    """Store contract shared by both model variants."""

    backend: TableBackend
    tables: Mapping[str, TableDefinition]

    is_zoomed: ClassVar[bool] = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tables={self.list_tables()})"

    def __contains__(self, table: object) -> bool:
        return table in self.tables

    def __len__(self) -> int:
        return len(self.tables)

    def list_tables(self) -> list[str]:
        """Table names in insertion order."""
        return list(self.tables)

    def has_table(self, table: str) -> bool:
        return table in self.tables

    def get(self, table: str) -> TableDefinition:
        """Return the definition of *table*.

        Raises:
            UnknownTableError: If the model has no such table.
        """
        try:
            return self.tables[table]
        except KeyError:
            raise UnknownTableError(table) from None

    def set(self, definition: TableDefinition) -> "BaseDataModel":
        """Return a model of the same variant with *definition* stored.

        An existing table keeps its position; a new one is appended.
        """
        return dataclasses.replace(self, tables={**self.tables, definition.name: definition})

    def set_many(self, definitions: Iterable[TableDefinition]) -> "BaseDataModel":
        tables = dict(self.tables)
        for definition in definitions:
            tables[definition.name] = definition
        return dataclasses.replace(self, tables=tables)

    def filtered_tables(self) -> list[str]:
        """Tables with at least one pending filter."""
        return [name for name, d in self.tables.items() if d.is_filtered]

    def referencing(self, parent: str) -> list[tuple[str, ForeignKey]]:
        """Incoming foreign keys of *parent* as ``(child_table, fk)`` pairs."""
        return [
            (name, fk)
            for name, definition in self.tables.items()
            for fk in definition.foreign_keys
            if fk.parent == parent
        ]


@dataclass(frozen=True, eq=False, repr=False)
class DataModel(BaseDataModel):
    """Normal (not zoomed) data model."""

    @classmethod
    def from_backend(
        cls,
        backend: TableBackend,
        tables: Iterable[str] | None = None,
    ) -> "DataModel":
        """Build a key-less, filter-less model from tables of a backend.

        Args:
            backend: Source backend.
            tables: Table names to include (default: every table the backend
                lists, in its order).
        """
        names = backend.list_tables() if tables is None else list(tables)
        return cls(
            backend=backend,
            tables={name: TableDefinition(name=name, data=backend.get_table(name)) for name in names},
        )


@dataclass(frozen=True, eq=False)
class ZoomedDataModel(BaseDataModel):
    """Data model with one table isolated in ``zoom``."""

    zoom: ZoomState

    is_zoomed: ClassVar[bool] = True

    def __repr__(self) -> str:
        return f"ZoomedDataModel(tables={self.list_tables()}, zoomed={self.zoom.table!r})"

    @property
    def zoomed_table(self) -> str:
        return self.zoom.table

    def with_zoom(self, **changes: Any) -> "ZoomedDataModel":
        return dataclasses.replace(self, zoom=self.zoom.replace(**changes))

    def unzoomed(self) -> DataModel:
        """Drop the zoom state, keeping the table definitions as they are."""
        return DataModel(backend=self.backend, tables=self.tables)


def check_not_zoomed(model: BaseDataModel, action: str) -> None:
    if model.is_zoomed:
        raise NotAllowedWhileZoomedError(action)


def check_zoomed(model: BaseDataModel, action: str) -> None:
    if not model.is_zoomed:
        raise NotZoomedError(action)
