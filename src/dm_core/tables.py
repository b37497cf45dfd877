"""Table-set operations: add, remove, rename and select tables.

Keys follow the tables they belong to: removing a table also removes the
foreign keys pointing at it, renaming a table rewrites those foreign keys.

Usage:
    from dm_core.tables import add_table, copy_to, nrow, rename_table

    model = add_table(model, "carriers_2013", carriers_df)
    model = rename_table(model, "carriers_2013", "carriers")
    nrow(model)
    # {'airlines': 16, 'airports': 1458, ..., 'carriers': 16}
    sql_model = copy_to(model, SQLBackend("sqlite:///flights.db"))
"""

import logging
from collections.abc import Mapping, Sequence

import pandas as pd

from dm_core.backends.base import TableBackend
from dm_core.errors import EmptyNameError
from dm_core.filtering import check_no_filter, materialize
from dm_core.model import DataModel, TableDefinition, check_not_zoomed

logger = logging.getLogger(__name__)


def add_table(model: DataModel, name: str, frame: pd.DataFrame) -> DataModel:
    """Store *frame* in the model's backend and add it as a key-less table.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        EmptyNameError: If *name* is blank or already taken.
    """
    check_not_zoomed(model, "add_table")
    check_no_filter(model, "add_table")
    if not name or not name.strip():
        raise EmptyNameError(name)
    if model.has_table(name):
        raise EmptyNameError(name, taken=True)

    handle = model.backend.store(name, frame)
    logger.debug(f"Added table '{name}' ({len(frame)} rows)")
    return model.set(TableDefinition(name=name, data=handle))


def select_tables(model: DataModel, tables: Sequence[str] | Mapping[str, str]) -> DataModel:
    """Keep only *tables*, in the given order; a mapping also renames (new -> old).

    Foreign keys pointing at dropped tables are removed.

    Raises:
        UnknownTableError: If a selected table does not exist.
        FiltersPendingError: If any table has a pending filter.
    """
    check_not_zoomed(model, "select_tables")
    check_no_filter(model, "select_tables")
    mapping = dict(tables) if isinstance(tables, Mapping) else {name: name for name in tables}
    for old in mapping.values():
        model.get(old)

    dropped = [name for name in model.list_tables() if name not in mapping.values()]

    renames = {old: new for new, old in mapping.items()}
    selected = {}
    for new, old in mapping.items():
        definition = model.get(old)
        foreign_keys = tuple(
            fk.model_copy(update={"parent": renames[fk.parent]})
            for fk in definition.foreign_keys
            if fk.parent in renames
        )
        selected[new] = definition.replace(name=new, foreign_keys=foreign_keys)

    if dropped:
        logger.debug(f"Dropped tables {', '.join(dropped)}")
    return DataModel(backend=model.backend, tables=selected)


def rm_table(model: DataModel, *tables: str) -> DataModel:
    """Remove *tables* and every foreign key pointing at them."""
    check_not_zoomed(model, "rm_table")
    check_no_filter(model, "rm_table")
    for name in tables:
        model.get(name)
    return select_tables(model, [name for name in model.list_tables() if name not in tables])


def rename_table(model: DataModel, old: str, new: str) -> DataModel:
    """Rename a table; foreign keys pointing at it follow.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        EmptyNameError: If *new* is blank or already taken.
    """
    check_not_zoomed(model, "rename_table")
    check_no_filter(model, "rename_table")
    model.get(old)
    if not new or not new.strip():
        raise EmptyNameError(new)
    if new != old and model.has_table(new):
        raise EmptyNameError(new, taken=True)
    return select_tables(model, {(new if name == old else name): name for name in model.list_tables()})


def nrow(model: DataModel) -> dict[str, int]:
    """Row count of every table after filter propagation."""
    return {name: model.backend.nrow(materialize(model, name)) for name in model.list_tables()}


def copy_to(
    model: DataModel,
    backend: TableBackend,
    tables: Sequence[str] | None = None,
) -> DataModel:
    """Copy the tables of *model* into another backend, keeping all keys.

    Args:
        model: A model without pending filters.
        backend: Target backend; existing tables with the same names are
            replaced.
        tables: Tables to copy (default: all).  Foreign keys to tables left
            out are dropped.

    Raises:
        FiltersPendingError: If the model has pending filters.
    """
    check_not_zoomed(model, "copy_to")
    check_no_filter(model, "copy_to")
    if tables is not None:
        model = select_tables(model, tables)

    copied = {}
    for name, definition in model.tables.items():
        frame = model.backend.collect(definition.data)
        copied[name] = definition.replace(data=backend.store(name, frame))
        logger.debug(f"Copied '{name}' ({len(frame)} rows)")

    logger.info(f"Copied {len(copied)} tables to {backend!r}")
    return DataModel(backend=backend, tables=copied)
