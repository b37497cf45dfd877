"""Primary and foreign key management with constraint validation.

Every mutation validates its preconditions against the model and the data
before returning a new model; a failed validation raises and leaves the
input model untouched.

- A primary key is a single column whose values are unique and non-missing
  (the uniqueness check can be skipped with ``check=False``).
- A foreign key ``(child_column, parent_table)`` always references the
  parent's current primary key, so the parent must have one.
- Keys can only change while no filter is pending; apply or reset the
  filters first.

Usage:
    from dm_core.keys import add_fk, add_pk, enumerate_pk_candidates

    model = add_pk(model, "airports", "faa")
    model = add_fk(model, "flights", "origin", "airports")
    [c.column for c in enumerate_pk_candidates(model, "planes") if c.candidate]
    # ['tailnum']
"""

import logging

from dm_core.errors import (
    DuplicateForeignKeyError,
    KeyInUseError,
    NoPrimaryKeyError,
    NotUniqueError,
    PrimaryKeyExistsError,
    ReferentialIntegrityError,
    UnknownColumnError,
    UnknownForeignKeyError,
)
from dm_core.filtering import check_no_filter, materialize
from dm_core.model import BaseDataModel, DataModel, ForeignKey, TableDefinition, check_not_zoomed
from dm_core.results import ConstraintProblem, ConstraintReport, FkInfo, PkCandidate

logger = logging.getLogger(__name__)


def _check_column(model: BaseDataModel, definition: TableDefinition, column: str) -> None:
    if column not in model.backend.column_names(definition.data):
        raise UnknownColumnError(definition.name, column)


# ============================================================================
# Primary keys
# ============================================================================


def add_pk(
    model: DataModel,
    table: str,
    column: str,
    check: bool = True,
    force: bool = False,
) -> DataModel:
    """Declare *column* as the primary key of *table*.

    Args:
        model: A model that is not zoomed.
        table: Table name.
        column: Key column.
        check: Verify that the column is unique and has no missing values.
        force: Replace an existing, different primary key.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        UnknownColumnError: If the column does not exist.
        PrimaryKeyExistsError: If another key exists and *force* is false.
        KeyInUseError: If the key being replaced is referenced by foreign keys.
        NotUniqueError: If *check* is set and the column is not unique.
    """
    check_not_zoomed(model, "add_pk")
    check_no_filter(model, "add_pk")
    definition = model.get(table)
    _check_column(model, definition, column)

    if definition.primary_key == column:
        return model
    if definition.primary_key is not None:
        if not force:
            raise PrimaryKeyExistsError(table, definition.primary_key)
        referencing = model.referencing(table)
        if referencing:
            raise KeyInUseError(table, [f"{child}.{fk.column}" for child, fk in referencing])

    if check and not model.backend.is_unique_column(definition.data, column):
        raise NotUniqueError(table, column)

    logger.debug(f"Primary key {table}.{column}")
    return model.set(definition.replace(primary_key=column))


def rm_pk(model: DataModel, table: str, rm_referencing_fks: bool = False) -> DataModel:
    """Remove the primary key of *table*.

    Args:
        rm_referencing_fks: Also remove the foreign keys pointing at the
            table; otherwise their existence is an error.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        NoPrimaryKeyError: If the table has no primary key.
        KeyInUseError: If foreign keys reference the key and
            *rm_referencing_fks* is false.
    """
    check_not_zoomed(model, "rm_pk")
    check_no_filter(model, "rm_pk")
    if model.get(table).primary_key is None:
        raise NoPrimaryKeyError(table)

    referencing = model.referencing(table)
    if referencing and not rm_referencing_fks:
        raise KeyInUseError(table, [f"{child}.{fk.column}" for child, fk in referencing])

    children = {child for child, _ in referencing}
    model = model.set_many(
        model.get(child).replace(
            foreign_keys=tuple(fk for fk in model.get(child).foreign_keys if fk.parent != table)
        )
        for child in children
    )
    return model.set(model.get(table).replace(primary_key=None))


def get_pk(model: BaseDataModel, table: str) -> str | None:
    return model.get(table).primary_key


def has_pk(model: BaseDataModel, table: str) -> bool:
    return model.get(table).primary_key is not None


def get_all_pks(model: BaseDataModel) -> dict[str, str]:
    """Primary key column of every table that has one."""
    return {
        name: definition.primary_key
        for name, definition in model.tables.items()
        if definition.primary_key is not None
    }


def enumerate_pk_candidates(model: BaseDataModel, table: str) -> list[PkCandidate]:
    """Check every column of *table* for unique, non-missing values."""
    definition = model.get(table)
    backend = model.backend
    candidates = []
    for column in backend.column_names(definition.data):
        unique = backend.is_unique_column(definition.data, column)
        candidates.append(
            PkCandidate(
                column=column,
                candidate=unique,
                why="" if unique else "has duplicate or missing values",
            )
        )
    return candidates


# ============================================================================
# Foreign keys
# ============================================================================


def add_fk(
    model: DataModel,
    child_table: str,
    child_column: str,
    parent_table: str,
    check: bool = False,
) -> DataModel:
    """Declare that *child_column* references the primary key of *parent_table*.

    Args:
        check: Verify that every non-missing child value occurs among the
            parent's key values.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        NoPrimaryKeyError: If the parent has no primary key.
        UnknownColumnError: If the child column does not exist.
        DuplicateForeignKeyError: If the same foreign key already exists.
        ReferentialIntegrityError: If *check* is set and values are missing
            in the parent.
    """
    check_not_zoomed(model, "add_fk")
    check_no_filter(model, "add_fk")
    child = model.get(child_table)
    parent = model.get(parent_table)

    if parent.primary_key is None:
        raise NoPrimaryKeyError(parent_table)
    _check_column(model, child, child_column)

    fk = ForeignKey(column=child_column, parent=parent_table)
    if fk in child.foreign_keys:
        raise DuplicateForeignKeyError(child_table, child_column, parent_table)

    if check and not model.backend.is_subset(
        child.data, parent.data, child_column, parent.primary_key
    ):
        raise ReferentialIntegrityError(child_table, child_column, parent_table)

    logger.debug(f"Foreign key {child_table}.{child_column} -> {parent_table}.{parent.primary_key}")
    return model.set(child.replace(foreign_keys=child.foreign_keys + (fk,)))


def rm_fk(
    model: DataModel,
    child_table: str,
    child_column: str | None,
    parent_table: str,
) -> DataModel:
    """Remove foreign keys from *child_table* to *parent_table*.

    With ``child_column=None`` every foreign key between the two tables is
    removed.

    Raises:
        FiltersPendingError: If any table has a pending filter.
        UnknownForeignKeyError: If no matching foreign key exists.
    """
    check_not_zoomed(model, "rm_fk")
    check_no_filter(model, "rm_fk")
    child = model.get(child_table)
    model.get(parent_table)

    matching = [
        fk for fk in child.fks_to(parent_table)
        if child_column is None or fk.column == child_column
    ]
    if not matching:
        raise UnknownForeignKeyError(child_table, child_column, parent_table)

    remaining = tuple(fk for fk in child.foreign_keys if fk not in matching)
    return model.set(child.replace(foreign_keys=remaining))


def has_fk(model: BaseDataModel, child_table: str, parent_table: str) -> bool:
    model.get(parent_table)
    return bool(model.get(child_table).fks_to(parent_table))


def _fk_info(model: BaseDataModel, child_table: str, fk: ForeignKey) -> FkInfo:
    return FkInfo(
        child_table=child_table,
        child_column=fk.column,
        parent_table=fk.parent,
        parent_column=model.get(fk.parent).primary_key or "",
    )


def get_fks(model: BaseDataModel, child_table: str) -> list[FkInfo]:
    """Outgoing foreign keys of *child_table*."""
    return [_fk_info(model, child_table, fk) for fk in model.get(child_table).foreign_keys]


def get_referencing_fks(model: BaseDataModel, parent_table: str) -> list[FkInfo]:
    """Foreign keys of other tables that point at *parent_table*."""
    model.get(parent_table)
    return [_fk_info(model, child, fk) for child, fk in model.referencing(parent_table)]


def get_all_fks(model: BaseDataModel) -> list[FkInfo]:
    return [
        _fk_info(model, name, fk)
        for name, definition in model.tables.items()
        for fk in definition.foreign_keys
    ]


# ============================================================================
# Constraint checking
# ============================================================================


def check_constraints(model: BaseDataModel) -> ConstraintReport:
    """Check every declared key against the (filtered) data.

    Primary keys must be unique and non-missing; foreign key values must
    occur among the parent's key values.
    """
    backend = model.backend
    problems: list[ConstraintProblem] = []
    checked = 0

    views = {name: materialize(model, name) for name in model.list_tables()}

    for name, column in get_all_pks(model).items():
        checked += 1
        if not backend.is_unique_column(views[name], column):
            problems.append(
                ConstraintProblem(
                    kind="PK",
                    table=name,
                    column=column,
                    message="duplicate or missing values",
                )
            )

    for info in get_all_fks(model):
        checked += 1
        if not backend.is_subset(
            views[info.child_table], views[info.parent_table], info.child_column, info.parent_column
        ):
            problems.append(
                ConstraintProblem(
                    kind="FK",
                    table=info.child_table,
                    column=info.child_column,
                    parent_table=info.parent_table,
                    message=f"values missing from {info.parent_table}.{info.parent_column}",
                )
            )

    return ConstraintReport(valid=not problems, checked=checked, problems=problems)
