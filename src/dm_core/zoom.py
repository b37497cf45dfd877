"""Zoom: isolate one table of a model for transformation.

Zooming to a table returns a ``ZoomedDataModel`` holding a working copy of
the table's rows and a *key tracker*: for every key-bearing column of the
table (primary key and outgoing foreign keys) the column's current name in
the working copy.  Transformations update the tracker (renames follow the
column; dropping or overwriting a key column removes it), so that on the
way back the model knows which relations still make sense.

Transformations on the working copy:

- ``zoom_select``, ``zoom_rename``, ``zoom_drop``
- ``zoom_mutate``, ``zoom_transmute``
- ``zoom_group_by``, ``zoom_ungroup``, ``zoom_summarise``
- ``zoom_filter``: stored as a zoom filter of the table

Leaving the zoom:

1. ``zoom_out()``: the working copy and all zoom filters are discarded.
2. ``update_zoomed()``: the working copy replaces the table; zoom filters
   join the table's filters.
3. ``insert_zoomed()``: the working copy becomes a new table; zoom filters
   move to the new table, the original table keeps its own.

Whenever possible the keys of the original table are transferred.

Usage:
    from dm_core.zoom import insert_zoomed, zoom_group_by, zoom_summarise, zoom_to

    zoomed = zoom_to(model, "flights")
    zoomed = zoom_group_by(zoomed, "origin")
    zoomed = zoom_summarise(zoomed, mean_delay="mean(dep_delay)", n="n()")
    model = insert_zoomed(zoomed, "delays_by_origin")
    # delays_by_origin.origin still references airports.faa
"""

import logging
from collections.abc import Mapping, Sequence

from dm_core.errors import AlreadyZoomedError, EmptyNameError, ExpressionError, UnknownColumnError
from dm_core.expressions import Aggregate, Expression, as_expression, columns_of, contains_aggregate, to_text
from dm_core.model import (
    BaseDataModel,
    DataModel,
    FilterEntry,
    ForeignKey,
    TableDefinition,
    ZoomedDataModel,
    ZoomState,
    check_zoomed,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Entering and leaving
# ============================================================================


def zoom_to(model: BaseDataModel, table: str) -> ZoomedDataModel:
    """Isolate *table* for transformation.

    The working copy starts as the table's current rows (own filters
    applied); the key tracker starts as the identity over the primary key
    and every foreign key column.

    Raises:
        AlreadyZoomedError: If *model* is already zoomed.
        UnknownTableError: If *table* is not in the model.
    """
    if isinstance(model, ZoomedDataModel):
        raise AlreadyZoomedError(model.zoomed_table)
    definition = model.get(table)

    keys = [definition.primary_key] if definition.primary_key else []
    keys += [fk.column for fk in definition.foreign_keys]
    tracker = {column: column for column in keys}

    return ZoomedDataModel(
        backend=model.backend,
        tables=model.tables,
        zoom=ZoomState(table=table, data=definition.current_data, key_tracker=tracker),
    )


def zoom_out(model: BaseDataModel) -> DataModel:
    """Discard the working copy and the zoom filters.

    A model that is not zoomed is returned as is.
    """
    if not isinstance(model, ZoomedDataModel):
        return model

    definition = model.get(model.zoomed_table)
    result = model.unzoomed()
    if any(entry.zoomed for entry in definition.filters):
        result = result.set(
            definition.replace(filters=tuple(e for e in definition.filters if not e.zoomed))
        )
    return result


def update_zoomed(model: BaseDataModel) -> DataModel:
    """Replace the zoomed table with its working copy.

    - Primary key: kept under its tracked name if it survived, else dropped.
    - Incoming foreign keys: kept if the primary key survived, else removed
      from the referencing tables.
    - Outgoing foreign keys: renamed through the tracker, dropped if their
      column vanished.
    - Filters: zoom filters are merged into the table's filters.

    A model that is not zoomed is returned as is.
    """
    if not isinstance(model, ZoomedDataModel):
        return model

    table = model.zoomed_table
    definition = model.get(table)
    new_pk = _surviving_pk(model)

    updated = definition.replace(
        data=model.zoom.data,
        primary_key=new_pk,
        foreign_keys=_surviving_fks(model, new_pk, is_update=True),
        filters=tuple(FilterEntry(entry.predicate) for entry in definition.filters),
        filtered_data=None,
    )
    result = model.unzoomed().set(updated)

    if new_pk is None:
        children = {child for child, _ in result.referencing(table)}
        if children:
            logger.info(
                f"Primary key of '{table}' did not survive; dropping foreign keys "
                f"from {', '.join(sorted(children))}"
            )
        result = result.set_many(
            result.get(child).replace(
                foreign_keys=tuple(fk for fk in result.get(child).foreign_keys if fk.parent != table)
            )
            for child in children
        )
    return result


def insert_zoomed(model: BaseDataModel, new_name: str) -> DataModel:
    """Add the working copy to the model as a new table.

    Keys are transferred with the same rules as ``update_zoomed()``;
    foreign keys referencing the original table are copied to reference the
    new table too.  The original table keeps its keys and pre-zoom
    filters; zoom filters move to the new table.

    Raises:
        NotZoomedError: If *model* is not zoomed.
        EmptyNameError: If *new_name* is blank or already taken.
    """
    check_zoomed(model, "insert_zoomed")
    if not new_name or not new_name.strip():
        raise EmptyNameError(new_name)
    if model.has_table(new_name):
        raise EmptyNameError(new_name, taken=True)

    table = model.zoomed_table
    definition = model.get(table)
    new_pk = _surviving_pk(model)

    original = definition
    if any(entry.zoomed for entry in definition.filters):
        original = definition.replace(filters=tuple(e for e in definition.filters if not e.zoomed))
    inserted = TableDefinition(
        name=new_name,
        data=model.zoom.data,
        primary_key=new_pk,
        foreign_keys=_surviving_fks(model, new_pk, is_update=False),
        filters=tuple(FilterEntry(e.predicate) for e in definition.filters if e.zoomed),
    )
    result = model.unzoomed().set(original).set(inserted)

    if new_pk is not None:
        # every table referencing the original also references the copy,
        # including the original itself for a self-reference
        copied: dict[str, list[ForeignKey]] = {}
        for child, fk in model.referencing(table):
            copied.setdefault(child, []).append(ForeignKey(column=fk.column, parent=new_name))
        result = result.set_many(
            result.get(child).replace(foreign_keys=result.get(child).foreign_keys + tuple(fks))
            for child, fks in copied.items()
        )

    logger.debug(f"Inserted zoomed '{table}' as '{new_name}' (primary key: {new_pk})")
    return result


def _surviving_pk(model: ZoomedDataModel) -> str | None:
    original = model.get(model.zoomed_table).primary_key
    if original is None:
        return None
    return model.zoom.key_tracker.get(original)


def _surviving_fks(
    model: ZoomedDataModel,
    new_pk: str | None,
    is_update: bool,
) -> tuple[ForeignKey, ...]:
    table = model.zoomed_table
    tracker = model.zoom.key_tracker
    surviving = []
    for fk in model.get(table).foreign_keys:
        column = tracker.get(fk.column)
        if column is None:
            logger.debug(f"Foreign key {table}.{fk.column} -> {fk.parent} lost in zoom")
            continue
        # a self-reference needs the updated table to still have a key
        if is_update and fk.parent == table and new_pk is None:
            continue
        surviving.append(ForeignKey(column=column, parent=fk.parent))
    return tuple(surviving)


# ============================================================================
# Transformations
# ============================================================================


def _columns(model: ZoomedDataModel) -> list[str]:
    return model.backend.column_names(model.zoom.data)


def _check_columns(model: ZoomedDataModel, columns: Sequence[str]) -> None:
    available = set(_columns(model))
    for column in columns:
        if column not in available:
            raise UnknownColumnError(model.zoomed_table, column)


def _reselect(model: ZoomedDataModel, mapping: Mapping[str, str]) -> ZoomedDataModel:
    """Apply a new -> old column mapping and carry tracker and groups along."""
    tracker: dict[str, str] = {}
    for original, current in model.zoom.key_tracker.items():
        for new, old in mapping.items():
            if old == current:
                tracker[original] = new
                break

    groups = []
    for group in model.zoom.groups:
        for new, old in mapping.items():
            if old == group:
                groups.append(new)
                break

    return model.with_zoom(
        data=model.backend.select_columns(model.zoom.data, mapping),
        key_tracker=tracker,
        groups=tuple(groups),
    )


def zoom_select(model: ZoomedDataModel, columns: Sequence[str] | Mapping[str, str]) -> ZoomedDataModel:
    """Keep only *columns*; a mapping selects and renames (new -> old).

    Grouping columns are always kept.
    """
    check_zoomed(model, "zoom_select")
    if isinstance(columns, Mapping):
        mapping = dict(columns)
    else:
        mapping = {column: column for column in columns}
    _check_columns(model, list(mapping.values()))

    for group in reversed(model.zoom.groups):
        if group not in mapping.values():
            mapping = {group: group, **mapping}
    return _reselect(model, mapping)


def zoom_rename(model: ZoomedDataModel, renames: Mapping[str, str]) -> ZoomedDataModel:
    """Rename columns (old -> new), keeping every column.

    Raises:
        UnknownColumnError: If a renamed column does not exist.
        ValueError: If two columns would end up with the same name.
    """
    check_zoomed(model, "zoom_rename")
    _check_columns(model, list(renames))
    new_names = list(renames.values())
    duplicated = sorted({name for name in new_names if new_names.count(name) > 1})
    if duplicated:
        raise ValueError(f"Columns renamed to the same name: {', '.join(duplicated)}")
    kept = {column for column in _columns(model) if column not in renames}
    clashes = sorted(kept & set(new_names))
    if clashes:
        raise ValueError(
            f"Cannot rename to existing column(s) of '{model.zoomed_table}': {', '.join(clashes)}"
        )
    mapping = {renames.get(column, column): column for column in _columns(model)}
    return _reselect(model, mapping)


def zoom_drop(model: ZoomedDataModel, columns: Sequence[str]) -> ZoomedDataModel:
    """Remove *columns*; dropped key columns leave the tracker."""
    check_zoomed(model, "zoom_drop")
    _check_columns(model, columns)
    mapping = {column: column for column in _columns(model) if column not in columns}
    return _reselect(model, mapping)


def _parse_assignments(model: ZoomedDataModel, assignments: Mapping[str, Expression | str]) -> dict[str, Expression]:
    parsed = {name: as_expression(expr) for name, expr in assignments.items()}
    known = set(_columns(model))
    for name, expr in parsed.items():
        if contains_aggregate(expr):
            raise ExpressionError(f"'{name}' uses an aggregate; use zoom_summarise() instead")
        missing = sorted(columns_of(expr) - known)
        if missing:
            raise UnknownColumnError(model.zoomed_table, missing[0])
        known.add(name)
    return parsed


def zoom_mutate(model: ZoomedDataModel, **assignments: Expression | str) -> ZoomedDataModel:
    """Add or overwrite columns.  Overwritten key columns leave the tracker.

    Example:
        zoomed = zoom_mutate(zoomed, gain="dep_delay - arr_delay")
    """
    check_zoomed(model, "zoom_mutate")
    parsed = _parse_assignments(model, assignments)
    tracker = {
        original: current
        for original, current in model.zoom.key_tracker.items()
        if current not in parsed
    }
    return model.with_zoom(
        data=model.backend.mutate(model.zoom.data, parsed),
        key_tracker=tracker,
    )


def zoom_transmute(model: ZoomedDataModel, **assignments: Expression | str) -> ZoomedDataModel:
    """Like ``zoom_mutate()``, keeping only grouping and new columns."""
    check_zoomed(model, "zoom_transmute")
    mutated = zoom_mutate(model, **assignments)
    keep = list(mutated.zoom.groups) + [name for name in assignments if name not in mutated.zoom.groups]
    return _reselect(mutated, {name: name for name in keep})


def zoom_group_by(model: ZoomedDataModel, *columns: str) -> ZoomedDataModel:
    """Set the grouping columns used by ``zoom_summarise()``."""
    check_zoomed(model, "zoom_group_by")
    _check_columns(model, columns)
    return model.with_zoom(groups=tuple(columns))


def zoom_ungroup(model: ZoomedDataModel) -> ZoomedDataModel:
    check_zoomed(model, "zoom_ungroup")
    return model.with_zoom(groups=())


def zoom_summarise(model: ZoomedDataModel, **aggregations: Expression | str) -> ZoomedDataModel:
    """Aggregate the working copy to one row per group.

    Only grouping columns survive as key columns; the result is ungrouped.

    Example:
        zoomed = zoom_summarise(zoom_group_by(zoomed, "origin"), n="n()")
    """
    check_zoomed(model, "zoom_summarise")
    parsed = {name: as_expression(expr) for name, expr in aggregations.items()}
    for name, expr in parsed.items():
        if not isinstance(expr, Aggregate):
            raise ExpressionError(f"'{name}' must be an aggregate such as mean(x), got '{to_text(expr)}'")
        _check_columns(model, sorted(columns_of(expr)))

    groups = model.zoom.groups
    tracker = {
        original: current
        for original, current in model.zoom.key_tracker.items()
        if current in groups and current not in parsed
    }
    return model.with_zoom(
        data=model.backend.summarise(model.zoom.data, groups, parsed),
        key_tracker=tracker,
        groups=(),
    )


def zoom_filter(model: ZoomedDataModel, predicate: Expression | str) -> ZoomedDataModel:
    """Filter the working copy and record the condition as a zoom filter."""
    check_zoomed(model, "zoom_filter")
    expr = as_expression(predicate)
    _check_columns(model, sorted(columns_of(expr)))

    table = model.zoomed_table
    definition = model.get(table)
    logger.debug(f"Zoom filter on '{table}': {to_text(expr)}")
    with_filter = model.set(
        definition.replace(filters=definition.filters + (FilterEntry(expr, zoomed=True),))
    )
    return with_filter.with_zoom(data=model.backend.filter_rows(model.zoom.data, expr))


def zoomed_data(model: ZoomedDataModel) -> object:
    """Handle to the current working copy."""
    check_zoomed(model, "zoomed_data")
    return model.zoom.data
