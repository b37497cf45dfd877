"""Filter engine: declare filters and propagate them along foreign keys.

Filtering one table may affect every table connected to it through one or
more foreign keys.  Evaluation is split in two tiers:

1. ``declare_filter()`` evaluates the predicate right away, but only against
   the filtered table's own rows; the result is kept next to the untouched
   ``data`` as the table's local view.  No other table is looked at.
2. ``materialize()`` computes the rows of one requested table by a chain of
   semi-joins starting at every filtered table connected to it, and
   ``apply_filters()`` does the same for every table at once and returns a
   model without pending filters.

Tables not connected to any filtered table are left unchanged.

Usage:
    from dm_core.filtering import apply_filters, declare_filter, materialize

    filtered = declare_filter(model, "airports", "name == 'John F Kennedy Intl'")
    flights = materialize(filtered, "flights")   # only JFK departures
    model2 = apply_filters(filtered)             # every table restricted
"""

import logging
import math
from dataclasses import dataclass

import pandas as pd

from dm_core.errors import ExpressionError, FiltersPendingError, UnknownColumnError
from dm_core.expressions import Expression, as_expression, columns_of, contains_aggregate, to_text
from dm_core.graph import GraphFactory, NetworkXKeyGraph, build_graph
from dm_core.model import BaseDataModel, DataModel, FilterEntry, check_not_zoomed
from dm_core.results import FilterInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterStep:
    """One step of a filter recipe.

    ``table`` is restricted by a semi-join with each table of ``semi_joins``
    (its neighbours one hop farther away from the requested table, already
    restricted by earlier steps).
    """

    table: str
    parent: str
    distance: int
    semi_joins: tuple[str, ...] = ()


# ============================================================================
# Declaring filters
# ============================================================================


def declare_filter(model: DataModel, table: str, predicate: Expression | str) -> DataModel:
    """Add a filter condition to *table*.

    The condition is stored in the model and evaluated against the table's
    own current rows only.  ``data`` of every table stays as it was.

    Args:
        model: A model that is not zoomed.
        table: Table the predicate refers to.
        predicate: Expression tree or text for ``parse_expression()``.

    Returns:
        New model with the filter pending.

    Raises:
        NotAllowedWhileZoomedError: If *model* is zoomed.
        UnknownTableError: If *table* is not in the model.
        UnknownColumnError: If the predicate references a missing column.
        ExpressionError: If the predicate text cannot be parsed or uses an
            aggregate.
    """
    check_not_zoomed(model, "declare_filter")
    definition = model.get(table)
    expr = as_expression(predicate)
    if contains_aggregate(expr):
        raise ExpressionError(f"Filters cannot use aggregates: '{to_text(expr)}'")
    check_expression_columns(model, table, definition.data, expr)

    local_view = model.backend.filter_rows(definition.current_data, expr)
    logger.debug(f"Filter on '{table}': {to_text(expr)}")

    return model.set(
        definition.replace(
            filters=definition.filters + (FilterEntry(expr),),
            filtered_data=local_view,
        )
    )


def check_expression_columns(model: BaseDataModel, table: str, handle: object, expr: Expression) -> None:
    """Raise ``UnknownColumnError`` for columns of *expr* missing in *handle*."""
    missing = sorted(columns_of(expr) - set(model.backend.column_names(handle)))
    if missing:
        raise UnknownColumnError(table, missing[0])


def get_filters(model: BaseDataModel) -> list[FilterInfo]:
    """All pending filters, table by table in model order."""
    return [
        FilterInfo(table=name, expression=to_text(entry.predicate), zoomed=entry.zoomed)
        for name, definition in model.tables.items()
        for entry in definition.filters
    ]


def check_no_filter(model: BaseDataModel, action: str) -> None:
    """Raise ``FiltersPendingError`` if any table has a pending filter."""
    filtered = model.filtered_tables()
    if filtered:
        raise FiltersPendingError(action, filtered)


def reset_filters(model: DataModel) -> DataModel:
    """Drop every pending filter without applying it."""
    check_not_zoomed(model, "reset_filters")
    return model.set_many(
        definition.replace(filters=(), filtered_data=None)
        for definition in model.tables.values()
        if definition.is_filtered or definition.filtered_data is not None
    )


# ============================================================================
# Propagation
# ============================================================================


def filter_recipe(
    model: BaseDataModel,
    table: str,
    graph_factory: GraphFactory = NetworkXKeyGraph,
) -> list[FilterStep]:
    """Compute the semi-join steps that restrict *table*.

    Starting from the filtered tables in the connected component of
    *table* (plus *table* itself), the set of tables is grown until every
    table's shortest-path predecessor towards *table* is included.  Steps are
    ordered farthest first, so a table is only used to restrict its
    predecessor after it has been restricted itself.  The last step is the
    sentinel for *table* (its own predecessor).
    """
    model.get(table)
    graph = build_graph(model, graph_factory)
    distances = graph.distances(table)
    connected = {name: d for name, d in distances.items() if math.isfinite(d)}
    predecessors = graph.predecessors(table, list(connected))

    wanted = set(model.filtered_tables()) | {table}
    nodes = [name for name in model.list_tables() if name in wanted and name in connected]
    while True:
        missing = {predecessors[name] for name in nodes} - set(nodes)
        if not missing:
            break
        nodes.extend(name for name in model.list_tables() if name in missing)

    ordered = sorted(nodes, key=lambda name: -connected[name])
    steps = [
        FilterStep(
            table=name,
            parent=predecessors[name],
            distance=int(connected[name]),
            semi_joins=tuple(
                child for child in ordered
                if child != name and predecessors[child] == name
            ),
        )
        for name in ordered
    ]
    logger.debug(
        f"Filter recipe for '{table}': "
        + ", ".join(f"{s.table}<{'+'.join(s.semi_joins)}>" for s in steps)
    )
    return steps


def join_columns(model: BaseDataModel, table: str, other: str) -> tuple[str, str]:
    """Key columns linking *table* and *other*, as (table column, other column).

    When several foreign keys relate the pair, the first one declared wins.
    """
    definition = model.get(table)
    other_definition = model.get(other)
    candidates = [
        (fk.column, other_definition.primary_key) for fk in definition.fks_to(other)
    ] + [
        (definition.primary_key, fk.column) for fk in other_definition.fks_to(table)
    ]
    if not candidates:
        raise ValueError(f"Tables '{table}' and '{other}' are not related by a foreign key")
    if len(candidates) > 1:
        logger.warning(
            f"Tables '{table}' and '{other}' are related by {len(candidates)} "
            f"foreign keys; filtering through {table}.{candidates[0][0]} = "
            f"{other}.{candidates[0][1]}"
        )
    return candidates[0]


def materialize(
    model: BaseDataModel,
    table: str,
    graph_factory: GraphFactory = NetworkXKeyGraph,
) -> object:
    """Return the rows of *table* implied by all pending filters.

    Without any pending filter in the model this is the table's raw
    ``data``.  Otherwise the recipe from ``filter_recipe()`` is executed,
    starting from every table's local view.

    Returns:
        Backend handle (nothing is fetched for lazy backends).

    Raises:
        UnknownTableError: If *table* is not in the model.
    """
    definition = model.get(table)
    if not model.filtered_tables():
        return definition.data

    backend = model.backend
    views = {name: d.current_data for name, d in model.tables.items()}
    for step in filter_recipe(model, table, graph_factory):
        view = views[step.table]
        for other in step.semi_joins:
            own_column, other_column = join_columns(model, step.table, other)
            view = backend.restrict_by_match(view, views[other], own_column, other_column)
        views[step.table] = view
    return views[table]


def apply_filters(model: DataModel, graph_factory: GraphFactory = NetworkXKeyGraph) -> DataModel:
    """Apply all pending filters to every table.

    Every table is materialized from the same input model, then its
    ``data`` is replaced by the result and its filters are cleared.

    Raises:
        NotAllowedWhileZoomedError: If *model* is zoomed.
    """
    check_not_zoomed(model, "apply_filters")
    if not model.filtered_tables():
        return model

    results = {name: materialize(model, name, graph_factory) for name in model.list_tables()}
    logger.info(f"Applied filters of {', '.join(model.filtered_tables())}")
    return model.set_many(
        definition.replace(data=results[name], filters=(), filtered_data=None)
        for name, definition in model.tables.items()
    )


def collect(model: BaseDataModel, table: str) -> pd.DataFrame:
    """Materialize *table* and fetch its rows."""
    return model.backend.collect(materialize(model, table))
