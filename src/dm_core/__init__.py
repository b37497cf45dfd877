"""dm-core: relational data model over a set of tables.

Tracks primary keys, foreign keys and pending row filters for a collection
of tables held by a pandas or SQL backend, propagates filters along the
foreign key graph on demand, and lets one table at a time be zoomed into,
transformed and put back with its keys.

Usage:
    from dm_core import DataModel, FrameBackend
    from dm_core import add_pk, add_fk, declare_filter, materialize
    from dm_core import zoom_to, zoom_summarise, insert_zoomed
    from dm_core import connect_model, load_model_config
"""

__version__ = "0.1.0"

# Backends
from dm_core.backends import FrameBackend, SQLBackend, TableBackend

# Store
from dm_core.model import (
    DataModel,
    FilterEntry,
    ForeignKey,
    TableDefinition,
    ZoomedDataModel,
)

# Expressions
from dm_core.expressions import col, lit, parse_expression

# Graph
from dm_core.graph import KeyGraph, NetworkXKeyGraph, build_graph

# Filtering
from dm_core.filtering import (
    apply_filters,
    check_no_filter,
    collect,
    declare_filter,
    get_filters,
    materialize,
    reset_filters,
)

# Keys
from dm_core.keys import (
    add_fk,
    add_pk,
    check_constraints,
    enumerate_pk_candidates,
    get_all_fks,
    get_all_pks,
    get_fks,
    get_pk,
    get_referencing_fks,
    has_fk,
    has_pk,
    rm_fk,
    rm_pk,
)

# Zoom
from dm_core.zoom import (
    insert_zoomed,
    update_zoomed,
    zoom_drop,
    zoom_filter,
    zoom_group_by,
    zoom_mutate,
    zoom_out,
    zoom_rename,
    zoom_select,
    zoom_summarise,
    zoom_to,
    zoom_transmute,
    zoom_ungroup,
)

# Tables
from dm_core.tables import add_table, copy_to, nrow, rename_table, rm_table, select_tables

# Config and factory
from dm_core.config import ModelConfig, SourceProfile, load_model_config
from dm_core.factory import ProfileNotFoundError, connect_model

# Errors
from dm_core.errors import DataModelError

__all__ = [
    # Backends
    "TableBackend",
    "FrameBackend",
    "SQLBackend",
    # Store
    "DataModel",
    "ZoomedDataModel",
    "TableDefinition",
    "ForeignKey",
    "FilterEntry",
    # Expressions
    "col",
    "lit",
    "parse_expression",
    # Graph
    "KeyGraph",
    "NetworkXKeyGraph",
    "build_graph",
    # Filtering
    "declare_filter",
    "materialize",
    "apply_filters",
    "get_filters",
    "check_no_filter",
    "reset_filters",
    "collect",
    # Keys
    "add_pk",
    "rm_pk",
    "get_pk",
    "has_pk",
    "get_all_pks",
    "enumerate_pk_candidates",
    "add_fk",
    "rm_fk",
    "has_fk",
    "get_fks",
    "get_all_fks",
    "get_referencing_fks",
    "check_constraints",
    # Zoom
    "zoom_to",
    "zoom_out",
    "update_zoomed",
    "insert_zoomed",
    "zoom_select",
    "zoom_rename",
    "zoom_drop",
    "zoom_mutate",
    "zoom_transmute",
    "zoom_group_by",
    "zoom_ungroup",
    "zoom_summarise",
    "zoom_filter",
    # Tables
    "add_table",
    "rm_table",
    "rename_table",
    "select_tables",
    "nrow",
    "copy_to",
    # Config and factory
    "load_model_config",
    "ModelConfig",
    "SourceProfile",
    "connect_model",
    "ProfileNotFoundError",
    # Errors
    "DataModelError",
]
