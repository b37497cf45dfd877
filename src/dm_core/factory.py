"""Data model factory.

Builds a ``DataModel`` from a configured source:

1. Resolve the profile (explicit name or ``<prefix>DM_PROFILE`` env var).
2. Open an ``SQLBackend`` on the profile URL and list its tables.
3. Optionally learn declared single-column keys from the database.
4. Apply the keys declared in the ``[keys]`` section of dm.toml.
"""

import logging
import os
from pathlib import Path

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from dm_core.backends.base import TableBackend
from dm_core.backends.sql import SQLBackend
from dm_core.config import load_model_config
from dm_core.config.models import ModelConfig, SourceProfile
from dm_core.keys import add_fk, add_pk, get_pk
from dm_core.model import DataModel

logger = logging.getLogger(__name__)


# ============================================================================
# Profile Resolution
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no data source profile is configured."""

    pass


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix for the environment variable
            (e.g. ``"APP_"`` reads ``APP_DM_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DM_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No data source profile configured.\n"
        f"Run with --profile <name> or set {env_var}=<name>"
    )


def resolve_profile(config: ModelConfig, profile_name: str) -> SourceProfile:
    """Look up *profile_name* in *config*.

    Raises:
        ProfileNotFoundError: If the profile is not defined
    """
    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in config.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )
    return config.profiles[profile_name]


# ============================================================================
# Model Construction
# ============================================================================


def model_from_backend(backend: TableBackend, tables: list[str] | None = None) -> DataModel:
    """Key-less model over *tables* of *backend* (default: all tables)."""
    model = DataModel.from_backend(backend, tables)
    logger.debug(f"Model with {len(model)} tables from {backend!r}")
    return model


def learn_keys(model: DataModel, engine: Engine, schema: str | None = None) -> DataModel:
    """Add the primary and foreign keys declared in the database.

    Only single-column keys are supported; compound keys and foreign keys
    to tables outside the model are skipped.  Values are not checked: the
    database already enforces declared constraints.
    """
    inspector = inspect(engine)

    for table in model.list_tables():
        columns = inspector.get_pk_constraint(table, schema=schema).get("constrained_columns") or []
        if len(columns) == 1:
            model = add_pk(model, table, columns[0], check=False)
        elif len(columns) > 1:
            logger.warning(f"Skipping compound primary key of '{table}': {', '.join(columns)}")

    for table in model.list_tables():
        for fk in inspector.get_foreign_keys(table, schema=schema):
            columns = fk["constrained_columns"]
            parent = fk["referred_table"]
            if len(columns) != 1:
                logger.warning(
                    f"Skipping compound foreign key {table}({', '.join(columns)}) -> {parent}"
                )
                continue
            if not model.has_table(parent):
                logger.debug(f"Skipping foreign key {table}.{columns[0]} -> {parent}: not in model")
                continue
            if get_pk(model, parent) != fk["referred_columns"][0]:
                logger.warning(
                    f"Skipping foreign key {table}.{columns[0]} -> "
                    f"{parent}.{fk['referred_columns'][0]}: not the primary key of '{parent}'"
                )
                continue
            model = add_fk(model, table, columns[0], parent)

    return model


def apply_key_config(model: DataModel, config: ModelConfig) -> DataModel:
    """Apply the ``[keys]`` section of *config* to *model*.

    Configured primary keys replace learned ones.  Keys involving tables
    that are not part of the model are skipped.
    """
    for table, column in config.primary_keys.items():
        if not model.has_table(table):
            logger.debug(f"Skipping configured primary key of '{table}': not in model")
            continue
        model = add_pk(model, table, column, check=config.check_keys, force=True)

    for spec in config.foreign_keys:
        if not (model.has_table(spec.table) and model.has_table(spec.parent)):
            logger.debug(f"Skipping configured foreign key {spec.table}.{spec.column}: not in model")
            continue
        if any(fk.column == spec.column for fk in model.get(spec.table).fks_to(spec.parent)):
            continue
        model = add_fk(model, spec.table, spec.column, spec.parent, check=config.check_keys)

    return model


def connect_model(
    profile_name: str | None = None,
    config_path: Path | str | None = None,
    env_prefix: str = "",
) -> DataModel:
    """Build the data model of a configured profile.

    Args:
        profile_name: Profile name from dm.toml. If None, uses the
            ``<prefix>DM_PROFILE`` env var.
        config_path: Path to dm.toml (default: ``./dm.toml``).
        env_prefix: Prefix for environment variable lookup.

    Returns:
        DataModel on an ``SQLBackend`` with learned and configured keys

    Raises:
        ProfileNotFoundError: If no profile is configured or it is unknown
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config format is invalid

    Example:
        >>> model = connect_model("local")
        >>> model.list_tables()
        ['airlines', 'airports', 'flights', 'planes', 'weather']
    """
    config = load_model_config(config_path)
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)
    profile = resolve_profile(config, profile_name)

    backend = SQLBackend(profile.url, schema=profile.schema_name)
    try:
        model = model_from_backend(backend, profile.tables)
        if profile.learn_keys:
            model = learn_keys(model, backend.engine, schema=profile.schema_name)
        model = apply_key_config(model, config)
    except Exception:
        backend.close()
        raise

    logger.info(f"Connected profile '{profile_name}' ({len(model)} tables)")
    return model
