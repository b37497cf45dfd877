"""TOML loading for data model configuration."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from dm_core.config.models import ForeignKeySpec, ModelConfig, SourceProfile

DEFAULT_CONFIG_FILE = "dm.toml"


def load_model_config(config_path: Path | str | None = None) -> ModelConfig:
    """Load profiles and key declarations from a TOML file.

    Args:
        config_path: Path to the config file (default: ``dm.toml`` in the
            current working directory)

    Returns:
        ModelConfig with all profiles and declared keys

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example:
        >>> config = load_model_config("dm.toml")
        >>> config.primary_keys
        {'airports': 'faa', 'planes': 'tailnum'}
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Data model config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_FILE} with at least one [profiles.<name>] section."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        # Parse profiles
        profiles = {}
        for name, profile_data in data.get("profiles", {}).items():
            if "schema" in profile_data:
                profile_data = {**profile_data, "schema_name": profile_data["schema"]}
                del profile_data["schema"]
            profiles[name] = SourceProfile(**profile_data)

        # Parse key declarations
        keys = data.get("keys", {})
        foreign_keys = [ForeignKeySpec(**fk) for fk in keys.get("foreign", [])]

        return ModelConfig(
            profiles=profiles,
            primary_keys=keys.get("primary", {}),
            foreign_keys=foreign_keys,
            check_keys=keys.get("check", True),
        )
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid config in {config_path}: {e}") from e
