"""Configuration management: profiles, key declarations, TOML loading.

Usage:
    >>> from dm_core.config import load_model_config, ModelConfig, SourceProfile
"""

from dm_core.config.loader import load_model_config
from dm_core.config.models import ForeignKeySpec, ModelConfig, SourceProfile

__all__ = ["load_model_config", "ModelConfig", "SourceProfile", "ForeignKeySpec"]
