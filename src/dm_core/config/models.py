"""Pydantic models for data model configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class SourceProfile(BaseModel):
    """Data source profile from dm.toml."""

    url: str
    description: str = ""
    tables: list[str] | None = None  # None = every table of the source
    schema_name: str | None = None  # database schema to reflect from
    learn_keys: bool = False  # read declared PK/FK constraints from the database


class ForeignKeySpec(BaseModel):
    """A foreign key declared in the ``[[keys.foreign]]`` array."""

    table: str
    column: str
    parent: str


class ModelConfig(BaseModel):
    """Complete configuration from dm.toml."""

    profiles: dict[str, SourceProfile]
    primary_keys: dict[str, str] = Field(default_factory=dict)
    foreign_keys: list[ForeignKeySpec] = Field(default_factory=list)
    check_keys: bool = True
