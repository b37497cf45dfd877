"""Tabular backends package.

Provides the ``TableBackend`` Protocol and its two implementations: the
in-memory pandas ``FrameBackend`` and the SQLAlchemy-based ``SQLBackend``.

Usage:
    from dm_core.backends import FrameBackend, SQLBackend, TableBackend
"""

from dm_core.backends.base import TableBackend
from dm_core.backends.frame import FrameBackend
from dm_core.backends.sql import SQLBackend, create_engine_pooled

__all__ = [
    "TableBackend",
    "FrameBackend",
    "SQLBackend",
    "create_engine_pooled",
]
