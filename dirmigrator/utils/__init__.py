"""Utility modules for the migration tool."""

from dirmigrator.utils.errors import (
    ErrorHandler,
    MigrationError,
    RecoverableError,
    StructuralError,
)

__all__ = [
    "ErrorHandler",
    "MigrationError",
    "RecoverableError",
    "StructuralError",
]
