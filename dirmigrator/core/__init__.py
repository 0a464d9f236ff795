"""Core module: ledger, scheduling, retry and rollback."""

from dirmigrator.core.models import (
    MigrationRun,
    ObjectRecord,
    ObjectStatus,
    PhaseState,
    PhaseStatus,
    RunOptions,
)
from dirmigrator.core.rewrite import RewriteRule, RewriteTable, rewrite_principal

__all__ = [
    "MigrationRun",
    "ObjectRecord",
    "ObjectStatus",
    "PhaseState",
    "PhaseStatus",
    "RunOptions",
    "RewriteRule",
    "RewriteTable",
    "rewrite_principal",
]
