"""Directory tenant migration tool.

Resumable, dependency-ordered migration of directory configuration objects
between two tenants, tracked in a durable per-run ledger.
"""

__version__ = "1.0.0"

from dirmigrator.config import Config, load_config
from dirmigrator.core.orchestrator import MigrationOrchestrator

__all__ = ["Config", "load_config", "MigrationOrchestrator", "__version__"]
