"""Processor contract: the pluggable per-object-type unit of a phase."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from dirmigrator.api.client import DirectoryClient
from dirmigrator.core.models import MigrationRun, ObjectStatus
from dirmigrator.core.rewrite import RewriteTable
from dirmigrator.utils.errors import PayloadRejectedError


class ProcessorContext:
    """What a processor may see while its phase runs."""

    def __init__(
        self,
        run: MigrationRun,
        source: DirectoryClient,
        destination: DirectoryClient,
        rewrite: Optional[RewriteTable] = None,
    ) -> None:
        self.run = run
        self.source = source
        self.destination = destination
        self.rewrite = rewrite or RewriteTable(run.options.rewrite_rules)

    @property
    def dry_run(self) -> bool:
        return self.run.options.dry_run

    def id_mapping(self, phase: str) -> Dict[str, str]:
        return self.run.id_mapping(phase)

    def resolve(self, phase: str, source_id: str) -> Optional[str]:
        """Destination id for ``source_id`` migrated by ``phase``, if Completed."""
        return self.run.id_mapping(phase).get(source_id)

    def was_skipped(self, phase: str, source_id: str) -> bool:
        """Whether ``phase`` deliberately left ``source_id`` unmigrated."""
        state = self.run.phases.get(phase)
        if state is None:
            return False
        return any(
            record.source_id == source_id and record.status == ObjectStatus.SKIPPED
            for record in state.records.values()
        )

    def require(self, phase: str, source_id: str) -> str:
        """Like :meth:`resolve` but a missing mapping rejects the payload."""
        destination_id = self.resolve(phase, source_id)
        if destination_id is None:
            raise PayloadRejectedError(
                f"no {phase} mapping for source id {source_id!r}",
                {"phase": phase, "source_id": source_id},
            )
        return destination_id


class Processor(ABC):
    """Enumerates source objects of one type and creates them at the destination.

    Subclasses set ``object_type`` and implement :meth:`enumerate`,
    :meth:`object_key` and :meth:`create`. The orchestrator owns every
    ledger transition; a processor only reads and talks to the tenants.
    """

    object_type: str = ""
    rollback_safe: bool = True

    @abstractmethod
    def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[Any]:
        """Yield source objects, once each, for a single pass."""

    @abstractmethod
    def object_key(self, obj: Any) -> str:
        """Stable key identifying ``obj`` across runs."""

    def source_id(self, obj: Any) -> Optional[str]:
        return None

    def skip_reason(self, obj: Any, ctx: ProcessorContext) -> Optional[str]:
        """Return a reason to leave ``obj`` alone, or None to migrate it."""
        return None

    @abstractmethod
    async def create(self, obj: Any, ctx: ProcessorContext) -> str:
        """Create ``obj`` at the destination and return its new identifier."""

    async def find_existing(self, obj: Any, ctx: ProcessorContext) -> Optional[str]:
        """Look up a destination object equivalent to ``obj``."""
        return None

    async def delete(self, destination_id: str, ctx: ProcessorContext) -> None:
        await ctx.destination.delete_object(self.object_type, destination_id)
