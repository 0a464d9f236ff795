"""Read-only summary of a run ledger."""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from dirmigrator.core.models import MigrationRun, ObjectStatus, PhaseStatus
from dirmigrator.core.state import open_state_store
from dirmigrator.utils.errors import LedgerNotFoundError


class PhaseSummary(BaseModel):
    """Status and object counts for one phase."""

    name: str
    status: PhaseStatus
    depends_on: List[str] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None
    failures: List[Dict[str, str]] = Field(default_factory=list)


class RunReport(BaseModel):
    """Per-phase status counts for a run."""

    run_id: str
    source_tenant: str
    destination_tenant: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    dry_run: bool = False
    phases: List[PhaseSummary] = Field(default_factory=list)
    manifest_size: int = 0
    succeeded: bool = False


def summarize(run: MigrationRun) -> RunReport:
    """Build a report from an in-memory run."""
    phases = []
    for phase in run.phases.values():
        failures = [
            {"key": record.key, "error": record.last_error or ""}
            for record in phase.records.values()
            if record.status == ObjectStatus.FAILED
        ]
        phases.append(
            PhaseSummary(
                name=phase.name,
                status=phase.status,
                depends_on=phase.depends_on,
                counts=phase.counts(),
                error=phase.error,
                failures=failures,
            )
        )

    return RunReport(
        run_id=run.run_id,
        source_tenant=run.source_tenant,
        destination_tenant=run.destination_tenant,
        started_at=run.started_at,
        completed_at=run.completed_at,
        rolled_back_at=run.rolled_back_at,
        dry_run=run.options.dry_run,
        phases=phases,
        manifest_size=sum(1 for _ in run.manifest_entries()),
        succeeded=run.succeeded,
    )


async def report(path: Union[str, Path]) -> RunReport:
    """Summarize the ledger at ``path`` without modifying it.

    Raises:
        LedgerNotFoundError: If there is no ledger at ``path``
        LedgerCorruptError: If the ledger cannot be read
    """
    run = await open_state_store(path).load()
    if run is None:
        raise LedgerNotFoundError(f"No ledger at {path}", {"path": str(path)})
    return summarize(run)
