"""Best-effort teardown of destination objects created by a run."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from dirmigrator.core.models import MigrationRun
from dirmigrator.core.orchestrator import MigrationOrchestrator
from dirmigrator.core.processor import ProcessorContext
from dirmigrator.core.retry import RetryPolicy
from dirmigrator.core.state import StateStore, open_state_store
from dirmigrator.logging import get_logger
from dirmigrator.utils.errors import LedgerNotFoundError


class RollbackReport(BaseModel):
    """What a rollback deleted and what it could not."""

    run_id: str
    deleted: List[Dict[str, str]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.warnings


class RollbackManager:
    """Deletes manifest entries in reverse dependency order.

    Rollback is not transactional. Every deletion failure becomes a warning
    and the walk carries on. Objects whose creation carries side effects
    beyond the object itself (processors with ``rollback_safe = False``) are
    still deleted, with a warning that the teardown may be incomplete.
    """

    def __init__(self, orchestrator: MigrationOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.logger = get_logger("rollback")

    async def rollback(self, path: Union[str, Path]) -> RollbackReport:
        """Roll back the run stored at ``path``."""
        store = open_state_store(path)
        run = await store.load()
        if run is None:
            raise LedgerNotFoundError(f"No ledger to roll back at {path}", {"path": str(path)})
        return await self.rollback_run(run, store)

    async def rollback_run(
        self,
        run: MigrationRun,
        store: Optional[StateStore] = None,
    ) -> RollbackReport:
        report = RollbackReport(run_id=run.run_id)

        if run.options.dry_run:
            report.warnings.append("dry-run ledger: nothing was created, nothing to roll back")
            return report

        registrations = self.orchestrator.phases
        order = self.orchestrator.plan()
        # Phases only the ledger knows about go last; they cannot be deleted anyway
        order += [name for name in run.rollback_manifest if name not in registrations]

        retry_policy = RetryPolicy(
            max_retry=run.options.max_retry,
            base=run.options.retry_base,
            sleep=self.orchestrator.retry_sleep,
        )
        ctx = ProcessorContext(run, self.orchestrator.source, self.orchestrator.destination)

        for phase in reversed(order):
            entries = run.rollback_manifest.get(phase, [])
            if not entries:
                continue

            registration = registrations.get(phase)
            if registration is None:
                for destination_id in entries:
                    self._warn(report, phase, destination_id, "no processor registered")
                continue

            processor = registration.processor
            if not processor.rollback_safe:
                report.warnings.append(
                    f"{phase}: objects may have side effects that deletion does not undo"
                )
                self.logger.warning("rollback_not_guaranteed", phase=phase, objects=len(entries))

            for destination_id in reversed(entries):
                try:
                    await retry_policy.call(processor.delete, destination_id, ctx)
                except Exception as e:
                    self._warn(report, phase, destination_id, str(e))
                    continue
                report.deleted.append({"phase": phase, "destination_id": destination_id})
                self.logger.info("object_deleted", phase=phase, destination_id=destination_id)

        run.rolled_back_at = datetime.now(timezone.utc)
        if store is not None:
            await store.save(run)

        self.logger.info(
            "rollback_finished",
            run_id=run.run_id,
            deleted=len(report.deleted),
            warnings=len(report.warnings),
        )
        return report

    def _warn(self, report: RollbackReport, phase: str, destination_id: str, reason: str) -> None:
        report.warnings.append(f"{phase}/{destination_id}: {reason}")
        self.logger.warning(
            "rollback_delete_failed",
            phase=phase,
            destination_id=destination_id,
            error=reason,
        )
