"""Phase orchestrator: dependency-ordered, resumable execution of a migration run."""

import asyncio
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Union

from pydantic import BaseModel, Field

from dirmigrator.api.client import DirectoryClient
from dirmigrator.core.executor import PhaseExecutor
from dirmigrator.core.models import (
    MigrationRun,
    ObjectStatus,
    PhaseState,
    PhaseStatus,
    RunOptions,
)
from dirmigrator.core.processor import Processor, ProcessorContext
from dirmigrator.core.retry import RetryPolicy
from dirmigrator.core.state import LedgerWriter, StateStore, open_state_store
from dirmigrator.logging import logger
from dirmigrator.utils.errors import (
    AuthenticationError,
    DependencyCycleError,
    DuplicatePhaseError,
    ErrorHandler,
    LedgerNotFoundError,
    StructuralError,
    UnregisteredPhaseError,
)


class PhaseRegistration(NamedTuple):
    """A registered phase."""

    name: str
    depends_on: List[str]
    processor: Processor


class OrchestrationResult(BaseModel):
    """Outcome of one orchestrator invocation."""

    run_id: str
    phases: Dict[str, PhaseStatus] = Field(default_factory=dict)
    outcomes: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    succeeded: bool = False
    cancelled: bool = False
    aborted: Optional[str] = None
    duration_seconds: float = 0.0
    errors: Dict[str, Any] = Field(default_factory=dict)


def topological_order(graph: "OrderedDict[str, List[str]]") -> List[str]:
    """Order phases so every dependency precedes its dependents.

    Among phases that are ready at the same time, declaration order wins.

    Raises:
        UnregisteredPhaseError: If a dependency names an unknown phase
        DependencyCycleError: If the graph is cyclic
    """
    for name, depends_on in graph.items():
        for dependency in depends_on:
            if dependency not in graph:
                raise UnregisteredPhaseError(
                    f"phase {name!r} depends on unregistered phase {dependency!r}",
                    {"phase": name, "dependency": dependency},
                )

    remaining = {name: set(depends_on) for name, depends_on in graph.items()}
    order: List[str] = []

    while remaining:
        ready = next((name for name in remaining if not remaining[name]), None)
        if ready is None:
            raise DependencyCycleError(_find_cycle(remaining))
        order.append(ready)
        del remaining[ready]
        for depends_on in remaining.values():
            depends_on.discard(ready)

    return order


def _find_cycle(remaining: Dict[str, set]) -> List[str]:
    # Every remaining node has an unresolved dependency, so walking
    # dependencies must revisit a node.
    start = next(iter(remaining))
    path: List[str] = []
    node = start
    while node not in path:
        path.append(node)
        node = sorted(remaining[node])[0]
    return path[path.index(node):] + [node]


class MigrationOrchestrator:
    """Runs registered phases in dependency order against a run ledger."""

    def __init__(
        self,
        source: DirectoryClient,
        destination: DirectoryClient,
        error_handler: Optional[ErrorHandler] = None,
        retry_sleep: Any = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            source: Client for the source tenant (an authenticated session)
            destination: Client for the destination tenant
            error_handler: Error log shared across phases
            retry_sleep: Coroutine used to sleep between retries
        """
        self.source = source
        self.destination = destination
        self.error_handler = error_handler or ErrorHandler()
        self.retry_sleep = retry_sleep
        self.logger = logger.get_logger("orchestrator")
        self._phases: "OrderedDict[str, PhaseRegistration]" = OrderedDict()
        self._shutdown_event = asyncio.Event()

    def register(
        self,
        name: str,
        depends_on: Sequence[str],
        processor: Processor,
    ) -> None:
        """Register a phase; declaration order breaks scheduling ties."""
        if name in self._phases:
            raise DuplicatePhaseError(f"phase {name!r} is already registered", {"phase": name})
        self._phases[name] = PhaseRegistration(name, list(depends_on), processor)

    @property
    def phases(self) -> Dict[str, PhaseRegistration]:
        return dict(self._phases)

    def plan(self) -> List[str]:
        """Topological execution order of the registered phases."""
        if not self._phases:
            raise UnregisteredPhaseError("no phases registered")
        return topological_order(
            OrderedDict((name, reg.depends_on) for name, reg in self._phases.items())
        )

    def shutdown(self) -> None:
        """Request a stop at the next object boundary."""
        self._shutdown_event.set()

    async def start(
        self,
        path: Union[str, Path],
        source_tenant: str,
        destination_tenant: str,
        options: Optional[RunOptions] = None,
        run_id: Optional[str] = None,
    ) -> OrchestrationResult:
        """Create a new run ledger at ``path`` and execute it.

        Raises:
            StructuralError: If the phase graph is invalid or a ledger exists
        """
        self.plan()
        store = open_state_store(path)
        run = await store.initialize(
            run_id=run_id or uuid.uuid4().hex,
            source_tenant=source_tenant,
            destination_tenant=destination_tenant,
            options=options,
        )
        return await self.run(run, store)

    async def resume(self, path: Union[str, Path]) -> OrchestrationResult:
        """Reload the ledger at ``path`` and continue where it stopped.

        Raises:
            LedgerNotFoundError: If there is no ledger at ``path``
            LedgerCorruptError: If the ledger cannot be read
        """
        self.plan()
        store = open_state_store(path)
        run = await store.load()

        if run is None:
            raise LedgerNotFoundError(f"No ledger to resume at {path}", {"path": str(path)})
        if run.rolled_back_at is not None:
            raise StructuralError(
                f"Run {run.run_id} was rolled back at {run.rolled_back_at}; start a new run",
                {"run_id": run.run_id},
            )

        interrupted = 0
        for phase in run.phases.values():
            for record in phase.records.values():
                if record.status == ObjectStatus.IN_PROGRESS:
                    record.mark(ObjectStatus.PENDING)
                    interrupted += 1

        unknown = [name for name in run.phases if name not in self._phases]
        if unknown:
            self.logger.warning("ledger_phases_not_registered", phases=unknown)

        self.logger.info(
            "resuming_migration",
            run_id=run.run_id,
            interrupted_objects=interrupted,
            phases={name: phase.status.value for name, phase in run.phases.items()},
        )
        return await self.run(run, store)

    async def run(self, run: MigrationRun, store: StateStore) -> OrchestrationResult:
        """Execute every eligible phase of ``run`` in dependency order."""
        start_time = time.monotonic()
        order = self.plan()
        writer = LedgerWriter(store, run)
        result = OrchestrationResult(run_id=run.run_id)

        for name in order:
            run.ensure_phase(name, self._phases[name].depends_on)
        await writer.save()

        logger.log_migration_start(run.run_id, len(order), run.options.model_dump(mode="json"))

        retry_policy = RetryPolicy(
            max_retry=run.options.max_retry,
            base=run.options.retry_base,
            timeout=run.options.create_timeout,
            sleep=self.retry_sleep,
        )
        ctx = ProcessorContext(run, self.source, self.destination)

        for name in order:
            if self._shutdown_event.is_set():
                result.cancelled = True
                break

            registration = self._phases[name]
            phase = run.phases[name]

            if phase.status == PhaseStatus.COMPLETED:
                self.logger.info("phase_already_completed", phase=name)
                continue

            blockers = [
                dependency
                for dependency in registration.depends_on
                if run.phases[dependency].status != PhaseStatus.COMPLETED
            ]
            if blockers:
                phase.status = PhaseStatus.BLOCKED
                phase.error = f"dependencies not completed: {', '.join(blockers)}"
                await writer.save()
                self.logger.warning("phase_blocked", phase=name, blocked_by=blockers)
                continue

            phase.status = PhaseStatus.IN_PROGRESS
            phase.error = None
            await writer.save()
            self.logger.info("phase_started", phase=name, known_objects=len(phase.records))

            executor = PhaseExecutor(
                phase,
                registration.processor,
                ctx,
                writer,
                retry_policy,
                self.error_handler,
                shutdown=self._shutdown_event,
                parallelism=run.options.parallelism,
            )

            try:
                result.outcomes[name] = await executor.execute()
            except AuthenticationError as e:
                await self._fail_phase(phase, e, writer)
                result.aborted = str(e)
                break
            except Exception as e:
                await self._fail_phase(phase, e, writer)
                continue

            if executor.cancelled:
                # Objects may not all have been seen yet; resume picks the phase up
                await writer.save()
                result.cancelled = True
                break

            self._verify_phase(phase)
            await writer.save()

        if run.succeeded and run.completed_at is None:
            run.completed_at = datetime.now(timezone.utc)
            await writer.save()

        result.phases = {name: phase.status for name, phase in run.phases.items()}
        result.succeeded = run.succeeded
        result.duration_seconds = time.monotonic() - start_time
        result.errors = self.error_handler.get_error_summary()

        logger.log_migration_complete(
            run.run_id,
            {name: status.value for name, status in result.phases.items()},
            result.succeeded,
            result.duration_seconds,
        )
        return result

    def _verify_phase(self, phase: PhaseState) -> None:
        """Derive the phase status from its records, not from the processor."""
        unfinished = phase.unfinished()
        if unfinished:
            phase.status = PhaseStatus.FAILED
            phase.error = f"{len(unfinished)} object(s) not completed"
            self.logger.warning(
                "phase_failed",
                phase=phase.name,
                unfinished=[record.key for record in unfinished[:20]],
                counts=phase.counts(),
            )
        else:
            phase.status = PhaseStatus.COMPLETED
            phase.error = None
            self.logger.info("phase_completed", phase=phase.name, counts=phase.counts())

    async def _fail_phase(self, phase: PhaseState, error: Exception, writer: LedgerWriter) -> None:
        phase.status = PhaseStatus.FAILED
        phase.error = str(error)
        self.error_handler.record(error, phase.name)
        await writer.save()
