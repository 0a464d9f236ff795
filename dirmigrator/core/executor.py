"""Drives one phase's processor object by object against the ledger."""

import asyncio
import time
from typing import Any, Dict, List, Optional, Set

from dirmigrator.core.models import ObjectRecord, ObjectStatus, PhaseState
from dirmigrator.core.processor import Processor, ProcessorContext
from dirmigrator.core.retry import RetryPolicy
from dirmigrator.core.state import LedgerWriter
from dirmigrator.logging import get_logger, logger
from dirmigrator.utils.errors import AuthenticationError, ConflictError, ErrorHandler

OUTCOMES = ("created", "adopted", "skipped", "already_done", "failed", "duplicate")


class PhaseExecutor:
    """Processes every object a processor enumerates, saving after each transition.

    With ``parallelism > 1`` creates fan out over a bounded pool of tasks;
    ledger saves still go through the single :class:`LedgerWriter`.
    Cancellation is honored between objects, never during a create.
    """

    def __init__(
        self,
        phase: PhaseState,
        processor: Processor,
        ctx: ProcessorContext,
        writer: LedgerWriter,
        retry_policy: RetryPolicy,
        error_handler: ErrorHandler,
        shutdown: Optional[asyncio.Event] = None,
        parallelism: int = 1,
    ) -> None:
        self.phase = phase
        self.processor = processor
        self.ctx = ctx
        self.writer = writer
        self.retry_policy = retry_policy
        self.error_handler = error_handler
        self.shutdown = shutdown or asyncio.Event()
        self.parallelism = max(1, parallelism)
        self.logger = get_logger("executor").bind(phase=phase.name)
        self.outcomes: Dict[str, int] = {outcome: 0 for outcome in OUTCOMES}
        self.cancelled = False
        self._aborted = False
        self._seen: Set[str] = set()

    async def execute(self) -> Dict[str, int]:
        """Run a single enumeration pass.

        Returns:
            Count of each per-object outcome in this pass
        """
        if self.parallelism == 1:
            async for obj in self.processor.enumerate(self.ctx):
                if self._should_stop():
                    break
                await self.process(obj)
        else:
            await self._execute_parallel()

        self.logger.info("phase_pass_finished", cancelled=self.cancelled, **self.outcomes)
        return dict(self.outcomes)

    async def _execute_parallel(self) -> None:
        slots = asyncio.Semaphore(self.parallelism)
        tasks: List["asyncio.Task[None]"] = []

        async def worker(obj: Any) -> None:
            try:
                await self.process(obj)
            except AuthenticationError:
                self._aborted = True
                raise
            finally:
                slots.release()

        try:
            async for obj in self.processor.enumerate(self.ctx):
                await slots.acquire()
                if self._should_stop():
                    slots.release()
                    break
                tasks.append(asyncio.create_task(worker(obj)))
        finally:
            # In-flight creates always run to completion, even when enumeration fails
            results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _should_stop(self) -> bool:
        if self._aborted:
            return True
        if self.shutdown.is_set():
            if not self.cancelled:
                self.logger.info("phase_cancel_requested")
            self.cancelled = True
        return self.cancelled

    async def process(self, obj: Any) -> None:
        """Take one source object through to a recorded outcome."""
        start_time = time.monotonic()
        key = self.processor.object_key(obj)

        if key in self._seen:
            self.logger.warning("duplicate_object_key", key=key)
            self.outcomes["duplicate"] += 1
            return
        self._seen.add(key)

        record = self.phase.record_for(key, self.processor.source_id(obj))

        if record.is_terminal:
            self.logger.debug("object_already_done", key=key, status=record.status.value)
            self.outcomes["already_done"] += 1
            return

        reason = self.processor.skip_reason(obj, self.ctx)
        if reason:
            record.mark(ObjectStatus.SKIPPED, skip_reason=reason, last_error=None)
            await self.writer.save()
            self.outcomes["skipped"] += 1
            self._log_outcome(record, start_time)
            return

        record.attempts += 1
        record.mark(ObjectStatus.IN_PROGRESS, last_error=None)
        await self.writer.save()

        if self.ctx.dry_run:
            record.mark(ObjectStatus.COMPLETED, destination_id=f"dry-run-{key}")
            await self.writer.save()
            self.outcomes["created"] += 1
            self._log_outcome(record, start_time)
            return

        try:
            destination_id = await self.retry_policy.call(self.processor.create, obj, self.ctx)
        except ConflictError as e:
            await self._resolve_conflict(obj, record, e)
        except AuthenticationError as e:
            await self._fail(record, e)
            raise
        except Exception as e:
            await self._fail(record, e)
        else:
            record.mark(ObjectStatus.COMPLETED, destination_id=destination_id, adopted=False)
            self.ctx.run.add_to_manifest(self.phase.name, destination_id)
            await self.writer.save()
            self.outcomes["created"] += 1

        self._log_outcome(record, start_time)

    async def _resolve_conflict(
        self,
        obj: Any,
        record: ObjectRecord,
        conflict: ConflictError,
    ) -> None:
        """Adopt the existing destination object, or fail for operator review."""
        try:
            existing_id = await self.retry_policy.call(
                self.processor.find_existing, obj, self.ctx
            )
        except Exception as e:
            await self._fail(record, e, prefix=f"{conflict}; lookup failed")
            return

        if existing_id is None:
            await self._fail(record, conflict, prefix="exists at destination but lookup found nothing")
            return

        # Not added to the manifest: rollback must not delete what we did not create
        record.mark(ObjectStatus.COMPLETED, destination_id=existing_id, adopted=True)
        await self.writer.save()
        self.outcomes["adopted"] += 1
        self.logger.info("object_adopted", key=record.key, destination_id=existing_id)

    async def _fail(self, record: ObjectRecord, error: BaseException, prefix: str = "") -> None:
        message = f"{prefix}: {error}" if prefix else str(error)
        record.mark(ObjectStatus.FAILED, last_error=message)
        self.error_handler.record(error, self.phase.name, record.key)
        await self.writer.save()
        self.outcomes["failed"] += 1

    def _log_outcome(self, record: ObjectRecord, start_time: float) -> None:
        logger.log_object_processed(
            self.phase.name,
            record.key,
            record.status.value,
            (time.monotonic() - start_time) * 1000,
            destination_id=record.destination_id,
            error=record.last_error,
        )
