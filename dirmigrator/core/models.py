"""Ledger data model: a migration run, its phases and per-object records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from dirmigrator.core.rewrite import RewriteRule


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PhaseStatus(str, Enum):
    """Phase migration status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class ObjectStatus(str, Enum):
    """Object migration status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({ObjectStatus.COMPLETED, ObjectStatus.SKIPPED})


class ObjectRecord(BaseModel):
    """Ledger entry for one source object."""

    key: str
    source_id: Optional[str] = None
    destination_id: Optional[str] = None
    status: ObjectStatus = ObjectStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    skip_reason: Optional[str] = None
    adopted: bool = False
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark(self, status: ObjectStatus, **changes: object) -> None:
        """Transition to ``status``, applying field ``changes``."""
        self.status = status
        for name, value in changes.items():
            setattr(self, name, value)
        self.updated_at = utcnow()


class PhaseState(BaseModel):
    """Ledger state for one phase."""

    name: str
    depends_on: List[str] = Field(default_factory=list)
    status: PhaseStatus = PhaseStatus.NOT_STARTED
    records: Dict[str, ObjectRecord] = Field(default_factory=dict)
    error: Optional[str] = None

    def record_for(self, key: str, source_id: Optional[str] = None) -> ObjectRecord:
        """Get the record for ``key``, creating it on first observation."""
        record = self.records.get(key)
        if record is None:
            record = ObjectRecord(key=key, source_id=source_id, updated_at=utcnow())
            self.records[key] = record
        elif source_id is not None and record.source_id is None:
            record.source_id = source_id
        return record

    @property
    def id_mapping(self) -> Dict[str, str]:
        """Source identifier to destination identifier, Completed records only."""
        return {
            record.source_id or record.key: record.destination_id
            for record in self.records.values()
            if record.status == ObjectStatus.COMPLETED and record.destination_id
        }

    def unfinished(self) -> List[ObjectRecord]:
        """Records that keep the phase from completing."""
        return [record for record in self.records.values() if not record.is_terminal]

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ObjectStatus}
        for record in self.records.values():
            counts[record.status.value] += 1
        return counts


class RunOptions(BaseModel):
    """Options fixed when a run is created."""

    dry_run: bool = False
    parallelism: int = Field(default=1, ge=1)
    max_retry: int = Field(default=3, ge=1)
    retry_base: float = Field(default=2.0, gt=1.0)
    create_timeout: Optional[float] = None
    rewrite_rules: List[RewriteRule] = Field(default_factory=list)


class MigrationRun(BaseModel):
    """Durable state of one migration run."""

    run_id: str
    source_tenant: str
    destination_tenant: str
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    options: RunOptions = Field(default_factory=RunOptions)
    phases: Dict[str, PhaseState] = Field(default_factory=dict)
    rollback_manifest: Dict[str, List[str]] = Field(default_factory=dict)

    def ensure_phase(self, name: str, depends_on: List[str]) -> PhaseState:
        """Get the phase state, creating it for newly registered phases."""
        phase = self.phases.get(name)
        if phase is None:
            phase = PhaseState(name=name, depends_on=list(depends_on))
            self.phases[name] = phase
        else:
            phase.depends_on = list(depends_on)
        return phase

    def id_mapping(self, phase: str) -> Dict[str, str]:
        state = self.phases.get(phase)
        return state.id_mapping if state else {}

    def add_to_manifest(self, phase: str, destination_id: str) -> bool:
        """Append a created destination id; ids already listed are ignored."""
        entries = self.rollback_manifest.setdefault(phase, [])
        if destination_id in entries:
            return False
        entries.append(destination_id)
        return True

    def manifest_entries(self) -> Iterator[Tuple[str, str]]:
        """(phase, destination id) pairs in manifest order."""
        for phase, entries in self.rollback_manifest.items():
            for destination_id in entries:
                yield phase, destination_id

    @property
    def succeeded(self) -> bool:
        return bool(self.phases) and all(
            phase.status == PhaseStatus.COMPLETED for phase in self.phases.values()
        )
