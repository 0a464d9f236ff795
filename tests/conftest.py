"""
Shared pytest fixtures for the migration tool tests.

Provides ledger paths, in-memory source/destination tenants seeded with the
users/groups example, and an orchestrator factory wired to them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from dirmigrator.core.orchestrator import MigrationOrchestrator
from tests.fixtures import FakeDirectory, SleepRecorder


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    """Path for a JSON ledger inside the test's temp dir."""
    return tmp_path / "ledger.json"


@pytest.fixture
def source_objects() -> Dict[str, List[Dict[str, Any]]]:
    """Users u1 and u2 and group g1 containing u1."""
    return {
        "users": [
            {"id": "u1", "userPrincipalName": "u1@contoso.com", "displayName": "User One"},
            {"id": "u2", "userPrincipalName": "u2@contoso.com", "displayName": "User Two"},
        ],
        "groups": [
            {"id": "g1", "displayName": "Group One", "members": ["u1"]},
        ],
    }


@pytest.fixture
def source(source_objects: Dict[str, List[Dict[str, Any]]]) -> FakeDirectory:
    return FakeDirectory(source_objects)


@pytest.fixture
def destination() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_orchestrator(
    source: FakeDirectory,
    destination: FakeDirectory,
    sleeper: SleepRecorder,
) -> Callable[[], MigrationOrchestrator]:
    """Factory for orchestrators sharing the same tenants (one per 'process')."""

    def factory() -> MigrationOrchestrator:
        return MigrationOrchestrator(source, destination, retry_sleep=sleeper)

    return factory
