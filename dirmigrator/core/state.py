"""Durable run ledger: atomic load/save of a MigrationRun document."""

import asyncio
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Optional, Union
from uuid import uuid4

import aiofiles
import aiofiles.os
import aiosqlite
from pydantic import ValidationError

from dirmigrator.core.models import MigrationRun, RunOptions
from dirmigrator.logging import get_logger
from dirmigrator.utils.errors import LedgerCorruptError, LedgerExistsError

SQLITE_SUFFIXES = {".db", ".sqlite", ".sqlite3"}


class StateStore(ABC):
    """Ledger for one migration run, bound to a path."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.logger = get_logger("state_store")

    @abstractmethod
    async def load(self) -> Optional[MigrationRun]:
        """Load the run.

        Returns:
            The run, or None when no ledger exists at the path

        Raises:
            LedgerCorruptError: If a ledger exists but cannot be read back
        """

    @abstractmethod
    async def save(self, run: MigrationRun) -> None:
        """Persist the whole run atomically."""

    async def initialize(
        self,
        run_id: str,
        source_tenant: str,
        destination_tenant: str,
        options: Optional[RunOptions] = None,
    ) -> MigrationRun:
        """Create and persist a fresh run.

        Raises:
            LedgerExistsError: If a ledger (even a corrupt one) is already there
        """
        if await self.exists():
            raise LedgerExistsError(
                f"Ledger already exists at {self.path}; resume it instead",
                {"path": str(self.path)},
            )

        run = MigrationRun(
            run_id=run_id,
            source_tenant=source_tenant,
            destination_tenant=destination_tenant,
            options=options or RunOptions(),
        )
        await self.save(run)
        self.logger.info("ledger_initialized", path=str(self.path), run_id=run_id)
        return run

    async def exists(self) -> bool:
        return await aiofiles.os.path.exists(self.path)

    def _parse(self, raw: Union[str, bytes]) -> MigrationRun:
        try:
            return MigrationRun.model_validate_json(raw)
        except ValidationError as e:
            self.logger.error("ledger_corrupt", path=str(self.path), errors=e.error_count())
            raise LedgerCorruptError(
                f"Ledger at {self.path} is corrupt: {e.errors()[0]['msg']}",
                {"path": str(self.path)},
            ) from e


class JsonStateStore(StateStore):
    """Ledger kept as one JSON document, replaced atomically on save."""

    async def load(self) -> Optional[MigrationRun]:
        if not await self.exists():
            return None

        async with aiofiles.open(self.path, "rb") as f:
            raw = await f.read()

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            self.logger.error("ledger_corrupt", path=str(self.path), reason="not utf-8")
            raise LedgerCorruptError(
                f"Ledger at {self.path} is corrupt: not valid UTF-8 text",
                {"path": str(self.path)},
            ) from e
        return self._parse(text)

    async def save(self, run: MigrationRun) -> None:
        data = run.model_dump_json(indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid4().hex}.tmp")

        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp_path, self.path)
        except BaseException:
            with suppress(FileNotFoundError):
                await aiofiles.os.remove(tmp_path)
            raise


class SqliteStateStore(StateStore):
    """Ledger kept as a single document row in SQLite."""

    def __init__(self, path: Union[str, Path], timeout: int = 30) -> None:
        super().__init__(path)
        self.timeout = timeout

    @asynccontextmanager
    async def _get_connection(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get database connection.

        Yields:
            Database connection
        """
        conn = await aiosqlite.connect(self.path, timeout=self.timeout)
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def load(self) -> Optional[MigrationRun]:
        if not await self.exists():
            return None

        try:
            async with self._get_connection() as conn:
                cursor = await conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'ledger'"
                )
                if await cursor.fetchone() is None:
                    return None

                cursor = await conn.execute("SELECT document FROM ledger WHERE id = 1")
                row = await cursor.fetchone()
        except sqlite3.DatabaseError as e:
            raise LedgerCorruptError(
                f"Ledger at {self.path} is not a readable SQLite database: {e}",
                {"path": str(self.path)},
            ) from e

        if row is None:
            return None
        return self._parse(row["document"])

    async def save(self, run: MigrationRun) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        async with self._get_connection() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    run_id TEXT NOT NULL,
                    document TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            await conn.execute(
                """
                INSERT INTO ledger (id, run_id, document, updated_at)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    run_id = excluded.run_id,
                    document = excluded.document,
                    updated_at = excluded.updated_at
                """,
                (
                    run.run_id,
                    run.model_dump_json(),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            await conn.commit()


def open_state_store(path: Union[str, Path], timeout: int = 30) -> StateStore:
    """Pick the ledger backend from the path suffix."""
    path = Path(path)
    if path.suffix.lower() in SQLITE_SUFFIXES:
        return SqliteStateStore(path, timeout)
    return JsonStateStore(path)


class LedgerWriter:
    """Single writer for a run's ledger.

    Saves are serialized so concurrent object workers never interleave
    writes, and each save sees every mutation made before it was requested.
    """

    def __init__(self, store: StateStore, run: MigrationRun) -> None:
        self.store = store
        self.run = run
        self._lock = asyncio.Lock()
        self.saves = 0

    async def save(self) -> None:
        async with self._lock:
            await self.store.save(self.run)
            self.saves += 1
