"""
Test doubles shared across the test suite.

- FakeDirectory: in-memory DirectoryClient with failure and crash hooks
- ListProcessor: minimal processor over a fixed list of names
- SleepRecorder: stand-in for asyncio.sleep that records requested delays
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from dirmigrator.core.processor import Processor, ProcessorContext

_CLAUSE = re.compile(r"(\w+) eq '((?:[^']|'')*)'")


class Crash(BaseException):
    """Simulates the process being killed mid-run."""


class FakeDirectory:
    """In-memory directory tenant."""

    def __init__(self, objects: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.objects: Dict[str, List[Dict[str, Any]]] = {
            object_type: [dict(item) for item in items]
            for object_type, items in (objects or {}).items()
        }
        self.created: List[Tuple[str, Dict[str, Any]]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.create_calls = 0
        self.create_errors: List[BaseException] = []
        self.delete_errors: Dict[str, BaseException] = {}
        self.before_create: Optional[Callable[[str, Dict[str, Any]], None]] = None
        self.create_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._counters: Dict[str, int] = {}

    async def list_objects(
        self,
        object_type: str,
        filter: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        for item in list(self.objects.get(object_type, [])):
            if filter is None or self._matches(item, filter):
                yield item

    async def find_object(self, object_type: str, filter: str) -> Optional[Dict[str, Any]]:
        for item in self.objects.get(object_type, []):
            if self._matches(item, filter):
                return item
        return None

    async def create_object(self, object_type: str, payload: Dict[str, Any]) -> str:
        self.create_calls += 1
        if self.before_create is not None:
            self.before_create(object_type, payload)
        if self.create_errors:
            raise self.create_errors.pop(0)

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.create_delay)
        finally:
            self.in_flight -= 1

        self._counters[object_type] = self._counters.get(object_type, 0) + 1
        object_id = f"{object_type}-{self._counters[object_type]}"
        obj = {"id": object_id, **payload}
        self.objects.setdefault(object_type, []).append(obj)
        self.created.append((object_type, obj))
        return object_id

    async def delete_object(self, object_type: str, object_id: str) -> None:
        if object_id in self.delete_errors:
            raise self.delete_errors[object_id]
        self.objects[object_type] = [
            item for item in self.objects.get(object_type, []) if item["id"] != object_id
        ]
        self.deleted.append((object_type, object_id))

    def created_ids(self, object_type: str) -> List[str]:
        return [obj["id"] for kind, obj in self.created if kind == object_type]

    @staticmethod
    def _matches(item: Dict[str, Any], expression: str) -> bool:
        clauses = _CLAUSE.findall(expression)
        return bool(clauses) and all(
            str(item.get(field)) == value.replace("''", "'") for field, value in clauses
        )


class ListProcessor(Processor):
    """Creates one destination object per name, in order."""

    def __init__(
        self,
        names: List[str],
        object_type: str = "things",
        skip: Optional[Dict[str, str]] = None,
    ) -> None:
        self.names = names
        self.object_type = object_type
        self.skip = skip or {}
        self.enumerations = 0
        self.created: List[str] = []

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[str]:
        self.enumerations += 1
        for name in self.names:
            yield name

    def object_key(self, obj: str) -> str:
        return obj

    def source_id(self, obj: str) -> Optional[str]:
        return obj

    def skip_reason(self, obj: str, ctx: ProcessorContext) -> Optional[str]:
        return self.skip.get(obj)

    async def create(self, obj: str, ctx: ProcessorContext) -> str:
        destination_id = await ctx.destination.create_object(self.object_type, {"name": obj})
        self.created.append(obj)
        return destination_id

    async def find_existing(self, obj: str, ctx: ProcessorContext) -> Optional[str]:
        found = await ctx.destination.find_object(self.object_type, f"name eq '{obj}'")
        return found["id"] if found else None


class BrokenProcessor(ListProcessor):
    """Fails while enumerating."""

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[str]:
        self.enumerations += 1
        raise RuntimeError("source listing unavailable")
        yield  # pragma: no cover


class TruncatedProcessor(ListProcessor):
    """Yields its names, then fails as if a later page could not be fetched."""

    async def enumerate(self, ctx: ProcessorContext) -> AsyncIterator[str]:
        self.enumerations += 1
        for name in self.names:
            yield name
        raise RuntimeError("next page unavailable")


class SleepRecorder:
    """Records delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
