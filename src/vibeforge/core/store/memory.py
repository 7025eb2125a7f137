"""
In-memory record store.

Used by the CLI and the tests. Records are copied on the way in and on the
way out, writes are serialised by one asyncio lock, and transactions stage
their writes on a copy of the tables that replaces the live tables only
when the block succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from .models import utcnow
from .protocol import DuplicateRecord, RecordNotFound

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)

Tables = dict[type, dict[str, BaseModel]]


def _copy_tables(tables: Tables) -> Tables:
    return {model: dict(rows) for model, rows in tables.items()}


def _matches(record: BaseModel, filters: dict[str, Any]) -> bool:
    return all(getattr(record, key, None) == value for key, value in filters.items())


class _TableView:
    """Synchronous operations on a set of tables."""

    def __init__(self, tables: Tables) -> None:
        self.tables = tables

    def insert(self, record: R) -> R:
        rows = self.tables.setdefault(type(record), {})
        record_id = getattr(record, "id")
        if record_id in rows:
            raise DuplicateRecord(type(record), record_id)
        rows[record_id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    def get(self, model: type[R], record_id: str) -> Optional[R]:
        record = self.tables.get(model, {}).get(record_id)
        return record.model_copy(deep=True) if record is not None else None  # type: ignore[return-value]

    def update(self, model: type[R], record_id: str, changes: dict[str, Any]) -> R:
        rows = self.tables.get(model, {})
        current = rows.get(record_id)
        if current is None:
            raise RecordNotFound(model, record_id)
        data = current.model_dump()
        data.update(changes)
        if "updated_at" in model.model_fields and "updated_at" not in changes:
            data["updated_at"] = utcnow()
        updated = model.model_validate(data)
        rows[record_id] = updated
        return updated.model_copy(deep=True)

    def find(self, model: type[R], filters: dict[str, Any]) -> list[R]:
        return [
            record.model_copy(deep=True)  # type: ignore[misc]
            for record in self.tables.get(model, {}).values()
            if _matches(record, filters)
        ]

    def delete(self, model: type[R], record_id: str) -> bool:
        return self.tables.get(model, {}).pop(record_id, None) is not None


class _Transaction:
    """Store handed to a transaction block; writes go to staged tables."""

    def __init__(self, view: _TableView) -> None:
        self._view = view

    async def insert(self, record: R) -> R:
        return self._view.insert(record)

    async def get(self, model: type[R], record_id: str) -> Optional[R]:
        return self._view.get(model, record_id)

    async def update(self, model: type[R], record_id: str, **changes: Any) -> R:
        return self._view.update(model, record_id, changes)

    async def find(self, model: type[R], **filters: Any) -> list[R]:
        return self._view.find(model, filters)

    async def find_one(self, model: type[R], **filters: Any) -> Optional[R]:
        found = self._view.find(model, filters)
        return found[0] if found else None

    async def delete(self, model: type[R], record_id: str) -> bool:
        return self._view.delete(model, record_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_Transaction]:
        # Nested blocks join the enclosing transaction
        yield self


class InMemoryStore:
    """Dict-backed RecordStore."""

    def __init__(self) -> None:
        self._view = _TableView({})
        self._lock = asyncio.Lock()

    async def insert(self, record: R) -> R:
        async with self._lock:
            return self._view.insert(record)

    async def get(self, model: type[R], record_id: str) -> Optional[R]:
        return self._view.get(model, record_id)

    async def update(self, model: type[R], record_id: str, **changes: Any) -> R:
        async with self._lock:
            return self._view.update(model, record_id, changes)

    async def find(self, model: type[R], **filters: Any) -> list[R]:
        return self._view.find(model, filters)

    async def find_one(self, model: type[R], **filters: Any) -> Optional[R]:
        found = self._view.find(model, filters)
        return found[0] if found else None

    async def delete(self, model: type[R], record_id: str) -> bool:
        async with self._lock:
            return self._view.delete(model, record_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_Transaction]:
        """
        Run a block of reads and writes atomically.

        Other writers wait until the block finishes. Readers outside the
        block see the state from before it until it commits.
        """
        async with self._lock:
            staged = _TableView(_copy_tables(self._view.tables))
            yield _Transaction(staged)
            self._view = staged
            logger.debug("Transaction committed")
