"""
Record store protocol.

vibeforge persists records through this narrow interface so the
relational schema stays outside the package. InMemoryStore is the
reference implementation; a database-backed store implements the same
methods.
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Optional, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

R = TypeVar("R", bound=BaseModel)


class StoreError(Exception):
    """Base exception for record store errors."""


class RecordNotFound(StoreError):
    """No record with the given id exists."""

    def __init__(self, model: type, record_id: str) -> None:
        self.model = model
        self.record_id = record_id
        super().__init__(f"{model.__name__} not found: {record_id}")


class DuplicateRecord(StoreError):
    """A record with the same id already exists."""

    def __init__(self, model: type, record_id: str) -> None:
        self.model = model
        self.record_id = record_id
        super().__init__(f"{model.__name__} already exists: {record_id}")


@runtime_checkable
class RecordStore(Protocol):
    """
    Protocol for record persistence.

    Records are Pydantic models with a string ``id`` field. Returned
    records are copies: mutating them never changes stored state.
    """

    async def insert(self, record: R) -> R:
        """
        Store a new record.

        Raises:
            DuplicateRecord: If the id is taken
        """
        ...

    async def get(self, model: type[R], record_id: str) -> Optional[R]:
        """Fetch a record by id, or None."""
        ...

    async def update(self, model: type[R], record_id: str, **changes: Any) -> R:
        """
        Apply field changes to a record and return the updated copy.

        Raises:
            RecordNotFound: If the record does not exist
        """
        ...

    async def find(self, model: type[R], **filters: Any) -> list[R]:
        """Records whose fields equal every filter value, oldest first."""
        ...

    async def find_one(self, model: type[R], **filters: Any) -> Optional[R]:
        """First record matching the filters, or None."""
        ...

    async def delete(self, model: type[R], record_id: str) -> bool:
        """Remove a record. Returns False when it did not exist."""
        ...

    def transaction(self) -> AbstractAsyncContextManager["RecordStore"]:
        """
        Group writes atomically.

        Writes made through the yielded store become visible together when
        the block exits normally and are discarded when it raises.
        """
        ...
