"""Business entity storage.

The backup engine only depends on the :class:`BusinessStorage` protocol:
per-collection read queries, a bulk ``replace_all`` and a transaction scope.
:class:`InMemoryStorage` is the process-local implementation.
"""

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class EntityCollection(StrEnum):
    """Entity collections included in a snapshot, keyed by their snapshot name."""

    CLIENTS = "clients"
    EMPLOYEES = "employees"
    INVOICES = "invoices"
    EXPENSES = "expenses"
    INVENTORY = "inventory"
    CONTRACTS = "contracts"
    TIME_ENTRIES = "timeEntries"


class BusinessStorage(Protocol):
    """Storage operations the backup engine relies on."""

    async def get_clients(self, user_id: int | None = None) -> list[Record]: ...

    async def get_employees(self, user_id: int | None = None) -> list[Record]: ...

    async def get_invoices(self, user_id: int | None = None) -> list[Record]: ...

    async def get_expenses(self, user_id: int | None = None) -> list[Record]: ...

    async def get_inventory_items(self, user_id: int | None = None) -> list[Record]: ...

    async def get_contracts(self, user_id: int | None = None) -> list[Record]: ...

    async def get_time_entries(self, user_id: int | None = None) -> list[Record]: ...

    async def get_collection(
        self, collection: EntityCollection, user_id: int | None = None
    ) -> list[Record]: ...

    async def replace_all(self, collection: EntityCollection, records: list[Record]) -> None: ...

    def transaction(self) -> Any: ...


class InMemoryStorage:
    """Dictionary-backed storage with snapshot-based transactions.

    Records are plain dicts with an ``id`` and an optional ``userId`` owner.
    Reads return deep copies so callers never mutate stored state.
    """

    def __init__(self) -> None:
        self._data: dict[EntityCollection, list[Record]] = {c: [] for c in EntityCollection}
        self._next_ids = {c: 1 for c in EntityCollection}
        self._tx_lock = asyncio.Lock()

    async def get_collection(
        self, collection: EntityCollection, user_id: int | None = None
    ) -> list[Record]:
        """Get the records of a collection in insertion order.

        Args:
            collection: Collection to read
            user_id: Owner filter; None returns every owner's records

        Returns:
            Deep copies of the matching records
        """
        records = self._data[EntityCollection(collection)]
        if user_id is not None:
            records = [r for r in records if r.get("userId") == user_id]
        return copy.deepcopy(records)

    async def get_clients(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.CLIENTS, user_id)

    async def get_employees(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.EMPLOYEES, user_id)

    async def get_invoices(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.INVOICES, user_id)

    async def get_expenses(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.EXPENSES, user_id)

    async def get_inventory_items(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.INVENTORY, user_id)

    async def get_contracts(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.CONTRACTS, user_id)

    async def get_time_entries(self, user_id: int | None = None) -> list[Record]:
        return await self.get_collection(EntityCollection.TIME_ENTRIES, user_id)

    async def add(self, collection: EntityCollection, record: Record) -> Record:
        """Insert a record, assigning an ``id`` when missing.

        Returns:
            Copy of the stored record
        """
        collection = EntityCollection(collection)
        stored = copy.deepcopy(record)
        if "id" not in stored:
            stored["id"] = self._next_ids[collection]
            self._next_ids[collection] += 1
        self._data[collection].append(stored)
        return copy.deepcopy(stored)

    async def replace_all(self, collection: EntityCollection, records: list[Record]) -> None:
        """Replace every record of a collection.

        Args:
            collection: Collection to overwrite
            records: New contents, in order

        Raises:
            TypeError: If a record is not a mapping
        """
        collection = EntityCollection(collection)
        for record in records:
            if not isinstance(record, dict):
                raise TypeError(f"{collection.value} records must be objects")

        self._data[collection] = copy.deepcopy(records)

        # Keep generated ids ahead of restored ones
        numeric_ids = [r["id"] for r in records if isinstance(r.get("id"), int)]
        self._next_ids[collection] = max(numeric_ids, default=0) + 1

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryStorage"]:
        """Run a block atomically.

        On any exception every collection is rolled back to its state at
        entry and the exception propagates.
        """
        async with self._tx_lock:
            saved_data = copy.deepcopy(self._data)
            saved_ids = dict(self._next_ids)
            try:
                yield self
            except BaseException:
                self._data = saved_data
                self._next_ids = saved_ids
                logger.warning("Storage transaction rolled back")
                raise

    def counts(self) -> dict[str, int]:
        """Number of records per collection."""
        return {c.value: len(records) for c, records in self._data.items()}


# Global instance
_storage: InMemoryStorage | None = None


def get_storage() -> InMemoryStorage:
    """Get or create the storage singleton."""
    global _storage
    if _storage is None:
        _storage = InMemoryStorage()
    return _storage


def reset_storage() -> None:
    """Reset the storage singleton (for testing)."""
    global _storage
    _storage = None
