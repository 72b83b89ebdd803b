"""
Abstract interfaces for the stores the orchestrator persists through.

Updates take a mapping of field names to new values; implementations reject
unknown field names.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from .models import (
    BudgetRecord,
    Decision,
    Execution,
    ExecutionStatus,
    FileLock,
    RegistryItem,
    Ticket,
    TokenUsage,
)


class TicketStore(ABC):
    @abstractmethod
    async def get(self, ticket_id: str) -> Ticket | None:
        pass

    @abstractmethod
    async def update(self, ticket_id: str, fields: dict[str, Any]) -> Ticket:
        pass


class ExecutionStore(ABC):
    @abstractmethod
    async def insert(self, fields: dict[str, Any]) -> Execution:
        """Create an execution and return it with its generated id."""
        pass

    @abstractmethod
    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution:
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Execution | None:
        pass

    @abstractmethod
    async def list_by_status(self, status: ExecutionStatus) -> list[Execution]:
        pass


class BudgetStore(ABC):
    @abstractmethod
    async def get_by_date(self, day: date) -> BudgetRecord | None:
        pass

    @abstractmethod
    async def insert(self, record: BudgetRecord) -> BudgetRecord:
        pass

    @abstractmethod
    async def increment(self, day: date, tokens: int, cents: int) -> BudgetRecord | None:
        """Add to the day's used totals; None when the day has no record."""
        pass

    @abstractmethod
    async def insert_usage(self, usage: TokenUsage) -> TokenUsage:
        pass


class FileLockStore(ABC):
    @abstractmethod
    async def insert(self, lock: FileLock) -> FileLock:
        """Store a lock; raises LockConflictError when another ticket holds the path."""
        pass

    @abstractmethod
    async def delete(self, file_path: str, ticket_id: str) -> bool:
        """Drop one ticket's lock on one path; False if it held none."""
        pass

    @abstractmethod
    async def delete_by_ticket(self, ticket_id: str) -> int:
        pass

    @abstractmethod
    async def list_active(self, now: datetime) -> list[FileLock]:
        pass


class KnowledgeBase(ABC):
    """Read-only queries over the registry of reusable assets and binding decisions."""

    @abstractmethod
    async def query_registry(
        self,
        type: str | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = 20,
    ) -> list[RegistryItem]:
        pass

    @abstractmethod
    async def query_decisions(
        self, category: str | None = None, scope: str | None = None, limit: int = 20
    ) -> list[Decision]:
        pass
