"""
In-memory store implementations.

Used as the default composition root and by the test-suite. Each store serialises
its own mutations with an asyncio.Lock; nothing spans stores.
"""

import asyncio
import dataclasses
import uuid
from datetime import date, datetime
from typing import Any

from ..core.errors import LockConflictError
from ..observability.logging import get_logger
from .base import BudgetStore, ExecutionStore, FileLockStore, KnowledgeBase, TicketStore
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

log = get_logger("forge.storage")


class InMemoryTicketStore(TicketStore):
    def __init__(self, tickets: list[Ticket] | None = None):
        self._tickets: dict[str, Ticket] = {t.id: t for t in tickets or []}
        self._lock = asyncio.Lock()

    def add(self, ticket: Ticket) -> Ticket:
        self._tickets[ticket.id] = ticket
        return ticket

    async def get(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    async def update(self, ticket_id: str, fields: dict[str, Any]) -> Ticket:
        async with self._lock:
            ticket = self._tickets[ticket_id]
            updated = dataclasses.replace(ticket, **fields)
            self._tickets[ticket_id] = updated
            return updated


class InMemoryExecutionStore(ExecutionStore):
    def __init__(self):
        self._executions: dict[str, Execution] = {}
        self._lock = asyncio.Lock()

    async def insert(self, fields: dict[str, Any]) -> Execution:
        async with self._lock:
            execution = Execution(id=str(uuid.uuid4()), **fields)
            self._executions[execution.id] = execution
            log.debug("Execution inserted", execution_id=execution.id)
            return execution

    async def update(self, execution_id: str, fields: dict[str, Any]) -> Execution:
        async with self._lock:
            execution = self._executions[execution_id]
            updated = dataclasses.replace(execution, **fields)
            self._executions[execution_id] = updated
            return updated

    async def get(self, execution_id: str) -> Execution | None:
        return self._executions.get(execution_id)

    async def list_by_status(self, status: ExecutionStatus) -> list[Execution]:
        return [e for e in self._executions.values() if e.status == status]


class InMemoryBudgetStore(BudgetStore):
    def __init__(self):
        self._records: dict[date, BudgetRecord] = {}
        self.usage: list[TokenUsage] = []
        self._lock = asyncio.Lock()

    async def get_by_date(self, day: date) -> BudgetRecord | None:
        return self._records.get(day)

    async def insert(self, record: BudgetRecord) -> BudgetRecord:
        async with self._lock:
            # A concurrent creator may have won the race; keep its row
            existing = self._records.setdefault(record.date, record)
            return existing

    async def increment(self, day: date, tokens: int, cents: int) -> BudgetRecord | None:
        async with self._lock:
            record = self._records.get(day)
            if record is None:
                return None
            record.used_tokens += tokens
            record.used_cents += cents
            return record

    async def insert_usage(self, usage: TokenUsage) -> TokenUsage:
        async with self._lock:
            self.usage.append(usage)
            return usage


class InMemoryFileLockStore(FileLockStore):
    def __init__(self):
        self._locks: list[FileLock] = []
        self._lock = asyncio.Lock()

    async def insert(self, lock: FileLock) -> FileLock:
        async with self._lock:
            self._prune(lock.created_at)
            for existing in self._locks:
                if (
                    existing.file_path == lock.file_path
                    and existing.locked_by_ticket_id != lock.locked_by_ticket_id
                ):
                    raise LockConflictError(lock.file_path, existing.locked_by_ticket_id)
            self._locks.append(lock)
            return lock

    async def delete(self, file_path: str, ticket_id: str) -> bool:
        async with self._lock:
            before = len(self._locks)
            self._locks = [
                l
                for l in self._locks
                if not (l.file_path == file_path and l.locked_by_ticket_id == ticket_id)
            ]
            return len(self._locks) < before

    async def delete_by_ticket(self, ticket_id: str) -> int:
        async with self._lock:
            before = len(self._locks)
            self._locks = [l for l in self._locks if l.locked_by_ticket_id != ticket_id]
            return before - len(self._locks)

    async def list_active(self, now: datetime) -> list[FileLock]:
        async with self._lock:
            self._prune(now)
            return list(self._locks)

    def _prune(self, now: datetime) -> None:
        self._locks = [l for l in self._locks if l.is_active(now)]


class InMemoryKnowledgeBase(KnowledgeBase):
    def __init__(
        self,
        registry: list[RegistryItem] | None = None,
        decisions: list[Decision] | None = None,
    ):
        self.registry = list(registry or [])
        self.decisions = list(decisions or [])

    async def query_registry(
        self,
        type: str | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = 20,
    ) -> list[RegistryItem]:
        needle = search.lower() if search else None
        results = []
        for item in self.registry:
            if type and item.type != type:
                continue
            if status and item.status != status:
                continue
            if needle and needle not in item.name.lower() and needle not in (item.description or "").lower():
                continue
            results.append(item)
        return results[:limit]

    async def query_decisions(
        self, category: str | None = None, scope: str | None = None, limit: int = 20
    ) -> list[Decision]:
        results = [
            d
            for d in self.decisions
            if d.active
            and (not category or d.category == category)
            and (not scope or scope in d.scope)
        ]
        return results[:limit]
