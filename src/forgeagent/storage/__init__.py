"""
Persistence boundary: record types, store interfaces and in-memory implementations.
"""

from .base import BudgetStore, ExecutionStore, FileLockStore, KnowledgeBase, TicketStore
from .memory import (
    InMemoryBudgetStore,
    InMemoryExecutionStore,
    InMemoryFileLockStore,
    InMemoryKnowledgeBase,
    InMemoryTicketStore,
)
from .models import (
    BudgetRecord,
    Decision,
    Execution,
    ExecutionStatus,
    FileLock,
    RegistryItem,
    Ticket,
    TicketStatus,
    TokenUsage,
)

__all__ = [
    "TicketStore",
    "ExecutionStore",
    "BudgetStore",
    "FileLockStore",
    "KnowledgeBase",
    "InMemoryTicketStore",
    "InMemoryExecutionStore",
    "InMemoryBudgetStore",
    "InMemoryFileLockStore",
    "InMemoryKnowledgeBase",
    "Ticket",
    "TicketStatus",
    "Execution",
    "ExecutionStatus",
    "BudgetRecord",
    "TokenUsage",
    "FileLock",
    "RegistryItem",
    "Decision",
]
