"""
Persisted records exchanged with the ticket, execution, budget and lock stores.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(UTC)


class TicketStatus(str, Enum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    BLOCKED = "blocked"
    DONE = "done"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Ticket:
    id: str
    identifier: str
    title: str
    type: str = "feature"
    description: str | None = None
    priority: str = "medium"
    current_phase: str = "implementation"
    estimate: int | None = None
    labels: list[str] = field(default_factory=list)
    branch_name: str | None = None
    started_at: datetime | None = None
    status: TicketStatus = TicketStatus.BACKLOG
    assigned_agent: str | None = None
    agent_session_id: str | None = None
    pr_url: str | None = None
    pr_number: int | None = None


@dataclass
class Execution:
    id: str
    ticket_id: str
    protocol: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    prompt: str = ""
    execution_log: str = ""
    checkpoint_step: int | None = None
    checkpoint_data: dict[str, Any] | None = None
    branch_created: str | None = None
    files_changed: list[str] = field(default_factory=list)
    pr_url: str | None = None
    pr_number: int | None = None
    tokens_used: int = 0
    cost_cents: int = 0
    duration_ms: int | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None


@dataclass
class BudgetRecord:
    date: date
    daily_limit_tokens: int
    daily_limit_cents: int
    used_tokens: int = 0
    used_cents: int = 0


@dataclass
class TokenUsage:
    execution_id: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_cents: int
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class FileLock:
    file_path: str
    locked_by_ticket_id: str
    lock_type: str = "exclusive"
    expected_release: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_active(self, now: datetime) -> bool:
        return self.expected_release is None or self.expected_release > now


@dataclass
class RegistryItem:
    type: str
    name: str
    file_path: str
    description: str | None = None
    exports: list[str] = field(default_factory=list)
    status: str = "active"


@dataclass
class Decision:
    identifier: str
    decision: str
    category: str
    context: str | None = None
    scope: list[str] = field(default_factory=list)
    active: bool = True
