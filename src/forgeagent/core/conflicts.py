"""
File locks and overlap detection between concurrently running executions.

Two tickets conflict when a file one of them is about to touch is either locked by
the other (live lock) or already changed by the other's running execution.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..observability.logging import get_logger
from ..storage.base import ExecutionStore, FileLockStore, TicketStore
from ..storage.models import ExecutionStatus, FileLock, utcnow
from .errors import LockConflictError

logger = get_logger(__name__)


@dataclass
class ConflictingTicket:
    ticket_id: str
    identifier: str
    files: list[str]


@dataclass
class ConflictReport:
    has_conflict: bool
    conflicting_tickets: list[ConflictingTicket] = field(default_factory=list)


class ConflictDetector:
    def __init__(
        self,
        locks: FileLockStore,
        executions: ExecutionStore,
        tickets: TicketStore,
        lock_horizon: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.locks = locks
        self.executions = executions
        self.tickets = tickets
        self.lock_horizon = lock_horizon
        self._clock = clock

    async def acquire_file_locks(self, ticket_id: str, files: Iterable[str]) -> bool:
        """Take exclusive locks on every file; False if another ticket holds any of them."""
        now = self._clock()
        files = list(dict.fromkeys(files))
        held = {l.file_path: l.locked_by_ticket_id for l in await self.locks.list_active(now)}
        blocked = [f for f in files if held.get(f, ticket_id) != ticket_id]
        if blocked:
            logger.info("File locks unavailable", ticket_id=ticket_id, files=",".join(blocked))
            return False

        inserted: list[str] = []
        try:
            for path in files:
                if held.get(path) == ticket_id:
                    continue
                await self.locks.insert(
                    FileLock(
                        file_path=path,
                        locked_by_ticket_id=ticket_id,
                        expected_release=now + self.lock_horizon,
                        created_at=now,
                    )
                )
                inserted.append(path)
        except LockConflictError as e:
            logger.info("File lock lost to concurrent ticket", ticket_id=ticket_id, file=e.file_path)
            for path in inserted:
                await self.locks.delete(path, ticket_id)
            return False
        return True

    async def release_file_locks(self, ticket_id: str) -> int:
        released = await self.locks.delete_by_ticket(ticket_id)
        logger.debug("Released file locks", ticket_id=ticket_id, count=released)
        return released

    async def check_for_conflicts(
        self, ticket_id: str, files: Iterable[str] | None = None
    ) -> ConflictReport:
        """
        Report other tickets touching the same files.

        Without `files`, the candidate set is the ticket's own live locks.
        """
        now = self._clock()
        active_locks = await self.locks.list_active(now)

        if files is None:
            candidates = {l.file_path for l in active_locks if l.locked_by_ticket_id == ticket_id}
        else:
            candidates = set(files)
        if not candidates:
            return ConflictReport(has_conflict=False)

        overlaps: dict[str, set[str]] = {}
        for execution in await self.executions.list_by_status(ExecutionStatus.RUNNING):
            if execution.ticket_id == ticket_id:
                continue
            shared = candidates.intersection(execution.files_changed)
            if shared:
                overlaps.setdefault(execution.ticket_id, set()).update(shared)

        for lock in active_locks:
            if lock.locked_by_ticket_id != ticket_id and lock.file_path in candidates:
                overlaps.setdefault(lock.locked_by_ticket_id, set()).add(lock.file_path)

        conflicting = []
        for other_id, shared in overlaps.items():
            ticket = await self.tickets.get(other_id)
            conflicting.append(
                ConflictingTicket(
                    ticket_id=other_id,
                    identifier=ticket.identifier if ticket else other_id,
                    files=sorted(shared),
                )
            )
        return ConflictReport(has_conflict=bool(conflicting), conflicting_tickets=conflicting)
