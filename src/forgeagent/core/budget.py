"""
Daily token budget ledger.

Admission compares today's used tokens plus the protocol's worst-case estimate
against the daily ceiling. The check and the later increment are separate
operations, so concurrent executions can both be admitted and jointly overshoot.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from ..agents.protocols import AgentProtocol
from ..config.settings import BudgetConfig
from ..observability.logging import get_logger
from ..storage.base import BudgetStore
from ..storage.models import BudgetRecord, TokenUsage
from .errors import BudgetExceededError

logger = get_logger(__name__)


def utc_today() -> date:
    return datetime.now(UTC).date()


@dataclass
class BudgetCheck:
    allowed: bool
    used_tokens: int
    limit_tokens: int
    estimated_tokens: int

    @property
    def remaining_tokens(self) -> int:
        return self.limit_tokens - self.used_tokens


class BudgetLedger:
    def __init__(
        self,
        store: BudgetStore,
        config: BudgetConfig | None = None,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.config = config or BudgetConfig()
        self._today = today

    async def get_or_create_today(self) -> BudgetRecord:
        day = self._today()
        record = await self.store.get_by_date(day)
        if record is None:
            record = await self.store.insert(
                BudgetRecord(
                    date=day,
                    daily_limit_tokens=self.config.daily_limit_tokens,
                    daily_limit_cents=self.config.daily_limit_cents,
                )
            )
            logger.info("Created daily budget", date=day.isoformat())
        return record

    async def check(self, protocol: AgentProtocol) -> BudgetCheck:
        record = await self.get_or_create_today()
        estimated = protocol.estimated_tokens[1]
        return BudgetCheck(
            allowed=record.used_tokens + estimated <= record.daily_limit_tokens,
            used_tokens=record.used_tokens,
            limit_tokens=record.daily_limit_tokens,
            estimated_tokens=estimated,
        )

    async def ensure_admitted(self, protocol: AgentProtocol) -> BudgetCheck:
        check = await self.check(protocol)
        if not check.allowed:
            logger.warning(
                "Budget admission denied",
                protocol=protocol.key.value,
                used=check.used_tokens,
                estimated=check.estimated_tokens,
                limit=check.limit_tokens,
            )
            raise BudgetExceededError(check.used_tokens, check.estimated_tokens, check.limit_tokens)
        return check

    async def record_usage(
        self,
        execution_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost_cents: int,
    ) -> BudgetRecord:
        """Log a usage row and add it to today's totals."""
        await self.store.insert_usage(
            TokenUsage(
                execution_id=execution_id,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                cost_cents=cost_cents,
            )
        )
        total = input_tokens + output_tokens
        record = await self.store.increment(self._today(), total, cost_cents)
        if record is None:
            # Day rolled over since admission
            await self.get_or_create_today()
            record = await self.store.increment(self._today(), total, cost_cents)
        return record

    async def today_status(self) -> dict[str, Any]:
        record = await self.get_or_create_today()

        def percent(used: int, limit: int) -> int:
            return round(used / limit * 100) if limit else 0

        return {
            "date": record.date.isoformat(),
            "daily_limit_tokens": record.daily_limit_tokens,
            "daily_limit_cents": record.daily_limit_cents,
            "used_tokens": record.used_tokens,
            "used_cents": record.used_cents,
            "token_percent_used": percent(record.used_tokens, record.daily_limit_tokens),
            "cost_percent_used": percent(record.used_cents, record.daily_limit_cents),
            "remaining_tokens": record.daily_limit_tokens - record.used_tokens,
            "remaining_cents": record.daily_limit_cents - record.used_cents,
        }
