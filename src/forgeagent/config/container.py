"""
Composition root: builds the gateway, GitHub client, stores, budget ledger and
orchestrator from Settings and owns their async lifecycle.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Lazily instantiated services keyed by name."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a ready-made instance; takes precedence over factories."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]
        if name in self._services:
            return self._services[name]
        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance
        return default

    async def cleanup(self) -> None:
        """Close every instantiated service that has an `aclose`."""
        for name, service in list(self._services.items()):
            aclose = getattr(service, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as e:
                logger.error("Error cleaning up service", service=name, error=str(e))
        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container wired with the default (in-memory) stores."""
    container = Container(settings)

    def _gateway_factory(c: Container):
        from ..agents.gateway import ModelGateway

        return ModelGateway(c.settings.model)

    def _source_control_factory(c: Container):
        from ..integrations.github import GitHubClient

        return GitHubClient(c.settings.github)

    def _ticket_store_factory(c: Container):
        from ..storage.memory import InMemoryTicketStore

        return InMemoryTicketStore()

    def _execution_store_factory(c: Container):
        from ..storage.memory import InMemoryExecutionStore

        return InMemoryExecutionStore()

    def _budget_store_factory(c: Container):
        from ..storage.memory import InMemoryBudgetStore

        return InMemoryBudgetStore()

    def _lock_store_factory(c: Container):
        from ..storage.memory import InMemoryFileLockStore

        return InMemoryFileLockStore()

    def _knowledge_base_factory(c: Container):
        from ..storage.memory import InMemoryKnowledgeBase

        return InMemoryKnowledgeBase()

    def _budget_ledger_factory(c: Container):
        from ..core.budget import BudgetLedger

        return BudgetLedger(c.get("budget_store"), c.settings.budget)

    def _conflict_detector_factory(c: Container):
        from ..core.conflicts import ConflictDetector

        return ConflictDetector(
            c.get("lock_store"),
            c.get("execution_store"),
            c.get("ticket_store"),
            lock_horizon=timedelta(minutes=c.settings.orchestrator.lock_horizon_minutes),
        )

    def _orchestrator_factory(c: Container):
        from ..core.orchestrator import AgentOrchestrator

        return AgentOrchestrator(
            gateway=c.get("gateway"),
            source_control=c.get("source_control"),
            tickets=c.get("ticket_store"),
            executions=c.get("execution_store"),
            budget=c.get("budget_ledger"),
            knowledge_base=c.get("knowledge_base"),
            settings=c.settings,
        )

    container.register_factory("gateway", _gateway_factory)
    container.register_factory("source_control", _source_control_factory)
    container.register_factory("ticket_store", _ticket_store_factory)
    container.register_factory("execution_store", _execution_store_factory)
    container.register_factory("budget_store", _budget_store_factory)
    container.register_factory("lock_store", _lock_store_factory)
    container.register_factory("knowledge_base", _knowledge_base_factory)
    container.register_factory("budget_ledger", _budget_ledger_factory)
    container.register_factory("conflict_detector", _conflict_detector_factory)
    container.register_factory("orchestrator", _orchestrator_factory)

    return container
