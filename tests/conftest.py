"""
Shared fixtures: in-memory stores, a fake source-control client and a scripted
model service served through httpx.MockTransport.
"""

import json
from datetime import date
from typing import Any

import httpx
import pytest

from forgeagent.agents.gateway import ModelGateway
from forgeagent.config.settings import (
    GitHubConfig,
    ModelServiceConfig,
    ObservabilityConfig,
    Settings,
)
from forgeagent.core.budget import BudgetLedger
from forgeagent.core.orchestrator import AgentOrchestrator
from forgeagent.integrations.base import (
    BranchRef,
    CodeSearchHit,
    CommitRef,
    DirectoryEntry,
    PullRequestRef,
)
from forgeagent.observability import metrics as metrics_module
from forgeagent.observability.logging import clear_trace_id
from forgeagent.storage.memory import (
    InMemoryBudgetStore,
    InMemoryExecutionStore,
    InMemoryFileLockStore,
    InMemoryKnowledgeBase,
    InMemoryTicketStore,
)
from forgeagent.storage.models import Decision, RegistryItem, Ticket, TicketStatus

TODAY = date(2025, 1, 15)


@pytest.fixture(autouse=True)
def test_isolation():
    """Reset process-wide observability state between tests."""
    clear_trace_id()
    metrics_module._metrics_collector = None
    yield
    clear_trace_id()


# Model service scripting


def text_response(text: str = "Done.", input_tokens: int = 100, output_tokens: int = 50) -> dict:
    return {
        "id": "msg_text",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def tool_response(
    calls: list[tuple[str, str, dict[str, Any]]],
    input_tokens: int = 100,
    output_tokens: int = 50,
    text: str | None = None,
) -> dict:
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    content += [{"type": "tool_use", "id": cid, "name": name, "input": args} for cid, name, args in calls]
    return {
        "id": "msg_tool",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "content": content,
        "stop_reason": "tool_use",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


class ScriptedModel:
    """Serves queued Messages API responses and records every request body."""

    def __init__(self, responses: list[dict | httpx.Response] | None = None):
        self.responses = list(responses or [])
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self.on_request = None

    def queue(self, *responses: dict | httpx.Response) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.on_request:
            self.on_request(len(self.requests))
        if not self.responses:
            return httpx.Response(200, json=text_response("Out of script."))
        response = self.responses.pop(0)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def gateway(self, config: ModelServiceConfig | None = None) -> ModelGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ModelGateway(config or ModelServiceConfig(api_key="test-key"), http_client=client)


@pytest.fixture
def scripted_model() -> ScriptedModel:
    return ScriptedModel()


# Source control


class FakeSourceControl:
    """In-memory repository standing in for the GitHub client."""

    def __init__(self, files: dict[str, str] | None = None):
        self.files: dict[tuple[str, str], str] = {("main", p): c for p, c in (files or {}).items()}
        self.branches: list[BranchRef] = []
        self.commits: list[tuple[str, str, str]] = []
        self.pull_requests: list[dict[str, Any]] = []
        self.searches: list[tuple[str, str | None, str | None]] = []
        self.fail_create_branch: Exception | None = None
        self.on_write = None

    async def create_branch(self, name: str, base: str | None = None) -> BranchRef:
        if self.fail_create_branch:
            raise self.fail_create_branch
        branch = BranchRef(name=name, sha=f"sha-{len(self.branches) + 1}")
        self.branches.append(branch)
        return branch

    async def get_file_content(self, path: str, branch: str | None = None) -> str | None:
        return self.files.get((branch or "main", path), self.files.get(("main", path)))

    async def create_or_update_file(self, path: str, content: str, message: str, branch: str) -> CommitRef:
        self.files[(branch, path)] = content
        sha = f"commit-{len(self.commits) + 1}"
        self.commits.append((path, message, branch))
        if self.on_write:
            await self.on_write(path)
        return CommitRef(sha=sha, message=message)

    async def list_directory(self, path: str, branch: str | None = None) -> list[DirectoryEntry]:
        prefix = path.rstrip("/") + "/"
        names = {p[len(prefix):].split("/")[0] for (_, p) in self.files if p.startswith(prefix)}
        return [
            DirectoryEntry(name=n, type="file" if (branch or "main", prefix + n) in self.files else "dir")
            for n in sorted(names)
        ]

    async def search_code(
        self, query: str, path: str | None = None, extension: str | None = None
    ) -> list[CodeSearchHit]:
        self.searches.append((query, path, extension))
        return [CodeSearchHit(path=p) for (b, p), c in self.files.items() if b == "main" and query in c]

    async def create_pull_request(
        self, title: str, body: str, head: str, base: str | None = None, draft: bool = False
    ) -> PullRequestRef:
        number = 100 + len(self.pull_requests) + 1
        self.pull_requests.append(
            {"title": title, "body": body, "head": head, "base": base, "draft": draft}
        )
        return PullRequestRef(
            number=number, html_url=f"https://github.com/axori/axori-platform/pull/{number}", title=title
        )


@pytest.fixture
def source_control() -> FakeSourceControl:
    return FakeSourceControl({"src/index.ts": "export const answer = 42\n"})


# Stores


@pytest.fixture
def ticket() -> Ticket:
    return Ticket(
        id="ticket-1",
        identifier="AXO-123",
        title="Add property search filters!",
        type="feature",
        description="Allow filtering properties by city and price.",
        priority="high",
        estimate=3,
        labels=["search", "frontend"],
        status=TicketStatus.TODO,
    )


@pytest.fixture
def ticket_store(ticket) -> InMemoryTicketStore:
    return InMemoryTicketStore([ticket])


@pytest.fixture
def execution_store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def budget_store() -> InMemoryBudgetStore:
    return InMemoryBudgetStore()


@pytest.fixture
def lock_store() -> InMemoryFileLockStore:
    return InMemoryFileLockStore()


@pytest.fixture
def knowledge_base() -> InMemoryKnowledgeBase:
    return InMemoryKnowledgeBase(
        registry=[
            RegistryItem(
                type="hook",
                name="usePropertySearch",
                file_path="src/hooks/usePropertySearch.ts",
                description="Debounced property search",
                exports=["usePropertySearch"],
            ),
            RegistryItem(type="component", name="OldTable", file_path="src/OldTable.tsx", status="deprecated"),
        ],
        decisions=[
            Decision(
                identifier="ADR-7",
                decision="Validate API input with zod",
                category="code_standards",
                context="Shared schemas",
                scope=["api", "validation"],
            ),
            Decision(identifier="ADR-2", decision="Retired", category="architecture", active=False),
        ],
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        model=ModelServiceConfig(api_key="test-key"),
        github=GitHubConfig(token="test-token"),
        observability=ObservabilityConfig(enable_tracing=False),
    )


@pytest.fixture
def budget_ledger(budget_store, settings) -> BudgetLedger:
    return BudgetLedger(budget_store, settings.budget, today=lambda: TODAY)


@pytest.fixture
def orchestrator(
    scripted_model,
    source_control,
    ticket_store,
    execution_store,
    budget_ledger,
    knowledge_base,
    settings,
) -> AgentOrchestrator:
    return AgentOrchestrator(
        gateway=scripted_model.gateway(settings.model),
        source_control=source_control,
        tickets=ticket_store,
        executions=execution_store,
        budget=budget_ledger,
        knowledge_base=knowledge_base,
        settings=settings,
    )
