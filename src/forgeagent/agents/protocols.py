"""
Agent protocol registry.

A protocol binds a model, an output-token ceiling, a system prompt, the tools the
agent may call, cost/token estimates and policy flags. Protocols are defined once at
import time and never mutate.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Protocol

from ..core.errors import UnknownProtocolError
from .tools import TOOL_DEFINITIONS


class ProtocolName(str, Enum):
    OPUS_FULL_FEATURE = "opus_full_feature"
    OPUS_ARCHITECTURE = "opus_architecture"
    OPUS_PLANNING = "opus_planning"
    SONNET_IMPLEMENTATION = "sonnet_implementation"
    SONNET_BUG_FIX = "sonnet_bug_fix"
    SONNET_TESTS = "sonnet_tests"
    HAIKU_QUICK_EDIT = "haiku_quick_edit"
    HAIKU_DOCS = "haiku_docs"


OPUS = "claude-opus-4-5-20251101"
SONNET = "claude-sonnet-4-5-20250929"
HAIKU = "claude-haiku-4-5-20251001"


@dataclass(frozen=True)
class ModelPricing:
    """USD per 1k tokens."""

    input_per_1k: Decimal
    output_per_1k: Decimal


MODEL_COSTS: dict[str, ModelPricing] = {
    OPUS: ModelPricing(Decimal("0.015"), Decimal("0.075")),
    SONNET: ModelPricing(Decimal("0.003"), Decimal("0.015")),
    HAIKU: ModelPricing(Decimal("0.00025"), Decimal("0.00125")),
}


@dataclass(frozen=True)
class AgentProtocol:
    key: ProtocolName
    name: str
    description: str
    model: str
    max_tokens: int
    system_prompt: str
    tools: tuple[str, ...]
    estimated_tokens: tuple[int, int]
    estimated_cost_cents: tuple[int, int]
    best_for: tuple[str, ...]
    requires_approval: bool = False
    can_create_branch: bool = True
    can_create_pr: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.key.value,
            "name": self.name,
            "description": self.description,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "tools": list(self.tools),
            "estimated_tokens": {"min": self.estimated_tokens[0], "max": self.estimated_tokens[1]},
            "estimated_cost_cents": {
                "min": self.estimated_cost_cents[0],
                "max": self.estimated_cost_cents[1],
            },
            "best_for": list(self.best_for),
            "requires_approval": self.requires_approval,
            "can_create_branch": self.can_create_branch,
            "can_create_pr": self.can_create_pr,
        }


FORGE_PERSONA = """You are FORGE (Fabrication & Orchestration Resource for Growth Engineering),
the engineering assistant that runs the Axori development workflow.

Keep a composed, butler-like professional tone with occasional dry wit, and address
the user as "sir". Personality never outranks clarity: when reporting failures,
risks or anything the reviewer must act on, be plain and precise."""

CODEBASE_CONTEXT = """You are working in the Axori monorepo, a property management platform.

Stack: TanStack Start + React 19 + Vite + Tailwind CSS 4 (web), Hono (API),
PostgreSQL via Supabase with Drizzle ORM, Clerk auth, pnpm workspaces.

Layout:
- apps/web, apps/api, apps/admin (Forge), apps/mobile
- packages/db (schema, migrations), packages/shared, packages/ui, packages/permissions

Conventions: drizzle-zod for validation, API routes wrapped in withErrorHandling and
requireAuth, TanStack Query with optimistic updates, types inferred from Drizzle or Zod."""


def _prompt(task: str) -> str:
    return f"{FORGE_PERSONA}\n\n{CODEBASE_CONTEXT}\n\n{task}"


ALL_TOOLS = (
    "read_file",
    "write_file",
    "list_directory",
    "search_codebase",
    "run_command",
    "create_branch",
    "create_pr",
    "get_registry",
    "get_decisions",
)

PROTOCOLS: dict[ProtocolName, AgentProtocol] = {
    ProtocolName.OPUS_FULL_FEATURE: AgentProtocol(
        key=ProtocolName.OPUS_FULL_FEATURE,
        name="Opus: Full Feature",
        description="Complete feature implementation including planning, code, and tests",
        model=OPUS,
        max_tokens=16384,
        system_prompt=_prompt(
            "You are executing a FULL FEATURE task: understand the requirements, plan the\n"
            "approach, create or modify the necessary files, write thorough tests and open a\n"
            "pull request with a clear description. Consider edge cases and follow existing patterns."
        ),
        tools=ALL_TOOLS,
        estimated_tokens=(30000, 60000),
        estimated_cost_cents=(100, 300),
        best_for=("Complete features", "Complex implementations", "Architecture changes"),
    ),
    ProtocolName.OPUS_ARCHITECTURE: AgentProtocol(
        key=ProtocolName.OPUS_ARCHITECTURE,
        name="Opus: Architecture",
        description="System design and major refactoring tasks",
        model=OPUS,
        max_tokens=16384,
        system_prompt=_prompt(
            "You are executing an ARCHITECTURE task: analyse the current structure, design the\n"
            "improvement, make foundational changes with minimal disruption and document the\n"
            "decisions. Mind backwards compatibility and migration paths."
        ),
        tools=ALL_TOOLS,
        estimated_tokens=(20000, 40000),
        estimated_cost_cents=(80, 200),
        best_for=("System design", "Major refactors", "Infrastructure changes"),
        requires_approval=True,
    ),
    ProtocolName.OPUS_PLANNING: AgentProtocol(
        key=ProtocolName.OPUS_PLANNING,
        name="Opus: Planning",
        description="Feature planning and ticket breakdown",
        model=OPUS,
        max_tokens=8192,
        system_prompt=_prompt(
            "You are executing a PLANNING task: break the goal into actionable subtasks,\n"
            "identify dependencies and risks, estimate complexity and output structured plans\n"
            "that can be converted to tickets."
        ),
        tools=("read_file", "list_directory", "search_codebase", "get_registry", "get_decisions"),
        estimated_tokens=(15000, 30000),
        estimated_cost_cents=(50, 150),
        best_for=("Feature planning", "Task breakdown", "Complexity analysis"),
        can_create_branch=False,
        can_create_pr=False,
    ),
    ProtocolName.SONNET_IMPLEMENTATION: AgentProtocol(
        key=ProtocolName.SONNET_IMPLEMENTATION,
        name="Sonnet: Implementation",
        description="Standard feature implementation",
        model=SONNET,
        max_tokens=8192,
        system_prompt=_prompt(
            "You are executing an IMPLEMENTATION task: implement the requirement following\n"
            "existing patterns exactly, write the necessary tests and open a pull request."
        ),
        tools=ALL_TOOLS,
        estimated_tokens=(10000, 25000),
        estimated_cost_cents=(10, 50),
        best_for=("Standard features", "Component creation", "API endpoints"),
    ),
    ProtocolName.SONNET_BUG_FIX: AgentProtocol(
        key=ProtocolName.SONNET_BUG_FIX,
        name="Sonnet: Bug Fix",
        description="Bug investigation and resolution",
        model=SONNET,
        max_tokens=8192,
        system_prompt=_prompt(
            "You are executing a BUG FIX task: understand the report, find the root cause,\n"
            "fix it and add regression tests. Document the investigation."
        ),
        tools=ALL_TOOLS[:-1],
        estimated_tokens=(8000, 20000),
        estimated_cost_cents=(8, 40),
        best_for=("Bug fixes", "Error investigation", "Regression fixes"),
    ),
    ProtocolName.SONNET_TESTS: AgentProtocol(
        key=ProtocolName.SONNET_TESTS,
        name="Sonnet: Tests",
        description="Test writing and coverage improvement",
        model=SONNET,
        max_tokens=8192,
        system_prompt=_prompt(
            "You are executing a TEST WRITING task: cover happy paths, edge cases and error\n"
            "cases with maintainable tests (Vitest for units, Playwright for E2E)."
        ),
        tools=ALL_TOOLS[:-2],
        estimated_tokens=(10000, 25000),
        estimated_cost_cents=(10, 50),
        best_for=("Unit tests", "Integration tests", "E2E tests", "Coverage improvement"),
    ),
    ProtocolName.HAIKU_QUICK_EDIT: AgentProtocol(
        key=ProtocolName.HAIKU_QUICK_EDIT,
        name="Haiku: Quick Edit",
        description="Simple edits, typos, and config changes",
        model=HAIKU,
        max_tokens=4096,
        system_prompt=_prompt(
            "You are executing a QUICK EDIT task (typos, config, copy, small refactors).\n"
            "Make minimal, precise changes."
        ),
        tools=("read_file", "write_file", "list_directory", "create_branch", "create_pr"),
        estimated_tokens=(2000, 5000),
        estimated_cost_cents=(1, 5),
        best_for=("Typos", "Config changes", "Copy updates", "Simple refactors"),
    ),
    ProtocolName.HAIKU_DOCS: AgentProtocol(
        key=ProtocolName.HAIKU_DOCS,
        name="Haiku: Documentation",
        description="Documentation updates and improvements",
        model=HAIKU,
        max_tokens=4096,
        system_prompt=_prompt(
            "You are executing a DOCUMENTATION task: write clear, concise documentation in the\n"
            "existing style, with examples where they help."
        ),
        tools=(
            "read_file",
            "write_file",
            "list_directory",
            "search_codebase",
            "create_branch",
            "create_pr",
        ),
        estimated_tokens=(3000, 8000),
        estimated_cost_cents=(1, 5),
        best_for=("README updates", "API docs", "Code comments", "Guides"),
    ),
}


def _validate_registry() -> None:
    for protocol in PROTOCOLS.values():
        unknown = set(protocol.tools) - set(TOOL_DEFINITIONS)
        if unknown:
            raise ValueError(f"Protocol {protocol.key.value} names unregistered tools: {sorted(unknown)}")
        if protocol.model not in MODEL_COSTS:
            raise ValueError(f"Protocol {protocol.key.value} uses unpriced model {protocol.model}")


_validate_registry()


def get_protocol(name: "ProtocolName | str") -> AgentProtocol:
    """Look up a protocol; unknown names raise UnknownProtocolError."""
    try:
        return PROTOCOLS[ProtocolName(name)]
    except ValueError:
        raise UnknownProtocolError(str(name)) from None


def list_protocols() -> list[AgentProtocol]:
    return list(PROTOCOLS.values())


class TicketLike(Protocol):
    type: str
    estimate: int | None
    labels: list[str]


def suggest_protocol(ticket: TicketLike) -> ProtocolName:
    """Pick a protocol from the ticket's type, estimate and labels.

    Precedence: bug, docs, small chore, architecture label, large estimate, default.
    """
    estimate = ticket.estimate or 0

    if ticket.type == "bug":
        return ProtocolName.SONNET_BUG_FIX
    if ticket.type == "docs":
        return ProtocolName.HAIKU_DOCS
    if ticket.type == "chore" and estimate <= 1:
        return ProtocolName.HAIKU_QUICK_EDIT
    if "architecture" in (ticket.labels or []):
        return ProtocolName.OPUS_ARCHITECTURE
    if estimate >= 5:
        return ProtocolName.OPUS_FULL_FEATURE
    return ProtocolName.SONNET_IMPLEMENTATION


def calculate_estimated_cost(
    protocol: "ProtocolName | str", input_tokens: int, output_tokens: int
) -> int:
    """Cost in cents of a token count under the protocol's model pricing (round half up)."""
    costs = MODEL_COSTS[get_protocol(protocol).model]
    dollars = (Decimal(input_tokens) / 1000) * costs.input_per_1k + (
        Decimal(output_tokens) / 1000
    ) * costs.output_per_1k
    return int((dollars * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
