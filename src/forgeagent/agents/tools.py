"""
Agent tools: declarations sent to the model and executors bound to a ticket.

Each tool has a pydantic input model. The JSON schema declared to the model is
derived from that model, and the raw input the model sends is parsed into it
before dispatch. Executors return plain strings. Expected failures (missing file,
disallowed command) are returned as "Error: ..." strings; anything raised
(invalid input, unknown tool, source-control failures) is turned into an
error-flagged tool result by the gateway.
"""

import asyncio
import shlex
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config.settings import ToolsConfig
from ..core.errors import ToolInputError, ToolNotPermittedError, UnknownToolError
from ..integrations.base import SourceControlClient
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..storage.base import KnowledgeBase
from .messages import ToolDefinition, ToolInputSchema

logger = get_logger(__name__)

ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[str]]


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ReadFileInput(ToolInput):
    path: str = Field(..., description="The path to the file relative to repository root")
    branch: str | None = Field(None, description="Optional branch name. Defaults to the working branch.")


class WriteFileInput(ToolInput):
    path: str = Field(..., description="The path to the file relative to repository root")
    content: str = Field(..., description="The content to write to the file")
    message: str = Field(..., description="The commit message for this change")


class ListDirectoryInput(ToolInput):
    path: str = Field(..., description="The path to the directory relative to repository root")
    branch: str | None = Field(None, description="Optional branch name. Defaults to the working branch.")


class SearchCodebaseInput(ToolInput):
    query: str = Field(..., description="The search query")
    path: str | None = Field(None, description="Optional path to limit search to")
    extension: str | None = Field(None, description="Optional file extension filter (e.g., 'ts', 'tsx')")


class RunCommandInput(ToolInput):
    command: str = Field(
        ..., description="The command to run. Must be a safe command (pnpm, npm, git status, etc.)"
    )
    cwd: str | None = Field(None, description="Working directory for the command. Defaults to repository root.")


class CreateBranchInput(ToolInput):
    name: str = Field(
        ...,
        description="The branch name. Should follow pattern: feature/AXO-XXX-description or fix/AXO-XXX-description",
    )
    base: str | None = Field(None, description="Optional base branch. Defaults to the default branch.")


class CreatePRInput(ToolInput):
    title: str = Field(..., description="The PR title. Should be descriptive and include ticket ID.")
    body: str = Field(..., description="The PR description. Include summary, changes made, and testing notes.")
    head: str = Field(..., description="The branch containing changes")
    base: str | None = Field(None, description="The target branch. Defaults to the default branch.")
    draft: bool = Field(False, description="Whether to create as draft PR. Defaults to false.")


class GetRegistryInput(ToolInput):
    type: Literal["component", "hook", "utility", "api", "table", "integration"] | None = Field(
        None, description="Filter by registry item type"
    )
    search: str | None = Field(None, description="Search term to filter by name or description")
    status: Literal["active", "deprecated", "planned"] | None = Field(
        None, description="Filter by status. Defaults to active."
    )


class GetDecisionsInput(ToolInput):
    category: Literal[
        "code_standards",
        "architecture",
        "testing",
        "design",
        "process",
        "tooling",
        "product",
        "performance",
    ] | None = Field(None, description="Filter by decision category")
    scope: str | None = Field(
        None, description="Scope tag to filter by (e.g., 'api', 'validation', 'hooks', 'components')"
    )


class UnknownToolInput(BaseModel):
    """A call to a tool name that is not registered."""

    name: str
    raw: dict[str, Any] = Field(default_factory=dict)


TOOL_INPUTS: dict[str, tuple[type[ToolInput], str]] = {
    "read_file": (
        ReadFileInput,
        "Read the contents of a file from the repository. Returns the file content as a string.",
    ),
    "write_file": (
        WriteFileInput,
        "Write or update a file in the repository. Creates the file if it doesn't exist.",
    ),
    "list_directory": (ListDirectoryInput, "List the contents of a directory in the repository."),
    "search_codebase": (
        SearchCodebaseInput,
        "Search for code in the repository. Returns file paths containing the search term.",
    ),
    "run_command": (
        RunCommandInput,
        "Run a shell command. Use for build, test, lint commands only. Limited to safe commands.",
    ),
    "create_branch": (
        CreateBranchInput,
        "Create a new git branch from the default branch. Returns branch info.",
    ),
    "create_pr": (CreatePRInput, "Create a pull request for the current branch."),
    "get_registry": (
        GetRegistryInput,
        "Query the Forge registry for existing components, hooks, utilities, and APIs. "
        "Use this to check what already exists before creating new code.",
    ),
    "get_decisions": (
        GetDecisionsInput,
        "Get relevant architectural decisions that should inform your implementation. "
        "Always check this before starting implementation.",
    ),
}


def _input_schema(model: type[BaseModel]) -> ToolInputSchema:
    """JSON schema for a tool input model, with optional fields collapsed to their non-null type."""
    schema = model.model_json_schema()
    properties: dict[str, Any] = {}
    for name, prop in schema.get("properties", {}).items():
        prop = dict(prop)
        prop.pop("title", None)
        prop.pop("default", None)
        variants = [v for v in prop.pop("anyOf", []) if v.get("type") != "null"]
        if variants:
            prop.update(variants[0])
        properties[name] = prop
    return ToolInputSchema(properties=properties, required=schema.get("required", []))


TOOL_DEFINITIONS: dict[str, ToolDefinition] = {
    name: ToolDefinition(name=name, description=description, input_schema=_input_schema(model))
    for name, (model, description) in TOOL_INPUTS.items()
}


def get_tool_definitions(names: Iterable[str]) -> list[ToolDefinition]:
    """Definitions for the registered names, in the order given."""
    return [TOOL_DEFINITIONS[name] for name in names if name in TOOL_DEFINITIONS]


def parse_tool_input(name: str, raw: dict[str, Any] | None) -> ToolInput | UnknownToolInput:
    if name not in TOOL_INPUTS:
        return UnknownToolInput(name=name, raw=raw or {})
    model, _ = TOOL_INPUTS[name]
    try:
        return model.model_validate(raw or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ToolInputError(f"Invalid input for {name}: {problems}") from e


SAFE_COMMANDS = (
    "pnpm",
    "npm",
    "yarn",
    "node",
    "npx",
    "git status",
    "git log",
    "git diff",
    "git branch",
    "tsc",
    "vitest",
    "jest",
    "eslint",
    "prettier",
    "ls",
    "cat",
    "head",
    "tail",
    "grep",
    "find",
    "wc",
    "echo",
)


def is_command_safe(command: str) -> bool:
    """True when the command is, or starts with, an allow-listed command followed by a space."""
    normalized = " ".join(command.strip().lower().split())
    return any(normalized == safe or normalized.startswith(f"{safe} ") for safe in SAFE_COMMANDS)


class ToolExecutorSet:
    """Tool implementations bound to one working branch and ticket.

    Instances are callable with `(name, input)` and can be handed straight to
    `ModelGateway.execute_with_tools`.
    """

    def __init__(
        self,
        source_control: SourceControlClient,
        knowledge_base: KnowledgeBase,
        working_branch: str,
        ticket_identifier: str,
        config: ToolsConfig | None = None,
        permitted: Iterable[str] | None = None,
        protocol_name: str = "-",
    ):
        self.source_control = source_control
        self.knowledge_base = knowledge_base
        self.working_branch = working_branch
        self.ticket_identifier = ticket_identifier
        self.config = config or ToolsConfig()
        self.permitted = frozenset(permitted) if permitted is not None else None
        self.protocol_name = protocol_name
        self._handlers: dict[str, Callable[[Any], Awaitable[str]]] = {
            "read_file": self.read_file,
            "write_file": self.write_file,
            "list_directory": self.list_directory,
            "search_codebase": self.search_codebase,
            "run_command": self.run_command,
            "create_branch": self.create_branch,
            "create_pr": self.create_pr,
            "get_registry": self.get_registry,
            "get_decisions": self.get_decisions,
        }

    async def __call__(self, name: str, raw_input: dict[str, Any]) -> str:
        return await self.execute(name, raw_input)

    async def execute(self, name: str, raw_input: dict[str, Any]) -> str:
        tool_input = parse_tool_input(name, raw_input)
        if isinstance(tool_input, UnknownToolInput):
            raise UnknownToolError(name)
        if self.permitted is not None and name not in self.permitted:
            raise ToolNotPermittedError(name, self.protocol_name)

        metrics = get_metrics_collector()
        with probe(f"tool.{name}", ticket=self.ticket_identifier):
            try:
                result = await self._handlers[name](tool_input)
            except Exception:
                metrics.record_tool_call(name, success=False)
                raise
        metrics.record_tool_call(name, success=True)
        return result

    async def read_file(self, params: ReadFileInput) -> str:
        content = await self.source_control.get_file_content(
            params.path, params.branch or self.working_branch
        )
        if content is None:
            return f"Error: File not found at '{params.path}'"
        return content

    async def write_file(self, params: WriteFileInput) -> str:
        commit = await self.source_control.create_or_update_file(
            params.path,
            params.content,
            f"{params.message} [{self.ticket_identifier}]",
            self.working_branch,
        )
        return f"File written successfully to '{params.path}'. Commit: {commit.sha}"

    async def list_directory(self, params: ListDirectoryInput) -> str:
        entries = await self.source_control.list_directory(
            params.path, params.branch or self.working_branch
        )
        lines = [f"{'d' if e.type == 'dir' else 'f'} {e.name}" for e in entries]
        return "\n".join(lines) or "Empty directory"

    async def search_codebase(self, params: SearchCodebaseInput) -> str:
        hits = await self.source_control.search_code(
            params.query, path=params.path, extension=params.extension
        )
        if not hits:
            return "No results found"
        return "\n".join(hit.path for hit in hits)

    async def run_command(self, params: RunCommandInput) -> str:
        command = params.command
        if not is_command_safe(command):
            return (
                "Error: Command not allowed. Only safe commands are permitted: "
                + ", ".join(SAFE_COMMANDS)
            )

        workdir = self.config.command_workdir
        if workdir is None:
            return f"Command execution is not available in this environment. Would run: {command}"

        root = Path(workdir).resolve()
        cwd = (root / params.cwd).resolve() if params.cwd else root
        if cwd != root and root not in cwd.parents:
            return f"Error: Working directory '{params.cwd}' is outside the repository"

        try:
            argv = shlex.split(command)
        except ValueError as e:
            return f"Error: Could not parse command: {e}"

        logger.info("Running command", command=command, cwd=str(cwd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            return f"Error: Command not found: {argv[0]}"

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.config.command_timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return f"Error: Command timed out after {self.config.command_timeout:.0f}s: {command}"

        output = stdout.decode("utf-8", errors="replace")
        limit = self.config.max_output_chars
        if len(output) > limit:
            output = output[:limit] + f"\n... [truncated {len(output) - limit} chars]"
        return f"Exit code: {proc.returncode}\n{output}"

    async def create_branch(self, params: CreateBranchInput) -> str:
        branch = await self.source_control.create_branch(params.name, params.base)
        return f"Branch '{branch.name}' created from SHA {branch.sha}"

    async def create_pr(self, params: CreatePRInput) -> str:
        body = f"{params.body}\n\n---\n*Created by Forge for [{self.ticket_identifier}]*"
        pr = await self.source_control.create_pull_request(
            title=f"{params.title} [{self.ticket_identifier}]",
            body=body,
            head=params.head,
            base=params.base,
            draft=params.draft,
        )
        return f"Pull request #{pr.number} created: {pr.html_url}"

    async def get_registry(self, params: GetRegistryInput) -> str:
        items = await self.knowledge_base.query_registry(
            type=params.type,
            status=params.status or "active",
            search=params.search,
            limit=self.config.query_limit,
        )
        if not items:
            return "No registry items found matching criteria"
        return "\n\n".join(
            f"[{item.type}] {item.name}\n"
            f"  Path: {item.file_path}\n"
            f"  Description: {item.description or 'N/A'}\n"
            f"  Exports: {', '.join(item.exports) or 'N/A'}"
            for item in items
        )

    async def get_decisions(self, params: GetDecisionsInput) -> str:
        decisions = await self.knowledge_base.query_decisions(
            category=params.category, scope=params.scope, limit=self.config.query_limit
        )
        if not decisions:
            return "No relevant decisions found"
        return "\n\n".join(
            f"[{d.identifier}] {d.decision}\n"
            f"  Category: {d.category}\n"
            f"  Context: {d.context or 'N/A'}\n"
            f"  Scope: {', '.join(d.scope) or 'All'}"
            for d in decisions
        )
