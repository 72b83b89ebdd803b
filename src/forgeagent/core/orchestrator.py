"""
Agent orchestrator: runs one ticket through one protocol end to end.

An execution is admitted against the daily budget, recorded, given a working
branch, driven through the model's tool-use loop and reconciled back onto the
ticket. `execute` always returns an ExecutionResult; failures are reported in it.

Pause and cancel are cooperative: the running loop notices them before its next
model round-trip. A paused execution keeps its conversation as a checkpoint and
`resume` continues the same execution from there.
"""

import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..agents.gateway import CancelToken, ModelGateway
from ..agents.messages import Message, ModelRequest, ModelResponse, dump_messages, load_messages
from ..agents.protocols import (
    AgentProtocol,
    ProtocolName,
    calculate_estimated_cost,
    get_protocol,
)
from ..agents.tools import ToolExecutorSet, get_tool_definitions
from ..config.settings import Settings
from ..integrations.base import SourceControlClient
from ..observability.logging import get_logger, set_trace_id
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..storage.base import ExecutionStore, KnowledgeBase, TicketStore
from ..storage.models import Execution, ExecutionStatus, Ticket, TicketStatus, utcnow
from .budget import BudgetLedger
from .errors import (
    CheckpointMissingError,
    ExecutionInterrupted,
    ExecutionNotFoundError,
    InvalidTransitionError,
    TicketNotFoundError,
)
from .state_machine import ExecutionEvent, next_status

logger = get_logger(__name__)

FILE_WRITTEN_RE = re.compile(r"File written[^']*'([^']+)'")
PR_CREATED_RE = re.compile(r"Pull request #(\d+) created: (\S+)")

CANCELLED = "cancelled"
PAUSED = "paused"

CANCELLED_ERROR = "Cancelled by user"

OUTCOME_EVENTS = {
    ExecutionStatus.COMPLETED: ExecutionEvent.COMPLETE,
    ExecutionStatus.FAILED: ExecutionEvent.FAIL,
    ExecutionStatus.PAUSED: ExecutionEvent.PAUSE,
}


@dataclass
class ExecutionOptions:
    max_iterations: int | None = None
    checkpoint_interval: int | None = None
    additional_context: str | None = None
    on_progress: Callable[[str], None] | None = None
    on_tool_use: Callable[[str, dict[str, Any]], None] | None = None


@dataclass
class ExecutionResult:
    success: bool
    execution_id: str
    status: ExecutionStatus
    branch_created: str | None = None
    files_changed: list[str] = field(default_factory=list)
    pr_url: str | None = None
    pr_number: int | None = None
    tokens_used: int = 0
    cost_cents: int = 0
    duration_ms: int = 0
    error: str | None = None
    execution_log: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "execution_id": self.execution_id,
            "status": self.status.value,
            "branch_created": self.branch_created,
            "files_changed": list(self.files_changed),
            "pr_url": self.pr_url,
            "pr_number": self.pr_number,
            "tokens_used": self.tokens_used,
            "cost_cents": self.cost_cents,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "execution_log": self.execution_log,
        }


class ExecutionLog:
    """Timestamped progress lines, mirrored to the progress callback and the logger."""

    def __init__(
        self,
        on_progress: Callable[[str], None] | None = None,
        previous: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.lines: list[str] = previous.splitlines() if previous else []
        self._on_progress = on_progress
        self._clock = clock

    def __call__(self, message: str) -> None:
        self.lines.append(f"[{self._clock().isoformat()}] {message}")
        logger.info(message)
        if self._on_progress:
            self._on_progress(message)

    def render(self) -> str:
        return "\n".join(self.lines)


@dataclass
class _AgentOutcome:
    status: ExecutionStatus
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: int = 0
    files_changed: list[str] = field(default_factory=list)
    pr_url: str | None = None
    pr_number: int | None = None
    error: str | None = None
    checkpoint: dict[str, Any] | None = None

    @property
    def tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def generate_branch_name(identifier: str, title: str) -> str:
    """feature/<identifier>-<slug>, slug lowercased, dash-joined and cut to 30 chars."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:30]
    return f"feature/{identifier.lower()}-{slug}"


def build_prompt(ticket: Ticket, additional_context: str | None = None) -> str:
    details = [
        f"- Type: {ticket.type}",
        f"- Priority: {ticket.priority}",
        f"- Phase: {ticket.current_phase}",
    ]
    if ticket.estimate:
        details.append(f"- Estimate: {ticket.estimate} story points")
    if ticket.labels:
        details.append(f"- Labels: {', '.join(ticket.labels)}")

    prompt = f"""# Task: {ticket.identifier} - {ticket.title}

## Description
{ticket.description or "No description provided."}

## Ticket Details
{chr(10).join(details)}

## Instructions
Work through this ticket in order:
1. Check the registry with get_registry for components and utilities you can reuse
2. Check get_decisions for architectural decisions that apply
3. Read the relevant files to understand the existing code
4. Create the feature branch if it does not exist yet
5. Implement the changes following the patterns already in the codebase
6. Open a pull request when the work is complete

Keep to the existing conventions, add tests where the protocol allows it, write
meaningful commit messages and note any significant decision you make.
"""
    if additional_context:
        prompt += f"\n## Additional Context\n{additional_context}\n"
    return prompt


def _tool_result_texts(messages: list[Message]):
    for message in messages:
        for block in message.blocks():
            if block.type == "tool_result" and block.content:
                yield block.content


def extract_files_changed(messages: list[Message]) -> list[str]:
    """Paths reported by write_file results, first-seen order, no duplicates."""
    files: dict[str, None] = {}
    for text in _tool_result_texts(messages):
        for path in FILE_WRITTEN_RE.findall(text):
            files.setdefault(path, None)
    return list(files)


def extract_pr_info(messages: list[Message]) -> tuple[int, str] | None:
    """(number, url) of the first pull request reported by create_pr, if any."""
    for text in _tool_result_texts(messages):
        match = PR_CREATED_RE.search(text)
        if match:
            return int(match.group(1)), match.group(2)
    return None


class AgentOrchestrator:
    """Drives agent executions and their lifecycle (pause, resume, cancel)."""

    def __init__(
        self,
        gateway: ModelGateway,
        source_control: SourceControlClient,
        tickets: TicketStore,
        executions: ExecutionStore,
        budget: BudgetLedger,
        knowledge_base: KnowledgeBase,
        settings: Settings | None = None,
    ):
        self.gateway = gateway
        self.source_control = source_control
        self.tickets = tickets
        self.executions = executions
        self.budget = budget
        self.knowledge_base = knowledge_base
        self.settings = settings or Settings()
        self._cancel_tokens: dict[str, CancelToken] = {}

    async def execute(
        self,
        ticket_id: str,
        protocol: ProtocolName | str,
        options: ExecutionOptions | None = None,
    ) -> ExecutionResult:
        """Run `protocol` against a ticket. Never raises; failures come back in the result."""
        options = options or ExecutionOptions()
        started = time.perf_counter()
        log = ExecutionLog(options.on_progress)
        execution_id = ""
        ticket: Ticket | None = None
        config: AgentProtocol | None = None
        token: CancelToken | None = None

        try:
            config = get_protocol(protocol)

            log("Fetching ticket details...")
            ticket = await self.tickets.get(ticket_id)
            if ticket is None:
                raise TicketNotFoundError(ticket_id)
            log(f"Working on: {ticket.identifier} - {ticket.title}")

            log("Checking token budget...")
            await self.budget.ensure_admitted(config)

            log("Creating execution record...")
            prompt = build_prompt(ticket, options.additional_context)
            execution = await self.executions.insert(
                {
                    "ticket_id": ticket_id,
                    "protocol": config.key.value,
                    "status": ExecutionStatus.RUNNING,
                    "prompt": prompt,
                }
            )
            execution_id = execution.id
            token = self._reserve(execution_id)
            set_trace_id(execution_id)

            ticket = await self.tickets.update(
                ticket_id,
                {
                    "assigned_agent": config.key.value,
                    "agent_session_id": execution_id,
                    "status": TicketStatus.IN_PROGRESS,
                    "started_at": ticket.started_at or utcnow(),
                },
            )

            working_branch = await self._ensure_branch(ticket, config, execution_id, log)

            log("Starting agent execution...")
            outcome = await self._run_agent(
                execution_id,
                ticket,
                config,
                working_branch,
                [Message(role="user", content=prompt)],
                0,
                options,
                log,
                token,
            )
        except Exception as e:
            log(f"Execution error: {e}")
            if not execution_id:
                logger.warning("Execution rejected", ticket_id=ticket_id, error=str(e))
                return ExecutionResult(
                    success=False,
                    execution_id="",
                    status=ExecutionStatus.FAILED,
                    duration_ms=_elapsed_ms(started),
                    error=str(e),
                    execution_log=log.render(),
                )
            outcome = _AgentOutcome(status=ExecutionStatus.FAILED, error=str(e))

        try:
            return await self._finish(execution_id, ticket, config, outcome, log, started)
        finally:
            self._release(execution_id, token)

    async def resume(
        self, execution_id: str, options: ExecutionOptions | None = None
    ) -> ExecutionResult:
        """
        Continue a paused execution from its checkpoint.

        The saved conversation is replayed to the model and the iteration count
        carries on from the checkpoint step. Usage is added to the totals already
        recorded on the execution.

        Raises:
            ExecutionNotFoundError: no such execution.
            InvalidTransitionError: the execution is not paused, or its paused loop
                has not stopped yet.
            CheckpointMissingError: nothing to resume from.
            BudgetExceededError: today's budget cannot admit the protocol.
        """
        options = options or ExecutionOptions()
        execution = await self._get_or_raise(execution_id)
        status = next_status(execution.status, ExecutionEvent.RESUME)
        if self.is_live(execution_id):
            raise InvalidTransitionError(
                f"{execution.status.value} (loop still running)", ExecutionEvent.RESUME.value
            )

        checkpoint = execution.checkpoint_data
        if not checkpoint or not checkpoint.get("messages"):
            raise CheckpointMissingError(execution_id)

        token = self._reserve(execution_id)
        try:
            return await self._resume_reserved(execution, status, checkpoint, options, token)
        finally:
            self._release(execution_id, token)

    async def _resume_reserved(
        self,
        execution: Execution,
        status: ExecutionStatus,
        checkpoint: dict[str, Any],
        options: ExecutionOptions,
        token: CancelToken,
    ) -> ExecutionResult:
        execution_id = execution.id
        ticket = await self.tickets.get(execution.ticket_id)
        if ticket is None:
            raise TicketNotFoundError(execution.ticket_id)
        config = get_protocol(execution.protocol)
        await self.budget.ensure_admitted(config)

        started = time.perf_counter()
        set_trace_id(execution_id)
        log = ExecutionLog(options.on_progress, previous=execution.execution_log)
        step = int(checkpoint.get("step", execution.checkpoint_step or 0))

        await self.executions.update(execution_id, {"status": status})
        ticket = await self.tickets.update(ticket.id, {"status": TicketStatus.IN_PROGRESS})
        log(f"Resuming execution from iteration {step}")

        working_branch = (
            ticket.branch_name
            or execution.branch_created
            or self.settings.orchestrator.default_branch
        )
        try:
            outcome = await self._run_agent(
                execution_id,
                ticket,
                config,
                working_branch,
                load_messages(checkpoint["messages"]),
                step,
                options,
                log,
                token,
            )
        except Exception as e:
            log(f"Execution error: {e}")
            outcome = _AgentOutcome(status=ExecutionStatus.FAILED, error=str(e))

        return await self._finish(execution_id, ticket, config, outcome, log, started, execution)

    async def pause(self, execution_id: str) -> Execution:
        """Mark a running execution paused and ask its loop to stop at the next boundary."""
        execution = await self._get_or_raise(execution_id)
        status = next_status(execution.status, ExecutionEvent.PAUSE)
        execution = await self.executions.update(execution_id, {"status": status})

        token = self._cancel_tokens.get(execution_id)
        if token is not None:
            token.request(PAUSED)
        logger.info("Execution paused", execution_id=execution_id, live=token is not None)
        return execution

    async def cancel(self, execution_id: str) -> Execution:
        """Force the execution to failed, whatever its current state."""
        execution = await self._get_or_raise(execution_id)
        status = next_status(execution.status, ExecutionEvent.CANCEL)
        execution = await self.executions.update(
            execution_id,
            {"status": status, "error": CANCELLED_ERROR, "completed_at": utcnow()},
        )

        token = self._cancel_tokens.get(execution_id)
        if token is not None:
            token.request(CANCELLED)
        logger.info("Execution cancelled", execution_id=execution_id, live=token is not None)
        return execution

    async def get_execution(self, execution_id: str) -> Execution:
        return await self._get_or_raise(execution_id)

    def is_live(self, execution_id: str) -> bool:
        return execution_id in self._cancel_tokens

    def _reserve(self, execution_id: str) -> CancelToken:
        token = CancelToken()
        self._cancel_tokens[execution_id] = token
        return token

    def _release(self, execution_id: str, token: CancelToken | None) -> None:
        if token is not None and self._cancel_tokens.get(execution_id) is token:
            del self._cancel_tokens[execution_id]

    async def _get_or_raise(self, execution_id: str) -> Execution:
        execution = await self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def _ensure_branch(
        self, ticket: Ticket, config: AgentProtocol, execution_id: str, log: ExecutionLog
    ) -> str:
        if ticket.branch_name:
            return ticket.branch_name
        if not config.can_create_branch:
            return self.settings.orchestrator.default_branch

        log("Creating feature branch...")
        branch_name = generate_branch_name(ticket.identifier, ticket.title)
        await self.source_control.create_branch(branch_name)
        await self.tickets.update(ticket.id, {"branch_name": branch_name})
        await self.executions.update(execution_id, {"branch_created": branch_name})
        log(f"Branch created: {branch_name}")
        return branch_name

    async def _run_agent(
        self,
        execution_id: str,
        ticket: Ticket,
        config: AgentProtocol,
        working_branch: str,
        messages: list[Message],
        start_iteration: int,
        options: ExecutionOptions,
        log: ExecutionLog,
        token: CancelToken,
    ) -> _AgentOutcome:
        tools = ToolExecutorSet(
            self.source_control,
            self.knowledge_base,
            working_branch,
            ticket.identifier,
            config=self.settings.tools,
            permitted=config.tools,
            protocol_name=config.key.value,
        )

        async def tool_executor(name: str, tool_input: dict[str, Any]) -> str:
            log(f"Executing tool: {name}")
            return await tools(name, tool_input)

        def on_response(response: ModelResponse) -> None:
            log(f"Response received ({response.usage.output_tokens} tokens)")

        async def on_checkpoint(iteration: int, conversation: list[Message]) -> None:
            log(f"Checkpoint at iteration {iteration}")
            await self.executions.update(
                execution_id,
                {
                    "checkpoint_step": iteration,
                    "checkpoint_data": {"messages": dump_messages(conversation), "step": iteration},
                    "files_changed": extract_files_changed(conversation),
                },
            )

        request = ModelRequest(
            model=config.model,
            max_tokens=config.max_tokens,
            system=config.system_prompt,
            messages=messages,
            tools=get_tool_definitions(config.tools),
        )
        orchestrator_config = self.settings.orchestrator

        try:
            with probe("orchestrator.run_agent", protocol=config.key.value, ticket=ticket.identifier):
                result = await self.gateway.execute_with_tools(
                    request,
                    tool_executor,
                    max_iterations=options.max_iterations or orchestrator_config.max_iterations,
                    checkpoint_interval=(
                        options.checkpoint_interval or orchestrator_config.checkpoint_interval
                    ),
                    on_tool_use=options.on_tool_use,
                    on_response=on_response,
                    on_checkpoint=on_checkpoint,
                    start_iteration=start_iteration,
                    cancel_token=token,
                )

            cost = calculate_estimated_cost(
                config.key, result.total_input_tokens, result.total_output_tokens
            )
            await self.budget.record_usage(
                execution_id,
                config.model,
                result.total_input_tokens,
                result.total_output_tokens,
                cost,
            )

            ended_on_tool_results = result.messages and result.messages[-1].role == "user"
            if ended_on_tool_results and result.iterations > start_iteration:
                log(f"Iteration limit reached at {result.iterations} without a final answer")

            pr = extract_pr_info(result.messages)
            outcome = _AgentOutcome(
                status=ExecutionStatus.COMPLETED,
                input_tokens=result.total_input_tokens,
                output_tokens=result.total_output_tokens,
                cost_cents=cost,
                files_changed=extract_files_changed(result.messages),
                pr_number=pr[0] if pr else None,
                pr_url=pr[1] if pr else None,
            )
            if token.reason == CANCELLED:
                outcome.status = ExecutionStatus.FAILED
                outcome.error = CANCELLED_ERROR
            return outcome

        except ExecutionInterrupted as e:
            cost = calculate_estimated_cost(config.key, e.total_input_tokens, e.total_output_tokens)
            if e.total_input_tokens or e.total_output_tokens:
                await self.budget.record_usage(
                    execution_id, config.model, e.total_input_tokens, e.total_output_tokens, cost
                )
            outcome = _AgentOutcome(
                status=ExecutionStatus.PAUSED if e.reason == PAUSED else ExecutionStatus.FAILED,
                input_tokens=e.total_input_tokens,
                output_tokens=e.total_output_tokens,
                cost_cents=cost,
                files_changed=extract_files_changed(e.messages),
            )
            if e.reason == PAUSED:
                outcome.checkpoint = {"messages": dump_messages(e.messages), "step": e.iteration}
            else:
                outcome.error = CANCELLED_ERROR
            return outcome

        except Exception as e:
            logger.exception("Agent execution failed", execution_id=execution_id)
            return _AgentOutcome(status=ExecutionStatus.FAILED, error=str(e))


    async def _finish(
        self,
        execution_id: str,
        ticket: Ticket | None,
        config: AgentProtocol | None,
        outcome: _AgentOutcome,
        log: ExecutionLog,
        started: float,
        previous: Execution | None = None,
    ) -> ExecutionResult:
        """Persist the outcome on the execution and ticket and build the result."""
        duration_ms = _elapsed_ms(started)
        tokens_used = outcome.tokens
        cost_cents = outcome.cost_cents
        files_changed = outcome.files_changed
        if previous is not None:
            duration_ms += previous.duration_ms or 0
            tokens_used += previous.tokens_used
            cost_cents += previous.cost_cents
            files_changed = list(dict.fromkeys([*previous.files_changed, *files_changed]))

        try:
            await self._settle(execution_id, outcome, log)
            if outcome.status == ExecutionStatus.COMPLETED:
                log("Execution completed successfully")
            elif outcome.status == ExecutionStatus.PAUSED:
                log(f"Execution paused at iteration {outcome.checkpoint['step']}")
            else:
                log(f"Execution failed: {outcome.error}")

            fields: dict[str, Any] = {
                "status": outcome.status,
                "execution_log": log.render(),
                "files_changed": files_changed,
                "tokens_used": tokens_used,
                "cost_cents": cost_cents,
                "duration_ms": duration_ms,
                "error": outcome.error,
            }
            if outcome.pr_url:
                fields["pr_url"] = outcome.pr_url
                fields["pr_number"] = outcome.pr_number
            if outcome.checkpoint is not None:
                fields["checkpoint_step"] = outcome.checkpoint["step"]
                fields["checkpoint_data"] = outcome.checkpoint
            else:
                fields["completed_at"] = utcnow()
            execution = await self.executions.update(execution_id, fields)

            if ticket is not None:
                ticket_fields: dict[str, Any] = {}
                if outcome.pr_url:
                    ticket_fields.update(
                        pr_url=outcome.pr_url,
                        pr_number=outcome.pr_number,
                        status=TicketStatus.IN_REVIEW,
                    )
                elif outcome.status == ExecutionStatus.FAILED:
                    ticket_fields["status"] = TicketStatus.BLOCKED
                if ticket_fields:
                    await self.tickets.update(ticket.id, ticket_fields)
        except InvalidTransitionError as e:
            stored = await self._get_or_raise(execution_id)
            logger.warning(
                "Dropping illegal execution transition",
                execution_id=execution_id,
                stored=stored.status.value,
                outcome=outcome.status.value,
            )
            return ExecutionResult(
                success=False,
                execution_id=execution_id,
                status=stored.status,
                tokens_used=tokens_used,
                cost_cents=cost_cents,
                duration_ms=duration_ms,
                error=str(e),
                execution_log=log.render(),
            )
        except Exception as e:
            logger.exception("Failed to persist execution outcome", execution_id=execution_id)
            return ExecutionResult(
                success=False,
                execution_id=execution_id,
                status=ExecutionStatus.FAILED,
                tokens_used=tokens_used,
                cost_cents=cost_cents,
                duration_ms=duration_ms,
                error=str(e),
                execution_log=log.render(),
            )

        get_metrics_collector().record_execution(
            config.key.value if config else "-",
            outcome.status.value,
            duration_ms / 1000,
            outcome.tokens,
            outcome.cost_cents,
        )
        logger.info(
            "Execution finished",
            ms=duration_ms,
            execution_id=execution_id,
            status=outcome.status.value,
            tokens=tokens_used,
        )
        return ExecutionResult(
            success=outcome.status == ExecutionStatus.COMPLETED,
            execution_id=execution_id,
            status=outcome.status,
            branch_created=execution.branch_created,
            files_changed=files_changed,
            pr_url=execution.pr_url,
            pr_number=execution.pr_number,
            tokens_used=tokens_used,
            cost_cents=cost_cents,
            duration_ms=duration_ms,
            error=outcome.error,
            execution_log=log.render(),
        )

    async def _settle(self, execution_id: str, outcome: _AgentOutcome, log: ExecutionLog) -> None:
        """
        Move `outcome.status` onto the stored status through the transition table.

        A cancel recorded while the loop was winding down forces failed. A pause
        that arrived after the last iteration counts as resumed, so the natural
        finish still lands. Any other illegal move raises InvalidTransitionError
        and nothing is persisted.
        """
        current = (await self._get_or_raise(execution_id)).status
        if current == ExecutionStatus.FAILED:
            outcome.status = next_status(current, ExecutionEvent.CANCEL)
            outcome.error = CANCELLED_ERROR
            outcome.checkpoint = None
            return
        if outcome.status == ExecutionStatus.PAUSED and current == ExecutionStatus.PAUSED:
            return
        if current == ExecutionStatus.PAUSED:
            log("Pause arrived after the last iteration; finishing the execution")
            current = next_status(current, ExecutionEvent.RESUME)
        outcome.status = next_status(current, OUTCOME_EVENTS[outcome.status])


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
