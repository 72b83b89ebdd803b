"""
FastAPI admin server for Forge agent executions.

Endpoints:
- GET  /health: component status and uptime
- GET  /forge/agents/protocols: protocol registry
- GET  /forge/agents/protocols/{protocol_id}: one protocol
- POST /forge/agents/suggest: protocol suggestion for a ticket
- POST /forge/agents/execute: run a protocol against a ticket
- GET  /forge/agents/executions/{execution_id}: execution record
- POST /forge/agents/executions/{execution_id}/pause|resume|cancel: lifecycle
- GET  /forge/agents/conflicts/{ticket_id}: file conflicts with other tickets
- GET  /forge/budget/today: today's token and cost budget

Usage:
    $ uvicorn forgeagent.api.server:app --host 0.0.0.0 --port 8000

    $ curl -X POST http://localhost:8000/forge/agents/execute \
      -H 'Content-Type: application/json' \
      -d '{"ticket_id": "t-1", "protocol": "sonnet_implementation"}'
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..agents.protocols import get_protocol, list_protocols, suggest_protocol
from ..config.container import Container, setup_container
from ..core.conflicts import ConflictDetector
from ..core.errors import (
    BudgetExceededError,
    CheckpointMissingError,
    ExecutionNotFoundError,
    ForgeError,
    InvalidTransitionError,
    TicketNotFoundError,
    UnknownProtocolError,
)
from ..core.orchestrator import AgentOrchestrator, ExecutionOptions
from ..observability.logging import get_logger
from ..observability.tracing import get_tracing_manager, setup_tracing
from ..storage.models import Execution

logger = get_logger(__name__)

NOT_FOUND = (ExecutionNotFoundError, TicketNotFoundError, UnknownProtocolError)
CONFLICT = (InvalidTransitionError, CheckpointMissingError, BudgetExceededError)


class SuggestRequest(BaseModel):
    ticket_id: str | None = Field(None, description="Suggest for a stored ticket")
    type: str = Field("feature", description="Ticket type when no ticket_id is given")
    estimate: int | None = Field(None, ge=0)
    labels: list[str] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    protocol: str | None = Field(None, description="Protocol id; suggested from the ticket if omitted")
    additional_context: str | None = Field(None, max_length=20_000)
    max_iterations: int | None = Field(None, gt=0)
    checkpoint_interval: int | None = Field(None, gt=0)


class ResumeRequest(BaseModel):
    max_iterations: int | None = Field(None, gt=0)
    checkpoint_interval: int | None = Field(None, gt=0)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    components: dict[str, str]


def serialize_execution(execution: Execution) -> dict[str, Any]:
    data = asdict(execution)
    data["status"] = execution.status.value
    data["started_at"] = execution.started_at.isoformat()
    data["completed_at"] = execution.completed_at.isoformat() if execution.completed_at else None
    data.pop("checkpoint_data")
    data["has_checkpoint"] = execution.checkpoint_data is not None
    return data


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    container: Container = app.state.container
    observability = container.settings.observability

    logger.info("Starting Forge API server", environment=container.settings.environment)
    if observability.enable_tracing and not get_tracing_manager().initialized:
        try:
            setup_tracing(
                observability.service_name,
                observability.service_version,
                observability.otlp_endpoint,
            )
        except Exception as e:
            logger.error("Failed to initialize tracing", error=str(e))

    app.state.startup_time = time.time()
    logger.info("Forge API server ready")

    yield

    logger.info("Shutting down Forge API server")
    await container.cleanup()


def create_app(container: Container | None = None) -> FastAPI:
    container = container or setup_container()
    settings = container.settings

    app = FastAPI(
        title="Forge",
        description="Agent execution orchestrator for ticket-driven development",
        version=__version__,
        docs_url="/docs" if settings.api.enable_docs else None,
        redoc_url="/redoc" if settings.api.enable_docs else None,
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.startup_time = time.time()

    def orchestrator() -> AgentOrchestrator:
        return container.get("orchestrator")

    def conflicts() -> ConflictDetector:
        return container.get("conflict_detector")

    @app.exception_handler(ForgeError)
    async def forge_error_handler(request: Request, exc: ForgeError) -> JSONResponse:
        if isinstance(exc, NOT_FOUND):
            status_code = 404
        elif isinstance(exc, CONFLICT):
            status_code = 409
        else:
            status_code = 400
        logger.warning("Request failed", path=request.url.path, error=str(exc), status=status_code)
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        components = {
            "config": "healthy",
            "orchestrator": "healthy" if orchestrator() else "not_initialized",
            "model_api_key": "configured" if settings.model.api_key else "missing",
            "github_token": "configured" if settings.github.token else "missing",
            "tracing": "initialized" if get_tracing_manager().initialized else "not_initialized",
        }
        return HealthResponse(
            status="healthy" if components["orchestrator"] == "healthy" else "unhealthy",
            version=__version__,
            uptime_seconds=max(0.0, time.time() - app.state.startup_time),
            components=components,
        )

    @app.get("/forge/agents/protocols")
    async def get_protocols() -> dict[str, Any]:
        return {"protocols": [p.to_dict() for p in list_protocols()]}

    @app.get("/forge/agents/protocols/{protocol_id}")
    async def get_protocol_details(protocol_id: str) -> dict[str, Any]:
        return get_protocol(protocol_id).to_dict()

    @app.post("/forge/agents/suggest")
    async def suggest(request: SuggestRequest) -> dict[str, Any]:
        ticket: Any = request
        if request.ticket_id:
            ticket = await container.get("ticket_store").get(request.ticket_id)
            if ticket is None:
                raise TicketNotFoundError(request.ticket_id)
        protocol = get_protocol(suggest_protocol(ticket))
        return {"protocol": protocol.key.value, "details": protocol.to_dict()}

    @app.post("/forge/agents/execute")
    async def execute(request: ExecuteRequest) -> dict[str, Any]:
        protocol = request.protocol
        if protocol is None:
            ticket = await container.get("ticket_store").get(request.ticket_id)
            if ticket is None:
                raise TicketNotFoundError(request.ticket_id)
            protocol = suggest_protocol(ticket).value
        else:
            get_protocol(protocol)

        result = await orchestrator().execute(
            request.ticket_id,
            protocol,
            ExecutionOptions(
                max_iterations=request.max_iterations,
                checkpoint_interval=request.checkpoint_interval,
                additional_context=request.additional_context,
            ),
        )
        return {"protocol": protocol, **result.to_dict()}

    @app.get("/forge/agents/executions/{execution_id}")
    async def get_execution(execution_id: str) -> dict[str, Any]:
        execution = await orchestrator().get_execution(execution_id)
        return serialize_execution(execution)

    @app.post("/forge/agents/executions/{execution_id}/pause")
    async def pause(execution_id: str) -> dict[str, Any]:
        return serialize_execution(await orchestrator().pause(execution_id))

    @app.post("/forge/agents/executions/{execution_id}/resume")
    async def resume(execution_id: str, request: ResumeRequest | None = None) -> dict[str, Any]:
        request = request or ResumeRequest()
        result = await orchestrator().resume(
            execution_id,
            ExecutionOptions(
                max_iterations=request.max_iterations,
                checkpoint_interval=request.checkpoint_interval,
            ),
        )
        return result.to_dict()

    @app.post("/forge/agents/executions/{execution_id}/cancel")
    async def cancel(execution_id: str) -> dict[str, Any]:
        return serialize_execution(await orchestrator().cancel(execution_id))

    @app.get("/forge/agents/conflicts/{ticket_id}")
    async def get_conflicts(
        ticket_id: str, files: list[str] | None = Query(None)
    ) -> dict[str, Any]:
        report = await conflicts().check_for_conflicts(ticket_id, files)
        return asdict(report)

    @app.get("/forge/budget/today")
    async def budget_today() -> dict[str, Any]:
        return await container.get("budget_ledger").today_status()

    return app


app = create_app()
