"""
Forge - agent execution orchestrator for ticket-driven development.

Runs a ticket through an agent protocol: the hosted model works the ticket with
repository tools (read/write files, branches, pull requests, registry and decision
lookups) under a daily token budget, with checkpoints, pause/resume and cancel.

Quick Start:
    >>> from forgeagent.config import setup_container
    >>>
    >>> container = setup_container()
    >>> orchestrator = container.get("orchestrator")
    >>> result = await orchestrator.execute("ticket-id", "sonnet_implementation")
    >>> print(result.success, result.pr_url)

API Server:
    $ forgeagent --port 8000
    # or
    $ uvicorn forgeagent.api.server:app --host 0.0.0.0 --port 8000
"""

__version__ = "0.1.0"

from .agents.protocols import ProtocolName, get_protocol, suggest_protocol  # noqa: E402
from .core.orchestrator import AgentOrchestrator, ExecutionOptions, ExecutionResult  # noqa: E402

__all__ = [
    "__version__",
    "AgentOrchestrator",
    "ExecutionOptions",
    "ExecutionResult",
    "ProtocolName",
    "get_protocol",
    "suggest_protocol",
]
