"""
Agent building blocks: protocol registry, model gateway and tool executors.
"""

from .gateway import CancelToken, ModelGateway, ToolLoopResult
from .messages import ContentBlock, Message, ModelRequest, ModelResponse, ToolCall
from .protocols import (
    PROTOCOLS,
    AgentProtocol,
    ProtocolName,
    calculate_estimated_cost,
    get_protocol,
    suggest_protocol,
)
from .tools import TOOL_DEFINITIONS, ToolExecutorSet, get_tool_definitions

__all__ = [
    "ModelGateway",
    "ToolLoopResult",
    "CancelToken",
    "ContentBlock",
    "Message",
    "ModelRequest",
    "ModelResponse",
    "ToolCall",
    "AgentProtocol",
    "ProtocolName",
    "PROTOCOLS",
    "get_protocol",
    "suggest_protocol",
    "calculate_estimated_cost",
    "TOOL_DEFINITIONS",
    "ToolExecutorSet",
    "get_tool_definitions",
]
