"""
Gateway to the hosted language-model service and the tool-use loop.

`send_message` is a single round-trip with no retry. `execute_with_tools` keeps a
conversation going until the model stops asking for tools or the iteration cap is
reached, feeding every tool result (including failures) back to the model.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from ..config.settings import ModelServiceConfig
from ..core.errors import ExecutionInterrupted, ModelServiceError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from ..observability.probe import probe
from ..observability.tracing import trace_span
from .messages import ContentBlock, Message, ModelRequest, ModelResponse, ToolCall
from .tools import ToolExecutor

logger = get_logger(__name__)

CheckpointCallback = Callable[[int, list[Message]], Awaitable[None]]


@dataclass
class ToolLoopResult:
    messages: list[Message]
    total_input_tokens: int
    total_output_tokens: int
    iterations: int

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


class CancelToken:
    """Cooperative stop signal checked by the tool-use loop between iterations."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def request(self, reason: str) -> None:
        """Ask the loop to stop; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()


class ModelGateway:
    """Client for the Messages API plus the tool-use loop."""

    def __init__(self, config: ModelServiceConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        self._owned_client = http_client is None
        if not config.api_key:
            logger.warning("Model API key not set; agent executions will fail")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owned_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout))
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key or "",
            "anthropic-version": self.config.api_version,
        }

    @trace_span("gateway.send_message")
    async def send_message(self, request: ModelRequest) -> ModelResponse:
        """Send one request; non-2xx responses raise ModelServiceError."""
        metrics = get_metrics_collector()

        with probe("gateway.send_message", model=request.model, messages=len(request.messages)):
            try:
                response = await self.client.post(
                    f"{self.config.base_url}/messages",
                    json=request.to_payload(),
                    headers=self._headers(),
                )
            except httpx.HTTPError as e:
                metrics.record_model_call(request.model, success=False)
                raise ModelServiceError(str(e) or type(e).__name__) from e

            if response.is_error:
                metrics.record_model_call(request.model, success=False)
                raise ModelServiceError(_error_message(response), response.status_code)

            try:
                result = ModelResponse.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                metrics.record_model_call(request.model, success=False)
                raise ModelServiceError(f"Malformed response: {e}", response.status_code) from e

        metrics.record_model_call(
            request.model,
            success=True,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )
        return result

    async def execute_with_tools(
        self,
        request: ModelRequest,
        tool_executor: ToolExecutor,
        *,
        max_iterations: int = 50,
        checkpoint_interval: int = 5,
        on_tool_use: Callable[[str, dict[str, Any]], None] | None = None,
        on_response: Callable[[ModelResponse], None] | None = None,
        on_checkpoint: CheckpointCallback | None = None,
        start_iteration: int = 0,
        cancel_token: CancelToken | None = None,
    ) -> ToolLoopResult:
        """
        Run the tool-use loop.

        The loop ends when a response's stop reason is anything but "tool_use", or
        when `max_iterations` round-trips have been made in total (counting from
        `start_iteration`). Hitting the cap is not an error.

        Tool calls run sequentially; an executor exception becomes a tool_result
        with `is_error` set and the loop carries on. Every `checkpoint_interval`-th
        iteration `on_checkpoint` is awaited with the conversation so far, and its
        exceptions propagate.

        Raises:
            ModelServiceError: a round-trip failed.
            ExecutionInterrupted: `cancel_token` was set before a round-trip.
        """
        messages = list(request.messages)
        total_input_tokens = 0
        total_output_tokens = 0
        iteration = start_iteration

        while iteration < max_iterations:
            if cancel_token is not None and cancel_token.is_set:
                raise ExecutionInterrupted(
                    cancel_token.reason or "cancelled",
                    messages,
                    iteration,
                    total_input_tokens,
                    total_output_tokens,
                )

            iteration += 1

            response = await self.send_message(request.model_copy(update={"messages": list(messages)}))
            total_input_tokens += response.usage.input_tokens
            total_output_tokens += response.usage.output_tokens

            if on_response:
                on_response(response)

            messages.append(Message(role="assistant", content=response.content))

            if response.stop_reason != "tool_use":
                break

            tool_results: list[ContentBlock] = []
            for call in self.get_tool_calls(response):
                if on_tool_use:
                    on_tool_use(call.name, call.input)
                try:
                    result = await tool_executor(call.name, call.input)
                    tool_results.append(ContentBlock.tool_result(call.id, result))
                except Exception as e:
                    logger.warning("Tool call failed", tool=call.name, error=str(e))
                    tool_results.append(
                        ContentBlock.tool_result(call.id, str(e) or type(e).__name__, is_error=True)
                    )

            if tool_results:
                messages.append(Message(role="user", content=tool_results))

            if on_checkpoint and iteration % checkpoint_interval == 0:
                await on_checkpoint(iteration, list(messages))

        logger.info(
            "Tool loop finished",
            iterations=iteration,
            input_tokens=total_input_tokens,
            output_tokens=total_output_tokens,
        )
        return ToolLoopResult(
            messages=messages,
            total_input_tokens=total_input_tokens,
            total_output_tokens=total_output_tokens,
            iterations=iteration,
        )

    @staticmethod
    def extract_text(response: ModelResponse) -> str:
        return "\n".join(b.text for b in response.content if b.type == "text" and b.text is not None)

    @staticmethod
    def has_tool_use(response: ModelResponse) -> bool:
        return any(b.type == "tool_use" for b in response.content)

    @staticmethod
    def get_tool_calls(response: ModelResponse) -> list[ToolCall]:
        return [
            ToolCall(id=b.id, name=b.name, input=b.input or {})
            for b in response.content
            if b.type == "tool_use" and b.id and b.name
        ]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.reason_phrase or f"HTTP {response.status_code}"
