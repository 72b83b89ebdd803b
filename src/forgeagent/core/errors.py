"""Exception taxonomy for agent executions."""


class ForgeError(Exception):
    """Base class for orchestrator errors."""


class UnknownProtocolError(ForgeError, KeyError):
    """A protocol name that is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown agent protocol: {name}")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


# Admission


class TicketNotFoundError(ForgeError):
    def __init__(self, ticket_id: str):
        super().__init__(f"Ticket not found: {ticket_id}")
        self.ticket_id = ticket_id


class BudgetExceededError(ForgeError):
    def __init__(self, used_tokens: int, estimated_tokens: int, limit_tokens: int):
        super().__init__(
            "Daily token budget exceeded. Please wait until tomorrow or increase budget."
        )
        self.used_tokens = used_tokens
        self.estimated_tokens = estimated_tokens
        self.limit_tokens = limit_tokens


# Transport


class ModelServiceError(ForgeError):
    """Non-2xx response (or unreadable body) from the hosted model service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(f"Model service error: {message}")
        self.provider_message = message
        self.status_code = status_code


class SourceControlError(ForgeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(f"GitHub API error: {status_code or '-'} {message}")
        self.status_code = status_code


# Tools


class ToolError(ForgeError):
    """Raised inside a tool executor; surfaces to the model as an error tool result."""


class ToolInputError(ToolError):
    pass


class UnknownToolError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolNotPermittedError(ToolError):
    def __init__(self, name: str, protocol: str):
        super().__init__(f"Tool '{name}' is not permitted for protocol {protocol}")
        self.name = name


# Lifecycle


class ExecutionNotFoundError(ForgeError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class InvalidTransitionError(ForgeError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid execution transition: {current} -> {target}")
        self.current = current
        self.target = target


class CheckpointMissingError(ForgeError):
    def __init__(self, execution_id: str):
        super().__init__(f"No checkpoint data available for execution {execution_id}")
        self.execution_id = execution_id


class LockConflictError(ForgeError):
    def __init__(self, file_path: str, held_by: str):
        super().__init__(f"File '{file_path}' is locked by ticket {held_by}")
        self.file_path = file_path
        self.held_by = held_by


class ExecutionInterrupted(ForgeError):
    """The tool-use loop stopped at an iteration boundary because pause or cancel was requested.

    Carries the conversation as it stood so the caller can checkpoint it.
    """

    def __init__(
        self,
        reason: str,
        messages: list,
        iteration: int,
        total_input_tokens: int = 0,
        total_output_tokens: int = 0,
    ):
        super().__init__(f"Execution {reason} at iteration {iteration}")
        self.reason = reason
        self.messages = messages
        self.iteration = iteration
        self.total_input_tokens = total_input_tokens
        self.total_output_tokens = total_output_tokens
