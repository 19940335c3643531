"""Error taxonomy for the diagram generation loop."""

from typing import Optional


class DiagramChatError(Exception):
    """Base class for all diagram_chat errors."""


class ExtractionError(DiagramChatError):
    """The model response did not yield a usable diagram block."""


class ToolError(DiagramChatError):
    """Base class for tool invocation failures."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class UnknownTool(ToolError):
    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool '{tool_name}'")


class InvalidArguments(ToolError):
    def __init__(self, tool_name: str, detail: str):
        super().__init__(tool_name, f"Invalid arguments for tool '{tool_name}': {detail}")
        self.detail = detail


class ToolExecutionFailed(ToolError):
    def __init__(self, tool_name: str, cause: BaseException):
        super().__init__(tool_name, f"Tool '{tool_name}' failed: {cause}")
        self.cause = cause


class DiagramValidationError(DiagramChatError):
    """The renderer rejected a diagram."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ValidationTimeout(DiagramChatError):
    """No validation outcome arrived for a correlation token in time."""

    def __init__(self, token: str, timeout: float):
        super().__init__(f"No validation result for token {token} after {timeout:g}s")
        self.token = token
        self.timeout = timeout


class StreamError(DiagramChatError):
    """The model provider failed while producing a response. Fatal for the turn."""


class ExhaustedRetries(DiagramChatError):
    """Validation kept failing after the retry ceiling was reached."""

    def __init__(self, attempts: int, last_error: str, last_diagram: str):
        super().__init__(f"Diagram still invalid after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        self.last_diagram = last_diagram


class ToolRoundLimitExceeded(DiagramChatError):
    """The model kept requesting tools past the configured round limit."""

    def __init__(self, limit: int):
        super().__init__(f"Model requested tools for more than {limit} consecutive rounds")
        self.limit = limit


class TurnCancelled(DiagramChatError):
    """The caller cancelled the turn."""


class OutlineError(DiagramChatError):
    """A workspace file could not be outlined."""
