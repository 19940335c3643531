"""Tool registry: the invoker behind model tool calls."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable, Union

from pydantic import BaseModel
from pydantic import ValidationError as ArgsValidationError

from ..errors import InvalidArguments, ToolError, ToolExecutionFailed, UnknownTool
from ..models import ToolCallRequest, ToolCallResult, ToolSpec

logger = logging.getLogger(__name__)

TOOL_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]{0,63}$")


class Tool(ABC):
    """A capability the model may call.

    Subclasses set ``name``, ``description`` and an ``Args`` pydantic model,
    and implement ``run``.
    """
    name: ClassVar[str]
    description: ClassVar[str]
    Args: ClassVar[type[BaseModel]]

    @abstractmethod
    async def run(self, args: BaseModel) -> str:
        ...

    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.Args.model_json_schema(),
        )


class ToolRegistry:
    """Maps tool names to handlers and invokes them with decoded arguments."""

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> Tool:
        name = getattr(tool, "name", None)
        if not isinstance(name, str) or not TOOL_NAME_RE.match(name):
            raise ValueError(f"Invalid tool name: {name!r}")
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        args_model = getattr(tool, "Args", None)
        if not (isinstance(args_model, type) and issubclass(args_model, BaseModel)):
            raise ValueError(f"Tool '{name}' must declare an Args pydantic model")
        if not getattr(tool, "description", ""):
            raise ValueError(f"Tool '{name}' needs a description")
        self._tools[name] = tool
        return tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def manifest(self) -> list[ToolSpec]:
        return [tool.spec() for tool in self._tools.values()]

    async def invoke(self, name: str, arguments: Union[dict[str, Any], str, None]) -> str:
        """Run a tool and return its text result.

        Raises UnknownTool, InvalidArguments or ToolExecutionFailed.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownTool(name)

        if arguments is None:
            arguments = {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                raise InvalidArguments(name, f"arguments are not valid JSON ({e.msg})")

        try:
            args = tool.Args.model_validate(arguments)
        except ArgsValidationError as e:
            raise InvalidArguments(name, str(e))

        try:
            return await tool.run(args)
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionFailed(name, e) from e

    async def execute(self, call: ToolCallRequest) -> ToolCallResult:
        """Invoke a requested call, folding failures into the result."""
        logger.info("Invoking tool %s (%s)", call.name, call.call_id)
        try:
            content = await self.invoke(call.name, call.arguments)
        except ToolError as e:
            logger.warning("Tool call %s failed: %s", call.call_id, e)
            return ToolCallResult(call_id=call.call_id, tool_name=call.name, error=str(e))
        return ToolCallResult(call_id=call.call_id, tool_name=call.name, content=content)
