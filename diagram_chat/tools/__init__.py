"""Tools the model may call during a turn."""

from .registry import Tool, ToolRegistry
from .workspace import (
    Workspace,
    GetSymbolDefinitionTool,
    ReadFileTool,
    ListFilesTool,
    build_workspace_registry,
)

__all__ = [
    "Tool",
    "ToolRegistry",
    "Workspace",
    "GetSymbolDefinitionTool",
    "ReadFileTool",
    "ListFilesTool",
    "build_workspace_registry",
]
