"""Tool export shared by the capture feature classes."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Iterator, List, Optional

from langchain_core.tools import StructuredTool

from .errors import CaptureError


def mcp_tool(
    _func: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    examples: Optional[List[str]] = None,
) -> Any:
    """Mark a feature coroutine as an LLM tool."""

    def _mark(func: Callable[..., Any]) -> Callable[..., Any]:
        func._is_mcp_tool = True  # type: ignore[attr-defined]
        func._mcp_name = name or func.__name__  # type: ignore[attr-defined]
        func._mcp_examples = list(examples or [])  # type: ignore[attr-defined]
        return func

    return _mark if _func is None else _mark(_func)


def error_response(e: CaptureError) -> Dict[str, Any]:
    return {"ok": False, "error": str(e)}


class ToolFeature:
    """Base for feature classes whose marked coroutines become tools."""

    def __init__(self) -> None:
        self._tools: List[StructuredTool] = []

    def _marked_methods(self) -> Iterator[Callable[..., Any]]:
        for attr in dir(type(self)):
            if getattr(getattr(type(self), attr, None), "_is_mcp_tool", False):
                yield getattr(self, attr)

    def get_tools(self) -> List[StructuredTool]:
        """Export the marked coroutines as StructuredTools, built once."""
        if not self._tools:
            self._tools = [self._to_tool(method) for method in self._marked_methods()]
        return self._tools

    @staticmethod
    def _to_tool(method: Callable[..., Any]) -> StructuredTool:
        description = inspect.getdoc(method) or f"MCP tool: {method._mcp_name}"
        if method._mcp_examples:
            description += "\n\nExamples:\n" + "\n".join(f"- {x}" for x in method._mcp_examples)
        return StructuredTool.from_function(
            name=method._mcp_name,
            description=description,
            coroutine=method,
        )
