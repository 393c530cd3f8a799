"""Tool service over LangChain ``BaseTool`` instances."""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_function

logger = logging.getLogger(__name__)


class LangChainToolService:
    """``ToolService`` backed by a set of LangChain tools, keyed by tool name."""

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self.tools: dict[str, BaseTool] = {tool.name: tool for tool in tools or []}

    def register(self, tool: BaseTool) -> None:
        self.tools[tool.name] = tool

    def _select(self, names: list[str] | None) -> list[BaseTool]:
        if names is None:
            return list(self.tools.values())
        return [self.tools[name] for name in names if name in self.tools]

    async def call(self, name: str, args: Any) -> Any:
        if name not in self.tools:
            raise KeyError(f"unknown tool: {name}")
        logger.debug("calling tool %s with %r", name, args)
        return await self.tools[name].ainvoke(args)

    def get_tools_list(self, names: list[str] | None = None) -> str:
        return "\n".join(f"{tool.name}: {tool.description}" for tool in self._select(names))

    def get_tool_names(self, names: list[str] | None = None) -> str:
        return ", ".join(tool.name for tool in self._select(names))

    def get_all_metadata(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        return [convert_to_openai_function(tool) for tool in self._select(names)]
