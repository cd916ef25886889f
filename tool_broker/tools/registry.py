from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    """
    One capability as a function tool.

    name is the capability name as the model sees it; capability is the
    provider-qualified "<provider>.<capability>" the executor dispatches to.
    """

    name: str
    capability: str
    description: str
    parameters: Dict[str, Any]
    executor: ToolExecutor
    provider: str = ""

    def to_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """
    Function-call menu for one agent, keyed by function name.

    Providers may expose the same capability name. The later definition wins
    and the one it replaced is kept in `shadowed`.
    """

    def __init__(self, tools: Iterable[ToolDefinition]):
        self._tools: Dict[str, ToolDefinition] = {}
        self.shadowed: List[ToolDefinition] = []
        for t in tools:
            prev = self._tools.get(t.name)
            if prev is not None:
                logger.warning(f"Tool {t.name}: {t.capability} shadows {prev.capability}")
                self.shadowed.append(prev)
            self._tools[t.name] = t

    def to_openai_tools(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """All tools, or only the given names (in that order)."""
        if names is None:
            return [t.to_openai_tool() for t in self._tools.values()]
        return [self.get(n).to_openai_tool() for n in names]

    def names(self) -> List[str]:
        return list(self._tools)

    def for_provider(self, provider: str) -> List[ToolDefinition]:
        return [t for t in self._tools.values() if t.provider == provider]

    def get(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"Tool not found: {name}")
        return tool

    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Run a model's function call; ToolExecutionError carries business failures."""
        return await self.get(name).executor(dict(args or {}))

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
