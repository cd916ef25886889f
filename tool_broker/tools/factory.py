"""
Bridge from discovered capabilities to function-calling tools.

Each capability becomes a ToolDefinition whose parameters are an OpenAI
function schema and whose executor proxies back through Broker.invoke.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern, Union

from tool_broker import config
from tool_broker.broker import Broker
from tool_broker.errors import ToolExecutionError
from tool_broker.schema import Capability, InvocationRequest, JSONSchema, ToolExecutionContext
from tool_broker.tools.registry import ToolDefinition, ToolRegistry


def _convert(schema: JSONSchema, *, top: bool = False) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if schema.type is not None:
        out["type"] = schema.type
    if schema.description:
        out["description"] = schema.description

    if top or schema.is_object():
        out["type"] = schema.type or "object"
        out["properties"] = {k: _convert(v) for k, v in (schema.properties or {}).items()}
        out["required"] = list(schema.required or [])
        extra = schema.additional_properties
        if isinstance(extra, dict):
            out["additionalProperties"] = _convert(JSONSchema.model_validate(extra))
        else:
            out["additionalProperties"] = extra is not False

    if schema.items is not None:
        out["items"] = _convert(schema.items)
    if schema.enum is not None:
        out["enum"] = list(schema.enum)
    if schema.has_default():
        out["default"] = schema.default
    if schema.minimum is not None:
        out["minimum"] = schema.minimum
    if schema.maximum is not None:
        out["maximum"] = schema.maximum
    return out


class ToolFactory:
    def __init__(
        self,
        broker: Broker,
        *,
        agent_name: Optional[str] = None,
        toolsets: Optional[Mapping[str, str]] = None,
    ):
        self.broker = broker
        self.agent_name = agent_name
        self._toolsets = dict(toolsets) if toolsets is not None else config.toolsets()

    def convert_schema(self, schema: Union[JSONSchema, Dict[str, Any]]) -> Dict[str, Any]:
        if not isinstance(schema, JSONSchema):
            schema = JSONSchema.model_validate(schema)
        return _convert(schema, top=True)

    def create_tool(self, capability: Capability) -> ToolDefinition:
        broker = self.broker
        agent_name = self.agent_name
        provider, name = capability.provider, capability.name

        async def _execute(args: Dict[str, Any]) -> Any:
            context = ToolExecutionContext(agent_name=agent_name) if agent_name else None
            result = await broker.invoke(
                InvocationRequest(provider=provider, capability=name, args=dict(args or {})),
                context,
            )
            if not result.success:
                raise ToolExecutionError(provider, name, result.error)
            return result.data

        return ToolDefinition(
            name=name,
            capability=f"{provider}.{name}",
            description=capability.description,
            parameters=self.convert_schema(capability.input_schema),
            executor=_execute,
            provider=provider,
        )

    def create_tools(self, capabilities: Iterable[Capability]) -> List[ToolDefinition]:
        return [self.create_tool(c) for c in capabilities]

    def create_all_tools(self) -> List[ToolDefinition]:
        return self.create_tools(self.broker.get_all_tools())

    def create_provider_tools(self, provider_name: str) -> List[ToolDefinition]:
        return self.create_tools(self.broker.get_provider_tools(provider_name))

    def create_tools_by_pattern(self, pattern: Union[str, Pattern[str]]) -> List[ToolDefinition]:
        """String patterns are compiled case-insensitively and matched anywhere in the name."""
        if isinstance(pattern, str):
            pattern = re.compile(pattern, re.IGNORECASE)
        return self.create_tools(c for c in self.broker.get_all_tools() if pattern.search(c.name))

    def toolset_names(self) -> List[str]:
        return sorted(self._toolsets)

    def create_toolset(self, name: str) -> List[ToolDefinition]:
        if name not in self._toolsets:
            raise KeyError(f"Unknown toolset: {name}")
        return self.create_tools_by_pattern(self._toolsets[name])

    def build_registry(self, tools: Optional[Iterable[ToolDefinition]] = None) -> ToolRegistry:
        return ToolRegistry(self.create_all_tools() if tools is None else tools)
