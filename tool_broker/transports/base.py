from __future__ import annotations

import base64
import json
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from tool_broker import __version__
from tool_broker.errors import CapabilityNotFoundError, JsonRpcError, ProviderConnectionError
from tool_broker.schema import AuthConfig, Capability, InvocationResult, ProviderConfig

PROTOCOL_VERSION = "2024-11-05"
METHOD_NOT_FOUND = -32601


class Transport(Protocol):
    """
    Uniform contract every transport implements independently.

    invoke() reports business failures inside the returned result; it raises
    only for protocol-level conditions (not connected, unknown capability,
    broken transport).
    """

    async def connect(self, config: ProviderConfig) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def discover(self) -> List[Capability]:
        ...

    async def invoke(self, name: str, args: Dict[str, Any]) -> InvocationResult:
        ...

    def is_connected(self) -> bool:
        ...


TransportFactory = Callable[[], Transport]


def validate_config(config: ProviderConfig) -> None:
    name = (config.name or "").strip()
    if not name:
        raise ProviderConnectionError("unknown", "Server name is required")
    if not (config.url or "").strip():
        raise ProviderConnectionError(name, "Server URL is required")
    if not (config.type or "").strip():
        raise ProviderConnectionError(name, "Server type is required")


def initialize_params() -> Dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {},
        "clientInfo": {"name": "tool_broker", "version": __version__},
    }


def auth_headers(auth: Optional[AuthConfig]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    if auth is None:
        return headers
    if auth.type == "bearer" and auth.token:
        headers["Authorization"] = f"Bearer {auth.token}"
    elif auth.type == "basic" and auth.username and auth.password:
        raw = f"{auth.username}:{auth.password}".encode("utf-8")
        headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
    elif auth.type == "apikey" and auth.api_key:
        headers["X-API-Key"] = auth.api_key
    return headers


def parse_tools(result: Any, *, provider: str) -> List[Capability]:
    tools = result.get("tools") if isinstance(result, dict) else None
    out: List[Capability] = []
    if isinstance(tools, list):
        for t in tools:
            if not isinstance(t, dict) or not t.get("name"):
                continue
            out.append(Capability.from_wire(t, provider=provider))
    return out


def _texts(content: Iterable[Any]) -> List[str]:
    return [str(c.get("text", "")) for c in content if isinstance(c, dict) and c.get("type") == "text"]


def unwrap_content(result: Any) -> Any:
    """
    Reduce an MCP tools/call result to the payload callers care about:
    structuredContent if present, else the text content (JSON-decoded when it
    is a single JSON document), else the raw result.
    """
    if not isinstance(result, dict):
        return result
    if result.get("structuredContent") is not None:
        return result["structuredContent"]
    content = result.get("content")
    if not isinstance(content, list):
        return result
    texts = _texts(content)
    if not texts or len(texts) != len(content):
        return content
    if len(texts) == 1:
        try:
            return json.loads(texts[0])
        except ValueError:
            return texts[0]
    return "\n".join(texts)


def error_text(result: Any) -> str:
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = _texts(result["content"])
        if texts:
            return "\n".join(texts)
    return "Tool execution failed"


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def check_known(provider: str, name: str, known: Optional[set]) -> None:
    if known is not None and name not in known:
        raise CapabilityNotFoundError(provider, name)


async def execute_call(call: Awaitable[Any], *, provider: str, tool: str) -> InvocationResult:
    """
    Await one tools/call exchange and fold the outcome into an InvocationResult.
    """
    started = time.monotonic()
    try:
        result = await call
    except JsonRpcError as e:
        if e.rpc_code == METHOD_NOT_FOUND:
            raise CapabilityNotFoundError(provider, tool) from e
        return InvocationResult(success=False, error=str(e), execution_time_ms=elapsed_ms(started))
    if isinstance(result, dict) and result.get("isError"):
        return InvocationResult(success=False, error=error_text(result), execution_time_ms=elapsed_ms(started))
    return InvocationResult(success=True, data=unwrap_content(result), execution_time_ms=elapsed_ms(started))
