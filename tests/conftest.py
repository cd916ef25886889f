"""
Shared fixtures: a scriptable in-memory transport and a broker wired to it.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from tool_broker.broker import Broker
from tool_broker.schema import BrokerConfig, Capability, InvocationResult, ProviderConfig


def tool(name: str, *, description: str = "", **properties: Any) -> Dict[str, Any]:
    """tools/list entry with string properties, all required."""
    return {
        "name": name,
        "description": description or name,
        "inputSchema": {
            "type": "object",
            "properties": {k: {"type": "string", "description": v} for k, v in properties.items()},
            "required": list(properties),
        },
    }


class FakeBackend:
    """
    Behaviour shared by every FakeTransport the broker creates.

    tools: provider name -> tools/list entries
    delays: tool name -> seconds before invoke returns
    results: tool name -> InvocationResult to return or exception to raise
    """

    def __init__(self):
        self.tools: Dict[str, List[Dict[str, Any]]] = {}
        self.delays: Dict[str, float] = {}
        self.results: Dict[str, Any] = {}
        self.fail_connect: Set[str] = set()
        self.fail_discover: Set[str] = set()
        self.fail_disconnect: Set[str] = set()
        self.instances: List["FakeTransport"] = []

    def factory(self) -> "FakeTransport":
        transport = FakeTransport(self)
        self.instances.append(transport)
        return transport

    @property
    def connect_attempts(self) -> int:
        return sum(t.connect_calls for t in self.instances)


class FakeTransport:
    def __init__(self, backend: FakeBackend):
        self.backend = backend
        self.config: Optional[ProviderConfig] = None
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.calls: List[tuple] = []

    async def connect(self, config: ProviderConfig) -> None:
        self.connect_calls += 1
        self.config = config
        if config.name in self.backend.fail_connect:
            raise ConnectionRefusedError("connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.config is not None and self.config.name in self.backend.fail_disconnect:
            raise RuntimeError("socket already torn down")
        self.connected = False

    async def discover(self) -> List[Capability]:
        name = self.config.name
        if name in self.backend.fail_discover:
            raise RuntimeError("tools/list exploded")
        return [Capability.from_wire(t, provider=name) for t in self.backend.tools.get(name, [])]

    async def invoke(self, name: str, args: Dict[str, Any]) -> InvocationResult:
        self.calls.append((name, dict(args)))
        delay = self.backend.delays.get(name, 0.0)
        if delay:
            await asyncio.sleep(delay)
        outcome = self.backend.results.get(name)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is not None:
            return outcome
        return InvocationResult(
            success=True,
            data={"provider": self.config.name, "tool": name, "args": args},
            execution_time_ms=int(delay * 1000),
        )

    def is_connected(self) -> bool:
        return self.connected


@pytest.fixture
def backend():
    """Fake transports for two providers: search (stdio-like) and github."""
    b = FakeBackend()
    b.tools["search"] = [tool("web_search", query="Search query"), tool("deep_research", question="Topic")]
    b.tools["github"] = [tool("create_issue", title="Issue title"), tool("get_issues")]
    return b


@pytest.fixture
def broker_config():
    return BrokerConfig(default_timeout_ms=1000, expensive_timeout_ms=3000, expensive_patterns=["research"])


@pytest.fixture
def broker(backend, broker_config):
    """Broker whose "fake" transport kind is served by the backend fixture."""
    return Broker(broker_config, transports={"fake": backend.factory})


def fake_provider(name: str, **extra: Any) -> Dict[str, Any]:
    return {"name": name, "url": f"fake://{name}", "type": "fake", **extra}
