"""
Tool-execution broker.

Registers providers through the transport matching their kind, keeps each
provider's discovered capability catalog, dispatches invocations with a
two-tier timeout policy and records every invocation for diagnostics.

A Broker is constructed explicitly and handed to whoever needs it (tool
factory, CLI, request handlers); it lives for the lifetime of the process
that created it.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from tool_broker.errors import (
    CapabilityNotFoundError,
    ProviderConnectionError,
    ProviderNotFoundError,
    UnsupportedTransportError,
    InvocationTimeoutError,
)
from tool_broker.executions import ExecutionTracker
from tool_broker.registry import ProviderRegistry
from tool_broker.schema import (
    BrokerConfig,
    Capability,
    ExecutionRecord,
    InvocationRequest,
    InvocationResult,
    Provider,
    ProviderConfig,
    ProviderStatus,
    ToolExecutionContext,
)
from tool_broker.transports import Transport, TransportFactory, default_transports

logger = logging.getLogger(__name__)


class Broker:
    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        transports: Optional[Mapping[str, TransportFactory]] = None,
    ):
        self.config = config or BrokerConfig()
        self._transports: Dict[str, TransportFactory] = default_transports()
        if transports:
            self._transports.update(transports)

        self.registry = ProviderRegistry()
        self.executions = ExecutionTracker()
        self._adapters: Dict[str, Transport] = {}
        # provider name -> capabilities from its latest discovery
        self._catalog: Dict[str, List[Capability]] = {}
        # provider name -> discovery sequence number, for name-only lookups
        self._discovered_at: Dict[str, int] = {}
        self._discovery_seq = 0
        self._expensive = [re.compile(p) for p in self.config.expensive_patterns]

    async def __aenter__(self) -> Broker:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect_all()

    # Providers

    async def register_provider(self, config: Union[ProviderConfig, Dict[str, Any]]) -> Provider:
        """
        Register and connect to a provider, then discover its tools.

        Discovery failure is logged and kept on provider.error; the provider
        stays connected with an empty catalog.
        """
        if not isinstance(config, ProviderConfig):
            config = ProviderConfig.model_validate(config)
        name = config.name

        previous = self._adapters.pop(name, None)
        self._forget_catalog(name)
        if previous is not None:
            await self._safe_disconnect(name, previous)

        provider = self.registry.register(config)

        factory = self._transports.get(config.type)
        if factory is None:
            err = UnsupportedTransportError(name, config.type)
            self.registry.mark_error(name, err.reason)
            logger.error(f"Cannot register {name}: {err.reason}")
            raise err

        adapter = factory()
        try:
            await adapter.connect(config)
        except Exception as e:
            message = e.reason if isinstance(e, ProviderConnectionError) else str(e)
            self.registry.mark_error(name, message)
            logger.error(f"Failed to connect to MCP server {name}: {message}")
            if isinstance(e, ProviderConnectionError):
                raise
            raise ProviderConnectionError(name, message) from e

        self.registry.mark_connected(name)
        self._adapters[name] = adapter

        try:
            await self.discover_capabilities(name)
        except Exception as e:
            logger.warning(f"Connected to {name} but tool discovery failed: {e}")
            self.registry.note_error(name, f"Discovery failed: {e}")
            self._catalog[name] = []

        logger.info(f"Connected to MCP server: {name}")
        return provider

    async def discover_capabilities(self, provider_name: str) -> List[Capability]:
        """Re-run discovery and replace the provider's catalog wholesale."""
        adapter = self._connected_adapter(provider_name)
        try:
            tools = await adapter.discover()
        except Exception as e:
            logger.error(f"Failed to discover tools from {provider_name}: {e}")
            raise

        if self._adapters.get(provider_name) is not adapter:
            raise ProviderConnectionError(provider_name, "Disconnected during discovery")

        stamped = [t.model_copy(update={"provider": provider_name}) for t in tools]
        self._catalog[provider_name] = stamped
        self._discovery_seq += 1
        self._discovered_at[provider_name] = self._discovery_seq
        logger.info(f"Discovered {len(stamped)} tools from {provider_name}")
        return list(stamped)

    async def disconnect_provider(self, name: str) -> None:
        if self.registry.get(name) is None:
            return
        adapter = self._adapters.pop(name, None)
        if adapter is not None:
            await self._safe_disconnect(name, adapter)
        self.registry.mark_disconnected(name)
        self._forget_catalog(name)
        logger.info(f"Disconnected from server: {name}")

    async def disconnect_all(self) -> None:
        names = [p.name for p in self.registry.all()]
        results = await asyncio.gather(*(self.disconnect_provider(n) for n in names), return_exceptions=True)
        for name, res in zip(names, results):
            if isinstance(res, BaseException):
                logger.error(f"Error disconnecting from {name}: {res}")

    async def remove_provider(self, name: str) -> Optional[Provider]:
        await self.disconnect_provider(name)
        return self.registry.remove(name)

    def get_provider(self, name: str) -> Optional[Provider]:
        self._sweep()
        return self.registry.get(name)

    def get_all_providers(self) -> List[Provider]:
        self._sweep()
        return self.registry.all()

    # Capabilities

    def get_provider_tools(self, provider_name: str) -> List[Capability]:
        self._sweep()
        return list(self._catalog.get(provider_name, []))

    def get_all_tools(self) -> List[Capability]:
        """All capabilities, oldest discovery first, so later providers win name collisions downstream."""
        self._sweep()
        out: List[Capability] = []
        for name in sorted(self._catalog, key=lambda n: self._discovered_at.get(n, 0)):
            out.extend(self._catalog[name])
        return out

    def find_capability(self, name: str) -> Optional[Capability]:
        """
        Name-only lookup across every provider.

        This is a convenience shortcut; invocation itself is always
        provider-scoped. When several providers expose the same name the one
        discovered most recently is returned and the ambiguity is logged.
        """
        self._sweep()
        matches = [
            (self._discovered_at.get(provider, 0), cap)
            for provider, caps in self._catalog.items()
            for cap in caps
            if cap.name == name
        ]
        if not matches:
            return None
        matches.sort(key=lambda m: m[0], reverse=True)
        if len(matches) > 1:
            providers = [cap.provider for _, cap in matches]
            logger.warning(f"Tool {name} is exposed by {providers}; using {providers[0]} (most recently discovered)")
        return matches[0][1]

    # Invocation

    def is_expensive(self, capability: str) -> bool:
        return any(p.search(capability) for p in self._expensive)

    def effective_timeout(self, capability: str, override_ms: Optional[int] = None) -> int:
        if override_ms is not None and override_ms > 0:
            return int(override_ms)
        if self.is_expensive(capability):
            return self.config.expensive_timeout_ms
        return self.config.default_timeout_ms

    async def invoke(
        self,
        request: InvocationRequest,
        context: Optional[ToolExecutionContext] = None,
    ) -> InvocationResult:
        """
        Call one capability on one provider.

        Business failures come back as a result with success=False. Unknown
        provider/capability, connection problems and timeouts raise.
        """
        provider_name, tool = request.provider, request.capability
        execution_id = self.executions.begin(provider_name, tool, request.args, context)

        try:
            adapter = self._connected_adapter(provider_name)
            if not any(c.name == tool for c in self._catalog.get(provider_name, [])):
                raise CapabilityNotFoundError(provider_name, tool)
            timeout_ms = self.effective_timeout(tool, request.timeout_ms)
            self.executions.mark_running(execution_id, timeout_ms)
            task = asyncio.ensure_future(adapter.invoke(tool, dict(request.args or {})))
        except Exception as e:
            self.executions.fail(execution_id, str(e))
            logger.error(f"Tool {tool} failed on {provider_name}: {e}")
            raise

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
        except asyncio.CancelledError:
            self.executions.fail(execution_id, "Cancelled by caller")
            task.add_done_callback(lambda t: self._late_completion(execution_id, t))
            raise

        if not done:
            # The transport call keeps running; whatever it returns later is discarded.
            self.executions.timeout(execution_id)
            task.add_done_callback(lambda t: self._late_completion(execution_id, t))
            err = InvocationTimeoutError(provider_name, tool, timeout_ms)
            logger.error(str(err))
            raise err

        try:
            result = task.result()
        except Exception as e:
            self.executions.fail(execution_id, str(e))
            if isinstance(e, ProviderConnectionError) and self._adapters.get(provider_name) is adapter:
                self._lost(provider_name, e.reason)
            logger.error(f"Tool {tool} failed on {provider_name}: {e}")
            raise

        self.executions.complete(execution_id, result)
        if result.success:
            logger.info(f"Tool {tool} executed successfully on {provider_name} ({result.execution_time_ms}ms)")
        else:
            logger.warning(f"Tool {tool} on {provider_name} reported failure: {result.error}")
        return result

    async def invoke_tool(
        self,
        capability: str,
        args: Optional[Dict[str, Any]] = None,
        *,
        provider: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        context: Optional[ToolExecutionContext] = None,
    ) -> InvocationResult:
        """
        invoke() with keyword arguments. Without provider the name is
        resolved through find_capability().
        """
        if provider is None:
            match = self.find_capability(capability)
            if match is None:
                raise CapabilityNotFoundError("*", capability)
            provider = match.provider
        request = InvocationRequest(provider=provider, capability=capability, args=args or {}, timeout_ms=timeout_ms)
        return await self.invoke(request, context)

    # Diagnostics

    def get_execution_history(self, limit: Optional[int] = None) -> List[ExecutionRecord]:
        return self.executions.history(limit)

    def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self.executions.get(execution_id)

    def snapshot(self) -> Dict[str, Any]:
        self._sweep()
        return {
            "servers": [p.to_dict() for p in self.registry.all()],
            "tools": {name: [c.name for c in caps] for name, caps in self._catalog.items()},
            "executions": self.executions.stats(),
        }

    # Internals

    def _connected_adapter(self, provider_name: str) -> Transport:
        provider = self.registry.get(provider_name)
        if provider is None:
            raise ProviderNotFoundError(provider_name)
        if provider.status != ProviderStatus.CONNECTED:
            raise ProviderConnectionError(provider_name, "Server not connected")
        adapter = self._adapters.get(provider_name)
        if adapter is None:
            raise ProviderConnectionError(provider_name, "No adapter found for server")
        if not adapter.is_connected():
            reason = "Connection lost"
            self._lost(provider_name, reason)
            raise ProviderConnectionError(provider_name, reason)
        return adapter

    def _lost(self, name: str, reason: str) -> None:
        """
        The transport died under a connected provider. The adapter stays in
        place so disconnect/re-register can still clean it up.
        """
        provider = self.registry.get(name)
        if provider is None or provider.status != ProviderStatus.CONNECTED:
            return
        self.registry.mark_error(name, reason)
        self._forget_catalog(name)
        logger.error(f"Lost connection to server {name}: {reason}")

    def _sweep(self) -> None:
        for name, adapter in list(self._adapters.items()):
            if not adapter.is_connected():
                self._lost(name, "Connection lost")

    def _forget_catalog(self, name: str) -> None:
        self._catalog.pop(name, None)
        self._discovered_at.pop(name, None)

    async def _safe_disconnect(self, name: str, adapter: Transport) -> None:
        try:
            await adapter.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting from {name}: {e}")

    def _late_completion(self, execution_id: str, task: asyncio.Future) -> None:
        if task.cancelled():
            result = None
        elif task.exception() is not None:
            result = InvocationResult(success=False, error=str(task.exception()))
        else:
            result = task.result()
        self.executions.abandon_late_result(execution_id, result)
