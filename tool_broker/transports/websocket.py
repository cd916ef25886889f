from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from tool_broker.errors import ProviderConnectionError
from tool_broker.schema import Capability, InvocationResult, ProviderConfig
from tool_broker.transports.base import (
    auth_headers,
    check_known,
    execute_call,
    initialize_params,
    parse_tools,
    validate_config,
)
from tool_broker.transports.jsonrpc import JsonRpcPeer

logger = logging.getLogger(__name__)

MAX_MESSAGE_BYTES = 4 * 1024 * 1024


class WebSocketTransport:
    """
    Provider reached over one persistent websocket. Requests are multiplexed
    by JSON-RPC id; a background reader resolves them as replies arrive.
    """

    def __init__(self):
        self._config: Optional[ProviderConfig] = None
        self._ws: Optional[ClientConnection] = None
        self._peer: Optional[JsonRpcPeer] = None
        self._reader: Optional[asyncio.Task] = None
        self._connected = False
        self._known: Optional[set] = None

    @property
    def name(self) -> str:
        return self._config.name if self._config else "unknown"

    def is_connected(self) -> bool:
        return self._connected and self._ws is not None

    async def connect(self, config: ProviderConfig) -> None:
        validate_config(config)
        if self._connected:
            raise ProviderConnectionError(config.name, "Already connected")
        self._config = config

        logger.info(f"Connecting to WebSocket MCP server: {config.name} at {config.url}")
        try:
            self._ws = await connect(
                config.url,
                additional_headers=auth_headers(config.auth) or None,
                open_timeout=config.timeout_s(),
                max_size=MAX_MESSAGE_BYTES,
            )
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as e:
            raise ProviderConnectionError(config.name, f"{type(e).__name__}: {e}") from e

        self._peer = JsonRpcPeer(self._send, name=config.name, timeout_s=config.timeout_s())
        self._reader = asyncio.create_task(self._read_loop())
        try:
            await self._peer.request("initialize", initialize_params())
            await self._peer.notify("notifications/initialized")
        except Exception as e:
            await self._teardown()
            if isinstance(e, ProviderConnectionError):
                raise
            raise ProviderConnectionError(config.name, str(e)) from e

        self._connected = True
        logger.info(f"Connected to WebSocket server: {config.name}")

    async def disconnect(self) -> None:
        self._connected = False
        self._known = None
        await self._teardown()
        logger.info(f"Disconnected from WebSocket server: {self.name}")

    async def discover(self) -> List[Capability]:
        peer = self._require_peer()
        result = await peer.request("tools/list", {})
        tools = parse_tools(result, provider=self.name)
        self._known = {t.name for t in tools}
        logger.info(f"Discovered {len(tools)} tools from WebSocket server: {self.name}")
        return tools

    async def invoke(self, name: str, args: Dict[str, Any]) -> InvocationResult:
        peer = self._require_peer()
        check_known(self.name, name, self._known)
        return await execute_call(
            peer.request("tools/call", {"name": name, "arguments": args}, bounded=False),
            provider=self.name,
            tool=name,
        )

    def _require_peer(self) -> JsonRpcPeer:
        if not self.is_connected() or self._peer is None:
            raise ProviderConnectionError(self.name, "Not connected to server")
        return self._peer

    async def _send(self, data: str) -> None:
        if self._ws is None:
            raise ProviderConnectionError(self.name, "Socket is closed")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise ProviderConnectionError(self.name, f"Socket closed: {e}") from e

    async def _read_loop(self) -> None:
        ws = self._ws
        peer = self._peer
        if ws is None or peer is None:
            return
        reason = "Socket closed"
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                peer.feed(message)
        except ConnectionClosed as e:
            reason = f"Socket closed: {e}"
        finally:
            self._connected = False
            peer.fail_all(ProviderConnectionError(self.name, reason))

    async def _teardown(self) -> None:
        ws, self._ws = self._ws, None
        if self._peer is not None:
            self._peer.fail_all(ProviderConnectionError(self.name, "Disconnected"))
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket for {self.name}: {e}")
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
