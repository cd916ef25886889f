from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx

from tool_broker.errors import JsonRpcError, ProviderConnectionError
from tool_broker.schema import Capability, InvocationResult, ProviderConfig
from tool_broker.transports.base import (
    auth_headers,
    check_known,
    execute_call,
    initialize_params,
    parse_tools,
    validate_config,
)

logger = logging.getLogger(__name__)


def _parse_sse(text: str, req_id: str) -> Any:
    """
    Pick the JSON-RPC response for req_id out of a text/event-stream body.
    """
    found: Any = None
    data_lines: List[str] = []
    for line in text.splitlines() + [""]:
        if line.startswith("data:"):
            data_lines.append(line[5:].strip())
            continue
        if line.strip() or not data_lines:
            continue
        try:
            msg = json.loads("\n".join(data_lines))
        except ValueError:
            msg = None
        data_lines = []
        if isinstance(msg, dict) and str(msg.get("id")) == req_id:
            found = msg
    return found


class HttpTransport:
    """
    MCP Streamable HTTP provider.

    Implements enough of MCP Streamable HTTP to:
    - initialize session (Mcp-Session-Id is captured and echoed)
    - tools/list
    - tools/call

    Responses may be plain JSON or a text/event-stream carrying the JSON-RPC
    reply. Credentials come ready-made from the provider config.
    """

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport lets tests route requests to an in-process app.
        self._transport = transport
        self._config: Optional[ProviderConfig] = None
        self.base_url = ""
        self._client: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None
        self._connected = False
        self._known: Optional[set] = None

    @property
    def name(self) -> str:
        return self._config.name if self._config else "unknown"

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def connect(self, config: ProviderConfig) -> None:
        validate_config(config)
        if self._connected:
            raise ProviderConnectionError(config.name, "Already connected")
        self._config = config
        self.base_url = config.url.rstrip("/")

        logger.info(f"Connecting to HTTP MCP server: {config.name} at {config.url}")
        headers = {"Accept": "application/json, text/event-stream", **auth_headers(config.auth)}
        self._client = httpx.AsyncClient(timeout=config.timeout_s(), headers=headers, transport=self._transport)
        try:
            await self._initialize()
        except Exception as e:
            await self._close_client()
            if isinstance(e, ProviderConnectionError):
                raise
            raise ProviderConnectionError(config.name, str(e)) from e

        self._connected = True
        logger.info(f"Connected to HTTP server: {config.name}")

    async def disconnect(self) -> None:
        self._connected = False
        self._session_id = None
        self._known = None
        await self._close_client()
        logger.info(f"Disconnected from HTTP server: {self.name}")

    async def discover(self) -> List[Capability]:
        self._require_connected()
        result = await self._rpc("tools/list", params={})
        tools = parse_tools(result, provider=self.name)
        self._known = {t.name for t in tools}
        logger.info(f"Discovered {len(tools)} tools from HTTP server: {self.name}")
        return tools

    async def invoke(self, name: str, args: Dict[str, Any]) -> InvocationResult:
        self._require_connected()
        check_known(self.name, name, self._known)
        return await execute_call(
            self._rpc("tools/call", params={"name": name, "arguments": args}, bounded=False),
            provider=self.name,
            tool=name,
        )

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise ProviderConnectionError(self.name, "Not connected to server")

    async def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Error closing HTTP client for {self.name}: {e}")

    async def _post(self, body: Dict[str, Any], *, bounded: bool = True) -> httpx.Response:
        if self._client is None:
            raise ProviderConnectionError(self.name, "Not connected to server")
        headers = {"Content-Type": "application/json"}
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        try:
            # Unbounded posts (tools/call) run until the broker gives up on them.
            timeout = httpx.USE_CLIENT_DEFAULT if bounded else None
            resp = await self._client.post(self.base_url, headers=headers, json=body, timeout=timeout)
        except httpx.HTTPError as e:
            raise ProviderConnectionError(self.name, f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            raise ProviderConnectionError(self.name, f"HTTP {resp.status_code}: {resp.text[:300]}")
        return resp

    def _decode(self, resp: httpx.Response, req_id: str) -> Dict[str, Any]:
        ctype = resp.headers.get("content-type", "")
        if ctype.startswith("text/event-stream"):
            data = _parse_sse(resp.text, req_id)
        else:
            try:
                data = resp.json()
            except ValueError:
                data = None
        if not isinstance(data, dict):
            raise ProviderConnectionError(self.name, "Invalid JSON-RPC response")
        return data

    async def _rpc(self, method: str, params: Optional[Dict[str, Any]] = None, *, bounded: bool = True) -> Any:
        req_id = uuid4().hex
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
        if params is not None:
            body["params"] = params

        data = self._decode(await self._post(body, bounded=bounded), req_id)
        if data.get("error"):
            raise JsonRpcError(data["error"])
        return data.get("result")

    async def _initialize(self) -> None:
        """
        Initialize and store session id, if returned via headers.
        """
        req_id = uuid4().hex
        resp = await self._post(
            {"jsonrpc": "2.0", "id": req_id, "method": "initialize", "params": initialize_params()}
        )
        sid = resp.headers.get("Mcp-Session-Id") or resp.headers.get("mcp-session-id")
        if sid:
            self._session_id = sid
        data = self._decode(resp, req_id)
        if data.get("error"):
            raise ProviderConnectionError(self.name, f"initialize rejected: {data['error']}")
        # Some servers return session id in result; keep it if present.
        result = data.get("result")
        if isinstance(result, dict) and result.get("sessionId") and not self._session_id:
            self._session_id = str(result["sessionId"])

        await self._post({"jsonrpc": "2.0", "method": "notifications/initialized"})
