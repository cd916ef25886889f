from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from tool_broker.errors import JsonRpcError, ProviderConnectionError

logger = logging.getLogger(__name__)


class JsonRpcPeer:
    """
    JSON-RPC 2.0 request/response correlation over a message stream.

    The owning transport supplies `send` (writes one serialized message) and
    pushes every inbound message into feed(). Requests wait on a future keyed
    by their id; fail_all() releases every waiter when the stream dies.
    """

    def __init__(self, send: Callable[[str], Awaitable[None]], *, name: str, timeout_s: float = 30.0):
        self._send = send
        self.name = name
        self.timeout_s = float(timeout_s)
        self._pending: Dict[str, asyncio.Future] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None, *, bounded: bool = True) -> Any:
        """
        Send one request and wait for its reply. Unbounded requests wait until
        the reply arrives or the stream dies; their caller owns the deadline.
        """
        req_id = uuid4().hex
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": req_id, "method": method}
        if params is not None:
            body["params"] = params

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            await self._send(json.dumps(body))
            if not bounded:
                return await fut
            return await asyncio.wait_for(fut, timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ProviderConnectionError(self.name, f"No response to {method} within {self.timeout_s:g}s") from e
        finally:
            self._pending.pop(req_id, None)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        body: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            body["params"] = params
        await self._send(json.dumps(body))

    def feed(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug(f"[{self.name}] non-JSON line ignored: {raw[:200]}")
            return
        if not isinstance(msg, dict):
            return

        req_id = msg.get("id")
        fut = self._pending.get(str(req_id)) if req_id is not None else None
        if fut is None:
            # Server-initiated notifications/requests are not part of the tool contract.
            logger.debug(f"[{self.name}] unsolicited message: {msg.get('method') or req_id}")
            return
        if fut.done():
            return
        if msg.get("error") is not None:
            fut.set_exception(JsonRpcError(msg["error"]))
        else:
            fut.set_result(msg.get("result"))

    def fail_all(self, exc: BaseException) -> None:
        for fut in list(self._pending.values()):
            if not fut.done():
                fut.set_exception(exc)
        self._pending.clear()
