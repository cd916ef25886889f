from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Any, Dict, List, Optional

from tool_broker.errors import ProviderConnectionError
from tool_broker.schema import Capability, InvocationResult, ProviderConfig
from tool_broker.transports.base import (
    check_known,
    execute_call,
    initialize_params,
    parse_tools,
    validate_config,
)
from tool_broker.transports.jsonrpc import JsonRpcPeer

logger = logging.getLogger(__name__)

STREAM_LIMIT = 4 * 1024 * 1024
STOP_GRACE_S = 2.0


def command_argv(url: str) -> List[str]:
    raw = str(url or "").strip()
    if raw.startswith("stdio://"):
        raw = raw[len("stdio://"):]
    return shlex.split(raw)


class StdioTransport:
    """
    Provider running as a local subprocess, speaking newline-delimited
    JSON-RPC on stdin/stdout. The process advertises a fixed capability set.
    """

    def __init__(self):
        self._config: Optional[ProviderConfig] = None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._peer: Optional[JsonRpcPeer] = None
        self._reader: Optional[asyncio.Task] = None
        self._stderr: Optional[asyncio.Task] = None
        self._connected = False
        self._known: Optional[set] = None

    @property
    def name(self) -> str:
        return self._config.name if self._config else "unknown"

    def is_connected(self) -> bool:
        return self._connected and self._proc is not None and self._proc.returncode is None

    async def connect(self, config: ProviderConfig) -> None:
        validate_config(config)
        if self._connected:
            raise ProviderConnectionError(config.name, "Already connected")
        self._config = config

        argv = command_argv(config.url)
        if not argv:
            raise ProviderConnectionError(config.name, "Empty command")

        logger.info(f"Connecting to STDIO MCP server: {config.name} ({' '.join(argv)})")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ProviderConnectionError(config.name, str(e)) from e

        self._peer = JsonRpcPeer(self._write, name=config.name, timeout_s=config.timeout_s())
        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr = asyncio.create_task(self._drain_stderr())

        try:
            await self._peer.request("initialize", initialize_params())
            await self._peer.notify("notifications/initialized")
        except Exception as e:
            await self._teardown()
            if isinstance(e, ProviderConnectionError):
                raise
            raise ProviderConnectionError(config.name, str(e)) from e

        self._connected = True
        logger.info(f"Connected to STDIO server: {config.name} (pid={self._proc.pid})")

    async def disconnect(self) -> None:
        self._connected = False
        self._known = None
        await self._teardown()
        logger.info(f"Disconnected from STDIO server: {self.name}")

    async def discover(self) -> List[Capability]:
        peer = self._require_peer()
        result = await peer.request("tools/list", {})
        tools = parse_tools(result, provider=self.name)
        self._known = {t.name for t in tools}
        logger.info(f"Discovered {len(tools)} tools from STDIO server: {self.name}")
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

    async def _write(self, data: str) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None or proc.returncode is not None:
            raise ProviderConnectionError(self.name, "Process is not running")
        try:
            proc.stdin.write(data.encode("utf-8") + b"\n")
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProviderConnectionError(self.name, f"Write failed: {e}") from e

    async def _read_stdout(self) -> None:
        proc = self._proc
        peer = self._peer
        if proc is None or proc.stdout is None or peer is None:
            return
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if text:
                    peer.feed(text)
        except (ValueError, asyncio.LimitOverrunError) as e:
            logger.warning(f"[{self.name}] stdout reader stopped: {e}")
        finally:
            self._connected = False
            peer.fail_all(ProviderConnectionError(self.name, "Server process closed its output"))

    async def _drain_stderr(self) -> None:
        proc = self._proc
        if proc is None or proc.stderr is None:
            return
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            logger.debug(f"[{self.name}] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _teardown(self) -> None:
        proc, self._proc = self._proc, None
        if self._peer is not None:
            self._peer.fail_all(ProviderConnectionError(self.name, "Disconnected"))

        if proc is not None and proc.returncode is None:
            try:
                if proc.stdin is not None:
                    proc.stdin.close()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=STOP_GRACE_S)
                except asyncio.TimeoutError:
                    proc.terminate()
                    try:
                        await asyncio.wait_for(proc.wait(), timeout=STOP_GRACE_S)
                    except asyncio.TimeoutError:
                        proc.kill()
                        await proc.wait()
            except ProcessLookupError:
                pass
            except Exception as e:
                logger.warning(f"Error stopping STDIO server {self.name}: {e}")

        tasks = [t for t in (self._reader, self._stderr) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reader = None
        self._stderr = None
