#!/usr/bin/env python3
"""
Demo MCP provider (for local testing).

One JSON-RPC dispatcher that supports:
- initialize
- tools/list
- tools/call

served over any of the three transports the broker speaks:

  python -m tool_broker.demo.server --stdio --profile search
  python -m tool_broker.demo.server --http --port 9000 --profile github
  python -m tool_broker.demo.server --ws --port 9001 --profile home

Configure the broker (tool_broker.json):
  "providers": [
    {"name": "search-server", "url": "python -m tool_broker.demo.server --stdio --profile search", "type": "stdio"},
    {"name": "github-server", "url": "http://127.0.0.1:9000/mcp", "type": "http"},
    {"name": "alexa-server", "url": "ws://127.0.0.1:9001", "type": "websocket"}
  ]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from websockets.asyncio.server import Server, ServerConnection, serve

from tool_broker import __version__
from tool_broker.demo.capabilities import PROFILES, ToolInputError, find_handler, tool_listing

logger = logging.getLogger("tool_broker.demo")

PROTOCOL_VERSION = "2024-11-05"


def _rpc_result(req_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _rpc_error(req_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": int(code), "message": str(message)}}


def _text_result(payload: Any, *, is_error: bool = False) -> Dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    out: Dict[str, Any] = {"content": [{"type": "text", "text": text}], "isError": is_error}
    if not is_error and isinstance(payload, dict):
        out["structuredContent"] = payload
    return out


def _is_call(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("method") == "tools/call"


def handle_rpc(payload: Any, profile: str, *, session_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Dispatch one JSON-RPC message. Returns None for notifications.
    """
    if not isinstance(payload, dict):
        return _rpc_error(None, -32600, "Invalid Request")

    req_id = payload.get("id")
    method = str(payload.get("method") or "")
    params = payload.get("params") or {}
    if not isinstance(params, dict):
        params = {}

    if req_id is None:
        return None

    if method == "initialize":
        result: Dict[str, Any] = {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": f"tool_broker_demo_{profile}", "version": __version__},
            "capabilities": {"tools": {}},
        }
        if session_id:
            result["sessionId"] = session_id
        return _rpc_result(req_id, result)

    if method == "tools/list":
        return _rpc_result(req_id, {"tools": tool_listing(profile)})

    if method == "tools/call":
        name = str(params.get("name") or "")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return _rpc_error(req_id, -32602, "Invalid params")
        handler = find_handler(profile, name)
        if handler is None:
            return _rpc_error(req_id, -32601, f"Unknown tool: {name}")
        try:
            return _rpc_result(req_id, _text_result(handler(arguments)))
        except (ToolInputError, TypeError, ValueError) as e:
            return _rpc_result(req_id, _text_result(str(e), is_error=True))

    if method == "ping":
        return _rpc_result(req_id, {})

    return _rpc_error(req_id, -32601, f"Unknown method: {method}")


def create_app(profile: str = "github", *, token: Optional[str] = None, latency_ms: int = 0) -> FastAPI:
    app = FastAPI(title="tool_broker demo MCP server", version=__version__)
    session_id = f"sid_{uuid.uuid4().hex[:12]}"

    @app.get("/health")
    async def health():
        return {"ok": True, "profile": profile}

    @app.post("/mcp")
    async def mcp(request: Request):
        if token and request.headers.get("authorization") != f"Bearer {token}":
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        try:
            payload = await request.json()
        except Exception:
            return JSONResponse(_rpc_error(None, -32700, "Parse error"), status_code=200)

        if latency_ms and _is_call(payload):
            await asyncio.sleep(latency_ms / 1000.0)

        res = handle_rpc(payload, profile, session_id=session_id)
        if res is None:
            return Response(status_code=202)
        is_init = isinstance(payload, dict) and payload.get("method") == "initialize"
        headers = {"Mcp-Session-Id": session_id} if is_init else None
        return JSONResponse(res, headers=headers)

    return app


def run_stdio(profile: str, *, latency_ms: int = 0) -> None:
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError:
            res: Optional[Dict[str, Any]] = _rpc_error(None, -32700, "Parse error")
        else:
            if latency_ms and _is_call(payload):
                time.sleep(latency_ms / 1000.0)
            res = handle_rpc(payload, profile)
        if res is not None:
            sys.stdout.write(json.dumps(res) + "\n")
            sys.stdout.flush()


async def serve_websocket(host: str, port: int, profile: str, *, latency_ms: int = 0) -> Server:
    async def _handler(websocket: ServerConnection) -> None:
        async for message in websocket:
            try:
                payload = json.loads(message)
            except ValueError:
                res: Optional[Dict[str, Any]] = _rpc_error(None, -32700, "Parse error")
            else:
                if latency_ms and _is_call(payload):
                    await asyncio.sleep(latency_ms / 1000.0)
                res = handle_rpc(payload, profile)
            if res is not None:
                await websocket.send(json.dumps(res))

    return await serve(_handler, host, port)


async def _run_websocket(host: str, port: int, profile: str, latency_ms: int) -> None:
    server = await serve_websocket(host, port, profile, latency_ms=latency_ms)
    logger.info(f"Serving {profile} over websocket on ws://{host}:{port}")
    await server.wait_closed()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Demo MCP provider for tool_broker")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--http", action="store_true")
    mode.add_argument("--stdio", action="store_true")
    mode.add_argument("--ws", action="store_true")
    parser.add_argument("--profile", choices=sorted(PROFILES), default="github")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=9000)
    parser.add_argument("--token", default=None, help="Require this bearer token (HTTP only)")
    parser.add_argument("--latency-ms", type=int, default=0, help="Delay every tools/call by this many milliseconds")
    args = parser.parse_args(argv)

    # stdout carries the protocol in stdio mode; logs go to stderr.
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    if args.stdio:
        run_stdio(args.profile, latency_ms=args.latency_ms)
    elif args.ws:
        asyncio.run(_run_websocket(args.host, args.port, args.profile, args.latency_ms))
    else:
        import uvicorn

        uvicorn.run(create_app(args.profile, token=args.token, latency_ms=args.latency_ms), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
