"""
Transport tests against the demo provider: HTTP in-process through ASGI,
stdio as a real subprocess, websocket on a loopback port.
"""

import asyncio
import json
import shlex
import sys

import httpx
import pytest

from tool_broker.demo.server import create_app, handle_rpc, serve_websocket
from tool_broker.errors import CapabilityNotFoundError, JsonRpcError, ProviderConnectionError
from tool_broker.schema import AuthConfig, ProviderConfig
from tool_broker.transports import HttpTransport, StdioTransport, WebSocketTransport
from tool_broker.transports.base import auth_headers, execute_call, unwrap_content
from tool_broker.transports.http import _parse_sse
from tool_broker.transports.jsonrpc import JsonRpcPeer
from tool_broker.transports.stdio import command_argv


def demo_command(profile: str) -> str:
    return shlex.join([sys.executable, "-m", "tool_broker.demo.server", "--stdio", "--profile", profile])


# =============================================================================
# Shared helpers
# =============================================================================


class TestHelpers:
    def test_auth_headers(self):
        assert auth_headers(None) == {}
        assert auth_headers(AuthConfig(type="bearer", token="t")) == {"Authorization": "Bearer t"}
        assert auth_headers(AuthConfig(type="basic", username="u", password="p")) == {"Authorization": "Basic dTpw"}
        assert auth_headers(AuthConfig(type="apikey", api_key="k")) == {"X-API-Key": "k"}
        assert auth_headers(AuthConfig(type="bearer")) == {}

    def test_unwrap_content(self):
        assert unwrap_content({"structuredContent": {"a": 1}, "content": []}) == {"a": 1}
        assert unwrap_content({"content": [{"type": "text", "text": '{"a": 2}'}]}) == {"a": 2}
        assert unwrap_content({"content": [{"type": "text", "text": "plain"}]}) == "plain"
        assert unwrap_content({"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}) == "a\nb"
        image = [{"type": "image", "data": "..."}]
        assert unwrap_content({"content": image}) == image

    @pytest.mark.asyncio
    async def test_execute_call_outcomes(self):
        async def returns(value):
            return value

        async def raises(exc):
            raise exc

        ok = await execute_call(returns({"content": [{"type": "text", "text": "hi"}]}), provider="p", tool="t")
        assert ok.success is True
        assert ok.data == "hi"

        failed = await execute_call(
            returns({"content": [{"type": "text", "text": "bad input"}], "isError": True}), provider="p", tool="t"
        )
        assert failed.success is False
        assert failed.error == "bad input"

        rpc = await execute_call(raises(JsonRpcError({"code": -32602, "message": "Invalid params"})), provider="p", tool="t")
        assert rpc.success is False
        assert rpc.error == "Invalid params"

        with pytest.raises(CapabilityNotFoundError):
            await execute_call(raises(JsonRpcError({"code": -32601, "message": "Unknown tool"})), provider="p", tool="t")

    def test_command_argv(self):
        assert command_argv("stdio://python -m srv --flag 'a b'") == ["python", "-m", "srv", "--flag", "a b"]
        assert command_argv("  ") == []

    def test_parse_sse(self):
        body = (
            "event: message\n"
            'data: {"jsonrpc": "2.0", "method": "notifications/progress"}\n'
            "\n"
            'data: {"jsonrpc": "2.0", "id": "abc", "result": {"ok": true}}\n'
            "\n"
        )
        assert _parse_sse(body, "abc") == {"jsonrpc": "2.0", "id": "abc", "result": {"ok": True}}
        assert _parse_sse(body, "zzz") is None


class TestJsonRpcPeer:
    @pytest.mark.asyncio
    async def test_request_resolved_by_id(self):
        sent = []

        async def send(raw):
            sent.append(json.loads(raw))

        peer = JsonRpcPeer(send, name="p")
        task = asyncio.create_task(peer.request("tools/list", {}))
        await asyncio.sleep(0)

        req = sent[0]
        assert req["method"] == "tools/list"
        peer.feed(json.dumps({"jsonrpc": "2.0", "method": "notifications/message"}))
        peer.feed(json.dumps({"jsonrpc": "2.0", "id": req["id"], "result": {"tools": []}}))

        assert await task == {"tools": []}
        assert peer.pending == 0

    @pytest.mark.asyncio
    async def test_error_response(self):
        sent = []

        async def send(raw):
            sent.append(json.loads(raw))

        peer = JsonRpcPeer(send, name="p")
        task = asyncio.create_task(peer.request("tools/call", {"name": "x"}))
        await asyncio.sleep(0)
        peer.feed(json.dumps({"jsonrpc": "2.0", "id": sent[0]["id"], "error": {"code": -32601, "message": "nope"}}))

        with pytest.raises(JsonRpcError) as exc:
            await task
        assert exc.value.rpc_code == -32601

    @pytest.mark.asyncio
    async def test_no_response_times_out(self):
        async def send(raw):
            return None

        peer = JsonRpcPeer(send, name="p", timeout_s=0.05)

        with pytest.raises(ProviderConnectionError) as exc:
            await peer.request("ping")
        assert "No response to ping" in str(exc.value)
        assert peer.pending == 0

    @pytest.mark.asyncio
    async def test_unbounded_request_outlives_timeout(self):
        sent = []

        async def send(raw):
            sent.append(json.loads(raw))

        peer = JsonRpcPeer(send, name="p", timeout_s=0.05)
        task = asyncio.create_task(peer.request("tools/call", {"name": "slow"}, bounded=False))
        await asyncio.sleep(0.1)

        assert not task.done()
        peer.feed(json.dumps({"jsonrpc": "2.0", "id": sent[0]["id"], "result": {"content": []}}))
        assert await task == {"content": []}
        assert peer.pending == 0

    @pytest.mark.asyncio
    async def test_fail_all_releases_waiters(self):
        async def send(raw):
            return None

        peer = JsonRpcPeer(send, name="p")
        task = asyncio.create_task(peer.request("tools/list"))
        await asyncio.sleep(0)

        peer.fail_all(ProviderConnectionError("p", "Server process closed its output"))

        with pytest.raises(ProviderConnectionError):
            await task


# =============================================================================
# HTTP
# =============================================================================


def http_config(**extra):
    return ProviderConfig(name="github-server", url="http://testserver/mcp", type="http", **extra)


class TestHttpTransport:
    @pytest.mark.asyncio
    async def test_discover_and_invoke(self):
        transport = HttpTransport(transport=httpx.ASGITransport(app=create_app("github")))
        await transport.connect(http_config())
        try:
            assert transport.is_connected()
            assert transport.session_id.startswith("sid_")

            tools = await transport.discover()
            assert [t.name for t in tools] == ["create_issue", "get_issues", "calendar_get_events"]
            assert tools[0].input_schema.required == ["title"]

            result = await transport.invoke("get_issues", {"state": "all"})
            assert result.success is True
            assert result.data["totalCount"] == 2

            with pytest.raises(CapabilityNotFoundError):
                await transport.invoke("web_search", {"query": "x"})
        finally:
            await transport.disconnect()

        assert not transport.is_connected()

    @pytest.mark.asyncio
    async def test_bearer_auth(self):
        app = create_app("github", token="s3cret")

        ok = HttpTransport(transport=httpx.ASGITransport(app=app))
        await ok.connect(http_config(auth=AuthConfig(type="bearer", token="s3cret")))
        assert len(await ok.discover()) == 3
        await ok.disconnect()

        rejected = HttpTransport(transport=httpx.ASGITransport(app=app))
        with pytest.raises(ProviderConnectionError) as exc:
            await rejected.connect(http_config(auth=AuthConfig(type="bearer", token="wrong")))
        assert "HTTP 401" in str(exc.value)
        assert not rejected.is_connected()

    @pytest.mark.asyncio
    async def test_provider_timeout_only_bounds_handshake_and_discovery(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            seen[payload["method"]] = request.extensions["timeout"]
            reply = handle_rpc(payload, "github", session_id="sid_mock")
            return httpx.Response(202) if reply is None else httpx.Response(200, json=reply)

        transport = HttpTransport(transport=httpx.MockTransport(handler))
        await transport.connect(http_config(timeout=200))
        try:
            await transport.discover()
            result = await transport.invoke("get_issues", {})
        finally:
            await transport.disconnect()

        assert result.success is True
        assert seen["initialize"]["read"] == 0.2
        assert seen["tools/list"]["read"] == 0.2
        assert seen["tools/call"]["read"] is None

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        transport = HttpTransport()

        with pytest.raises(ProviderConnectionError):
            await transport.discover()

    @pytest.mark.asyncio
    async def test_missing_url_is_rejected(self):
        transport = HttpTransport()

        with pytest.raises(ProviderConnectionError) as exc:
            await transport.connect(ProviderConfig(name="gh", url="", type="http"))
        assert "Server URL is required" in str(exc.value)


# =============================================================================
# stdio
# =============================================================================


class TestStdioTransport:
    @pytest.mark.asyncio
    async def test_subprocess_round_trip(self):
        transport = StdioTransport()
        await transport.connect(ProviderConfig(name="search-server", url=demo_command("search"), type="stdio"))
        try:
            tools = await transport.discover()
            assert [t.name for t in tools] == ["web_search", "deep_research"]

            result = await transport.invoke("web_search", {"query": "asyncio"})
            assert result.success is True
            assert result.data["query"] == "asyncio"

            failed = await transport.invoke("deep_research", {})
            assert failed.success is False
            assert "question" in failed.error

            with pytest.raises(CapabilityNotFoundError):
                await transport.invoke("create_issue", {"title": "x"})
        finally:
            await transport.disconnect()

        assert not transport.is_connected()

    @pytest.mark.asyncio
    async def test_concurrent_requests_are_correlated(self):
        transport = StdioTransport()
        await transport.connect(ProviderConfig(name="search-server", url=demo_command("search"), type="stdio"))
        try:
            await transport.discover()
            results = await asyncio.gather(
                *(transport.invoke("web_search", {"query": f"q{i}"}) for i in range(5))
            )
            assert [r.data["query"] for r in results] == [f"q{i}" for i in range(5)]
        finally:
            await transport.disconnect()

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        transport = StdioTransport()

        with pytest.raises(ProviderConnectionError):
            await transport.connect(ProviderConfig(name="nope", url="no-such-binary-tool-broker", type="stdio"))

    @pytest.mark.asyncio
    async def test_process_that_exits_immediately(self):
        transport = StdioTransport()
        url = shlex.join([sys.executable, "-c", "pass"])

        with pytest.raises(ProviderConnectionError):
            await transport.connect(ProviderConfig(name="quitter", url=url, type="stdio", timeout=5000))
        assert not transport.is_connected()


# =============================================================================
# websocket
# =============================================================================


class TestWebSocketTransport:
    @pytest.mark.asyncio
    async def test_discover_invoke_and_server_shutdown(self):
        server = await serve_websocket("127.0.0.1", 0, "home")
        port = list(server.sockets)[0].getsockname()[1]
        transport = WebSocketTransport()
        try:
            await transport.connect(ProviderConfig(name="alexa-server", url=f"ws://127.0.0.1:{port}", type="websocket"))

            tools = await transport.discover()
            assert "alexa_turn_on_lights" in {t.name for t in tools}
            assert len(tools) == 4

            result = await transport.invoke("alexa_turn_on_lights", {"room": "kitchen", "brightness": 40})
            assert result.success is True
            assert result.data["brightness"] == 40

            rejected = await transport.invoke("alexa_turn_on_lights", {"room": "kitchen", "brightness": 500})
            assert rejected.success is False
            assert "between 1 and 100" in rejected.error
        finally:
            server.close()
            await server.wait_closed()

        for _ in range(50):
            if not transport.is_connected():
                break
            await asyncio.sleep(0.02)
        assert not transport.is_connected()
        with pytest.raises(ProviderConnectionError):
            await transport.invoke("alexa_set_scene", {"sceneName": "movie"})
        await transport.disconnect()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        transport = WebSocketTransport()

        with pytest.raises(ProviderConnectionError):
            await transport.connect(
                ProviderConfig(name="alexa-server", url="ws://127.0.0.1:9", type="websocket", timeout=2000)
            )


# =============================================================================
# Demo dispatcher
# =============================================================================


class TestDemoDispatch:
    def test_notification_has_no_reply(self):
        assert handle_rpc({"jsonrpc": "2.0", "method": "notifications/initialized"}, "search") is None

    def test_unknown_tool(self):
        res = handle_rpc(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "fly", "arguments": {}}}, "search"
        )
        assert res["error"]["code"] == -32601

    def test_initialize_reports_session(self):
        res = handle_rpc({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}, "home", session_id="sid_1")
        assert res["result"]["sessionId"] == "sid_1"
        assert res["result"]["serverInfo"]["name"] == "tool_broker_demo_home"
