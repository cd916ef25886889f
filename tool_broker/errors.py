from __future__ import annotations

from typing import Any, Optional


class BrokerError(RuntimeError):
    """
    Base error for everything the broker raises to its caller.

    provider/tool identify where the failure happened; code is a stable
    machine-readable kind so a calling agent can branch on it.
    """

    code: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        tool: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.tool = tool
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "provider": self.provider, "tool": self.tool}


class ProviderConnectionError(BrokerError):
    code = "CONNECTION"

    def __init__(self, provider: str, message: str):
        super().__init__(f"Connection to server {provider} failed: {message}", provider=provider)
        self.reason = message


class UnsupportedTransportError(ProviderConnectionError):
    code = "UNSUPPORTED_TRANSPORT"

    def __init__(self, provider: str, transport: str):
        super().__init__(provider, f"Unsupported server type: {transport}")
        self.transport = transport


class ProviderNotFoundError(BrokerError):
    code = "PROVIDER_NOT_FOUND"

    def __init__(self, provider: str):
        super().__init__(f"Server {provider} not found", provider=provider)


class CapabilityNotFoundError(BrokerError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, provider: str, tool: str):
        super().__init__(f"Tool {tool} not found on server {provider}", provider=provider, tool=tool)


class InvocationTimeoutError(BrokerError):
    code = "TIMEOUT"

    def __init__(self, provider: str, tool: str, timeout_ms: int):
        super().__init__(
            f"Tool {tool} on server {provider} timed out after {timeout_ms}ms",
            provider=provider,
            tool=tool,
        )
        self.timeout_ms = timeout_ms


class ToolExecutionError(BrokerError):
    """Business failure re-raised by generated tool functions."""

    code = "EXECUTION"

    def __init__(self, provider: str, tool: str, message: Optional[str]):
        super().__init__(message or "Tool execution failed", provider=provider, tool=tool)


class JsonRpcError(BrokerError):
    code = "RPC"

    def __init__(self, error: Any):
        if isinstance(error, dict):
            self.rpc_code = error.get("code")
            message = str(error.get("message") or error)
        else:
            self.rpc_code = None
            message = str(error)
        super().__init__(message)
        self.data = error.get("data") if isinstance(error, dict) else None
