from typing import Dict

from tool_broker.schema import TransportKind

from .base import Transport, TransportFactory
from .http import HttpTransport
from .stdio import StdioTransport
from .websocket import WebSocketTransport


def default_transports() -> Dict[str, TransportFactory]:
    """Transport dispatch table keyed by transport kind."""
    return {
        TransportKind.STDIO.value: StdioTransport,
        TransportKind.HTTP.value: HttpTransport,
        TransportKind.WEBSOCKET.value: WebSocketTransport,
    }


__all__ = ["Transport", "TransportFactory", "HttpTransport", "StdioTransport", "WebSocketTransport", "default_transports"]
