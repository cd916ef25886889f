__version__ = "0.1.0"

from .broker import Broker
from .errors import (
    BrokerError,
    CapabilityNotFoundError,
    InvocationTimeoutError,
    ProviderConnectionError,
    ProviderNotFoundError,
    ToolExecutionError,
    UnsupportedTransportError,
)
from .schema import (
    BrokerConfig,
    Capability,
    ExecutionStatus,
    InvocationRequest,
    InvocationResult,
    ProviderConfig,
    ProviderStatus,
    ToolExecutionContext,
)

__all__ = [
    "__version__",
    "Broker",
    "BrokerConfig",
    "BrokerError",
    "Capability",
    "CapabilityNotFoundError",
    "ExecutionStatus",
    "InvocationRequest",
    "InvocationResult",
    "InvocationTimeoutError",
    "ProviderConfig",
    "ProviderConnectionError",
    "ProviderNotFoundError",
    "ProviderStatus",
    "ToolExecutionContext",
    "ToolExecutionError",
    "UnsupportedTransportError",
]
