"""
Shared value types for the broker: provider/capability descriptors,
invocation request/result, execution records and configuration models.

Config-shaped inputs (anything that arrives as JSON) are pydantic models so
they validate on the way in; runtime records are plain dataclasses owned and
mutated by a single component.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransportKind(str, Enum):
    STDIO = "stdio"
    HTTP = "http"
    WEBSOCKET = "websocket"


class ProviderStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)


# Capability schemas

class JSONSchema(BaseModel):
    """Parameter/result schema of a capability (a JSON Schema subset)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Optional[Union[str, List[str]]] = None
    description: Optional[str] = None
    properties: Optional[Dict[str, JSONSchema]] = None
    required: Optional[List[str]] = None
    additional_properties: Optional[Union[bool, Dict[str, Any]]] = Field(default=None, alias="additionalProperties")
    items: Optional[JSONSchema] = None
    enum: Optional[List[Any]] = None
    default: Any = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    def is_object(self) -> bool:
        return self.type == "object" or (self.type is None and self.properties is not None)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


JSONSchema.model_rebuild()


def _object_schema() -> JSONSchema:
    return JSONSchema(type="object")


class Capability(BaseModel):
    """One invokable operation ("tool") exposed by a provider."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: JSONSchema = Field(default_factory=_object_schema, alias="inputSchema")
    output_schema: Optional[JSONSchema] = Field(default=None, alias="outputSchema")
    provider: str = ""

    @classmethod
    def from_wire(cls, raw: Dict[str, Any], *, provider: str) -> Capability:
        """
        Build from an MCP tools/list entry:
          {name, description?, inputSchema?, outputSchema?}
        """
        return cls(
            name=str(raw.get("name", "") or ""),
            description=str(raw.get("description", "") or ""),
            input_schema=JSONSchema.model_validate(raw.get("inputSchema") or {"type": "object"}),
            output_schema=JSONSchema.model_validate(raw["outputSchema"]) if raw.get("outputSchema") else None,
            provider=provider,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "server": self.provider,
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.to_dict(),
        }
        if self.output_schema is not None:
            out["outputSchema"] = self.output_schema.to_dict()
        return out


# Configuration models

class AuthConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["bearer", "basic", "apikey"]
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ProviderConfig(BaseModel):
    """
    Input to Broker.register_provider.

    type stays a free string: an unknown transport kind must reach the
    broker's dispatch table and fail there, not in validation.
    timeout is milliseconds and bounds the handshake and discovery exchanges
    of the transport; tools/call duration is left to the broker.
    For stdio providers url is the command line to spawn (optionally prefixed
    with "stdio://").
    """

    name: str
    url: str
    type: str
    timeout: Optional[int] = None
    auth: Optional[AuthConfig] = None

    def timeout_s(self, default: float = 30.0) -> float:
        if self.timeout is None or self.timeout <= 0:
            return float(default)
        return self.timeout / 1000.0


class BrokerConfig(BaseModel):
    default_timeout_ms: int = 8000
    # Capability names matching any of these (re.search) are treated as expensive.
    expensive_timeout_ms: int = 120000
    expensive_patterns: List[str] = Field(default_factory=lambda: ["research"])


# Runtime records

@dataclass
class Provider:
    name: str
    url: str
    type: str
    status: ProviderStatus = ProviderStatus.DISCONNECTED
    last_connected: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "status": self.status.value,
            "lastConnected": self.last_connected.isoformat() if self.last_connected else None,
            "error": self.error,
        }


@dataclass
class InvocationRequest:
    provider: str
    capability: str
    args: Dict[str, Any] = field(default_factory=dict)
    timeout_ms: Optional[int] = None


@dataclass
class InvocationResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    execution_time_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "executionTime": self.execution_time_ms}
        if self.success:
            out["data"] = self.data
        else:
            out["error"] = self.error
        return out


@dataclass
class ToolExecutionContext:
    """Who asked for an invocation; kept on the execution record for debugging."""

    agent_name: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionRecord:
    id: str
    provider: str
    capability: str
    args: Dict[str, Any]
    started_at: datetime
    status: ExecutionStatus = ExecutionStatus.PENDING
    ended_at: Optional[datetime] = None
    result: Optional[InvocationResult] = None
    error: Optional[str] = None
    timeout_ms: Optional[int] = None
    # Set when a timed-out transport call was left running instead of cancelled.
    abandoned: bool = False
    context: Optional[ToolExecutionContext] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "server": self.provider,
            "tool": self.capability,
            "args": self.args,
            "startTime": self.started_at.isoformat(),
            "endTime": self.ended_at.isoformat() if self.ended_at else None,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "timeout": self.timeout_ms,
            "abandoned": self.abandoned,
            "agent": self.context.agent_name if self.context else None,
        }
