"""Client state and typed results of remote calls."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class ConnectionState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIALIZED = "initialized"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CONNECTION_FAILED = "connection_failed"


@dataclass
class ClientState:
    """Session and usage state of a client instance."""

    connected: bool = False
    authenticated: bool = False
    session_id: Optional[str] = None
    subscription_tier: Optional[str] = None
    usage_limit: Optional[int] = None
    monthly_usage_used: Optional[int] = None
    last_activity: Optional[datetime] = None

    def copy(self) -> "ClientState":
        """Return a detached snapshot."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert state to dictionary.

        Returns:
            Dictionary representation of the state
        """
        return {
            "connected": self.connected,
            "authenticated": self.authenticated,
            "session_id": self.session_id,
            "subscription_tier": self.subscription_tier,
            "usage_limit": self.usage_limit,
            "monthly_usage_used": self.monthly_usage_used,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


class _WireModel(BaseModel):
    """Base for models parsed from server payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Explicit nulls fall back to the field defaults
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class InitializeResult(_WireModel):
    """Result of the ``initialize`` handshake."""

    session_id: str | None = Field(default=None, alias="sessionId")
    subscription_tier: str | None = Field(default=None, alias="subscriptionTier")
    usage_limit: int | None = Field(default=None, alias="usageLimit")
    monthly_usage_used: int | None = Field(
        default=None,
        validation_alias=AliasChoices("monthlyUsageUsed", "monthlyUsage", "monthly_usage_used"),
    )


class Tool(_WireModel):
    """A tool exposed by the server."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class Resource(_WireModel):
    """A readable resource exposed by the server."""

    uri: str
    name: str = ""
    description: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")


class Prompt(_WireModel):
    """A prompt template exposed by the server."""

    name: str
    description: str | None = None
    arguments: list[dict[str, Any]] | None = None


class ToolResult(_WireModel):
    """Result of ``tools/call``."""

    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        """Concatenated text parts of the content."""
        return "\n".join(part.get("text", "") for part in self.content if part.get("text"))


class ResourceContent(_WireModel):
    """Result of ``resources/read``."""

    uri: str = ""
    mime_type: str | None = Field(default=None, alias="mimeType")
    text: str | None = None
    blob: str | None = None


class PromptResult(_WireModel):
    """Result of ``prompts/get``."""

    description: str | None = None
    messages: list[dict[str, Any]] = Field(default_factory=list)


class UsageInfo(BaseModel):
    """Monthly usage against the subscription limit."""

    used: int
    limit: int
    tier: str

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)
