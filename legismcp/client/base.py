"""Interface shared by tool-server clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from .models import Prompt, PromptResult, Resource, ResourceContent, Tool, ToolResult


class ToolClient(ABC):
    """Abstract client for a tool-serving backend."""

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear the connection down."""

    @abstractmethod
    async def list_tools(self) -> list[Tool]:
        """Return available tools metadata."""

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """Invoke a tool by name."""

    async def list_resources(self) -> list[Resource]:
        """Optional: list remote resources."""
        return []

    async def read_resource(self, uri: str) -> ResourceContent:
        """Optional: read a remote resource."""
        raise NotImplementedError("Resource reading not supported by this client.")

    async def list_prompts(self) -> list[Prompt]:
        """Optional: list prompt templates."""
        return []

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> PromptResult:
        """Optional: render a prompt template."""
        raise NotImplementedError("Prompts not supported by this client.")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
