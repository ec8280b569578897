"""Data model for a normalised agent session."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


def get_int_from_map(mapping: Mapping[str, Any] | None, key: str) -> int:
    """Return mapping[key] as an int, or 0 when it is missing or not numeric."""
    if not mapping:
        return 0
    value = mapping.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


@dataclass
class ContentPart:
    """A piece of message content, such as text or thinking."""

    type: str
    text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class Usage:
    """Token usage reported for one agent turn."""

    input_tokens: int = 0
    output_tokens: int = 0
    cached_input_tokens: int = 0
    reasoning_output_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cachedInputTokens": self.cached_input_tokens,
            "reasoningOutputTokens": self.reasoning_output_tokens,
        }


@dataclass
class ToolInfo:
    """A tool invocation and, once known, its output."""

    name: str
    type: str
    use_id: str = ""
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    summary: str | None = None
    formatted_markdown: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "type": self.type}
        if self.use_id:
            result["useId"] = self.use_id
        if self.input is not None:
            result["input"] = self.input
        if self.output is not None:
            result["output"] = self.output
        if self.summary is not None:
            result["summary"] = self.summary
        if self.formatted_markdown is not None:
            result["formattedMarkdown"] = self.formatted_markdown
        return result


@dataclass
class Message:
    """A single user or agent message within an exchange."""

    id: str
    timestamp: str
    role: str
    model: str = ""
    content: list[ContentPart] = field(default_factory=list)
    tool: ToolInfo | None = None
    path_hints: list[str] = field(default_factory=list)
    usage: Usage | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "role": self.role,
        }
        if self.model:
            result["model"] = self.model
        if self.content:
            result["content"] = [part.to_dict() for part in self.content]
        if self.tool is not None:
            result["tool"] = self.tool.to_dict()
        if self.path_hints:
            result["pathHints"] = list(self.path_hints)
        if self.usage is not None:
            result["usage"] = self.usage.to_dict()
        return result


@dataclass
class Exchange:
    """A user prompt together with everything the agent did in response."""

    exchange_id: str = ""
    start_time: str = ""
    end_time: str = ""
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.exchange_id:
            result["exchangeId"] = self.exchange_id
        result["startTime"] = self.start_time
        if self.end_time:
            result["endTime"] = self.end_time
        result["messages"] = [message.to_dict() for message in self.messages]
        return result


@dataclass
class ProviderInfo:
    """Identifies the agent that produced a session."""

    id: str
    name: str
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "version": self.version}


@dataclass
class SessionData:
    """A complete agent session in the normalised format."""

    schema_version: str
    provider: ProviderInfo
    session_id: str
    created_at: str
    workspace_root: str = ""
    exchanges: list[Exchange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "provider": self.provider.to_dict(),
            "sessionId": self.session_id,
            "createdAt": self.created_at,
        }
        if self.workspace_root:
            result["workspaceRoot"] = self.workspace_root
        result["exchanges"] = [exchange.to_dict() for exchange in self.exchanges]
        return result