"""Conversion of Codex CLI JSONL records into normalised session data."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from .markdown_tools import format_custom_tool_call, format_shell_with_summary, format_tool_call
from .models import (
    ContentPart,
    Exchange,
    Message,
    ProviderInfo,
    SessionData,
    ToolInfo,
    Usage,
    get_int_from_map,
)
from .path_utils import normalize_workspace_path

logger = logging.getLogger(__name__)

_OUTPUT_LIMIT = 5000
_PATH_FIELDS = ("path", "file", "filename", "file_path")
_PATCH_MARKERS = (
    "*** Modify File:",
    "*** Update File:",
    "*** Create File:",
    "*** Add File:",
    "*** Delete File:",
    "*** Rename File:",
    "*** Remove File:",
)
_NEW_NAME_MARKER = "*** New Name:"
_TOOL_TYPES = {
    "shell": "shell",
    "shell_command": "shell",
    "exec_command": "shell",
    "update_plan": "task",
    "view_image": "read",
    "apply_patch": "write",
    "list_mcp_resources": "generic",
    "list_mcp_resource_templates": "generic",
    "read_mcp_resource": "generic",
}


class SessionRecordError(ValueError):
    """The session records cannot be turned into session data."""


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _decode_object_or_raw(text: str) -> dict[str, Any] | None:
    """Decode a JSON object; anything that is not one is kept as {"raw": text}."""
    try:
        value = json.loads(text)
    except ValueError:
        return {"raw": text}
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    return {"raw": text}


def generate_agent_session(records: Sequence[Mapping[str, Any]], workspace_root: str) -> SessionData:
    """Build SessionData from Codex CLI records in file order.

    Raises SessionRecordError when there are no records or the metadata is invalid.
    """
    logger.info("generate_agent_session: starting with %d records", len(records))
    if not records:
        raise SessionRecordError("no records provided")

    try:
        session_id, created_at, cwd = extract_session_metadata(records)
    except SessionRecordError as exc:
        raise SessionRecordError(f"failed to extract session metadata: {exc}") from exc

    if not workspace_root:
        workspace_root = cwd

    exchanges = build_exchanges_from_records(records, workspace_root)

    for index, exchange in enumerate(exchanges):
        exchange.exchange_id = f"{session_id}:{index}"
        for message in exchange.messages:
            if message.tool is None:
                continue
            summary, formatted = format_tool_with_summary(message.tool, workspace_root)
            if summary:
                message.tool.summary = summary
            if formatted:
                message.tool.formatted_markdown = formatted

    logger.info("generate_agent_session: built %d exchanges", len(exchanges))
    return SessionData(
        schema_version="1.0",
        provider=ProviderInfo(id="codex-cli", name="Codex CLI", version="unknown"),
        session_id=session_id,
        created_at=created_at,
        workspace_root=workspace_root,
        exchanges=exchanges,
    )


def extract_session_metadata(records: Sequence[Mapping[str, Any]]) -> tuple[str, str, str]:
    """Return (session_id, created_at, cwd) from the leading session_meta record."""
    if not records:
        raise SessionRecordError("no records to extract metadata from")
    first = records[0]
    record_type = _str(first.get("type"))
    if record_type != "session_meta":
        raise SessionRecordError(f"first record is not session_meta: {record_type}")
    payload = first.get("payload")
    if not isinstance(payload, dict):
        raise SessionRecordError("session_meta payload is missing or invalid")

    session_id = _str(payload.get("id"))
    created_at = _str(payload.get("timestamp"))
    cwd = _str(payload.get("cwd"))
    if not session_id:
        raise SessionRecordError("session_meta is missing session ID")
    if not created_at:
        created_at = _str(first.get("timestamp"))
    return session_id, created_at, cwd


class _ExchangeBuilder:
    """Groups records into exchanges, each opened by a user message."""

    def __init__(self, workspace_root: str):
        self.workspace_root = workspace_root
        self.exchanges: list[Exchange] = []
        self.current: Exchange | None = None
        self.model = ""
        self.pending: dict[str, ToolInfo] = {}

    def _exchange(self, timestamp: str) -> Exchange:
        if self.current is None:
            self.current = Exchange(start_time=timestamp)
        return self.current

    def _append(self, message: Message, timestamp: str) -> None:
        exchange = self._exchange(timestamp)
        exchange.messages.append(message)
        exchange.end_time = timestamp

    def _flush(self) -> None:
        if self.current is not None and self.current.messages:
            self.exchanges.append(self.current)

    def finish(self) -> list[Exchange]:
        self._flush()
        self.current = None
        return self.exchanges

    def turn_context(self, payload: Any) -> None:
        if isinstance(payload, dict) and isinstance(payload.get("model"), str):
            self.model = payload["model"]
            logger.debug("current model set to %s", self.model)

    def event(self, index: int, timestamp: str, payload: dict[str, Any]) -> None:
        kind = _str(payload.get("type"))
        if kind == "user_message":
            message = _str(payload.get("message"))
            if not message:
                return
            self._flush()
            self.current = Exchange(start_time=timestamp)
            self.current.messages.append(
                Message(
                    id=f"u_{index}",
                    timestamp=timestamp,
                    role="user",
                    content=[ContentPart(type="text", text=message)],
                )
            )
        elif kind in ("agent_message", "agent_reasoning"):
            is_reasoning = kind == "agent_reasoning"
            text = _str(payload.get("text" if is_reasoning else "message"))
            if not text:
                return
            self._append(
                Message(
                    id=f"{'r' if is_reasoning else 'a'}_{index}",
                    timestamp=timestamp,
                    role="agent",
                    model=self.model,
                    content=[ContentPart(type="thinking" if is_reasoning else "text", text=text)],
                ),
                timestamp,
            )
        elif kind == "token_count":
            if self.current is None or not self.current.messages:
                return
            usage = extract_usage_from_token_count(payload)
            if usage is None:
                return
            for message in reversed(self.current.messages):
                if message.role == "agent":
                    message.usage = usage
                    logger.debug("attached token usage to message %s", message.id)
                    break

    def response_item(self, index: int, timestamp: str, payload: dict[str, Any]) -> None:
        kind = _str(payload.get("type"))
        if kind in ("function_call", "custom_tool_call"):
            self._exchange(timestamp)
            tool_name = _str(payload.get("name"))
            call_id = _str(payload.get("call_id"))
            if not tool_name:
                return
            if kind == "function_call":
                arguments = _str(payload.get("arguments"))
                input_data = _decode_object_or_raw(arguments) if arguments else None
                input_text = ""
                prefix = "t"
            else:
                input_text = _str(payload.get("input"))
                input_data = {"input": input_text}
                prefix = "ct"
            tool = ToolInfo(
                name=tool_name,
                type=classify_tool_type(tool_name),
                use_id=call_id,
                input=input_data,
            )
            self._append(
                Message(
                    id=f"{prefix}_{index}",
                    timestamp=timestamp,
                    role="agent",
                    model=self.model,
                    tool=tool,
                    path_hints=extract_path_hints(tool_name, input_data, input_text, self.workspace_root),
                ),
                timestamp,
            )
            if call_id:
                self.pending[call_id] = tool
        elif kind in ("function_call_output", "custom_tool_call_output"):
            call_id = _str(payload.get("call_id"))
            output = _str(payload.get("output"))
            if not call_id or not output:
                return
            tool = self.pending.pop(call_id, None)
            if tool is not None:
                tool.output = _decode_object_or_raw(output)


def build_exchanges_from_records(records: Sequence[Mapping[str, Any]], workspace_root: str) -> list[Exchange]:
    """Group records into exchanges; each starts with a user message."""
    builder = _ExchangeBuilder(workspace_root)
    for index, record in enumerate(records):
        record_type = _str(record.get("type"))
        timestamp = _str(record.get("timestamp"))
        payload = record.get("payload")
        if record_type == "turn_context":
            builder.turn_context(payload)
        elif record_type == "event_msg" and isinstance(payload, dict):
            builder.event(index, timestamp, payload)
        elif record_type == "response_item" and isinstance(payload, dict):
            builder.response_item(index, timestamp, payload)
    return builder.finish()


def format_tool_with_summary(tool: ToolInfo, workspace_root: str) -> tuple[str, str]:
    """Return (summary, formatted_markdown) for a tool invocation."""
    summary = ""
    parts: list[str] = []

    if tool.input is not None:
        text_input = tool.input.get("input")
        if isinstance(text_input, str):
            parts.append(format_custom_tool_call(tool.name, text_input))
        elif tool.name in ("shell_command", "exec_command"):
            if "cmd" in tool.input and "command" not in tool.input:
                tool.input["command"] = tool.input["cmd"]
            shell_summary, shell_body = format_shell_with_summary(json.dumps(tool.input))
            if shell_summary:
                summary = f"Tool use: **{tool.name}** {shell_summary}"
            if shell_body:
                parts.append(shell_body)
        else:
            parts.append(format_tool_call(tool.name, json.dumps(tool.input)))

    if tool.output is not None:
        raw = tool.output.get("raw")
        if isinstance(raw, str):
            cleaned = raw.strip()
            if cleaned:
                if "".join(parts):
                    parts.append("\n")
                if len(cleaned) > _OUTPUT_LIMIT:
                    cleaned = cleaned[:_OUTPUT_LIMIT] + "\n... (truncated)"
                parts.append("```\n" + cleaned + "\n```")

    return summary, "".join(parts).strip()


def classify_tool_type(tool_name: str) -> str:
    """Map a Codex tool name onto a standard tool type."""
    return _TOOL_TYPES.get(tool_name, "unknown")


def _add_unique(paths: list[str], path: str) -> None:
    if path not in paths:
        paths.append(path)


def extract_path_hints(
    tool_name: str,
    input_data: Mapping[str, Any] | None,
    input_text: str,
    workspace_root: str,
) -> list[str]:
    """Collect file paths named by a tool call's patch text or common path fields."""
    input_data = input_data or {}
    if tool_name == "apply_patch":
        if input_text:
            return extract_paths_from_patch(input_text, workspace_root)
        patch = input_data.get("input")
        if isinstance(patch, str):
            return extract_paths_from_patch(patch, workspace_root)
        return []

    paths: list[str] = []
    for name in _PATH_FIELDS:
        value = input_data.get(name)
        if isinstance(value, str) and value:
            _add_unique(paths, normalize_workspace_path(value, workspace_root))
    return paths


def extract_paths_from_patch(patch_text: str, workspace_root: str) -> list[str]:
    """Find the file paths named by apply_patch markers, in order and without repeats."""
    paths: list[str] = []
    for raw_line in patch_text.split("\n"):
        line = raw_line.strip()
        marker = next((m for m in _PATCH_MARKERS if line.startswith(m)), None)
        if marker is not None:
            path = line[len(marker):].strip()
            if path:
                _add_unique(paths, normalize_workspace_path(path, workspace_root))
        if line.startswith(_NEW_NAME_MARKER):
            path = line[len(_NEW_NAME_MARKER):].strip()
            if path:
                _add_unique(paths, normalize_workspace_path(path, workspace_root))
    return paths


def extract_usage_from_token_count(payload: Mapping[str, Any] | None) -> Usage | None:
    """Read per-turn usage from a token_count payload's info.last_token_usage."""
    if not payload:
        return None
    info = payload.get("info")
    if not isinstance(info, dict):
        return None
    last = info.get("last_token_usage")
    if not isinstance(last, dict):
        return None
    return Usage(
        input_tokens=get_int_from_map(last, "input_tokens"),
        output_tokens=get_int_from_map(last, "output_tokens"),
        cached_input_tokens=get_int_from_map(last, "cached_input_tokens"),
        reasoning_output_tokens=get_int_from_map(last, "reasoning_output_tokens"),
    )