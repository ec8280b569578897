"""Markdown rendering for Codex CLI tool invocations."""

from __future__ import annotations

import json
from typing import Any

TODO_STATUS_PENDING = "pending"
TODO_STATUS_IN_PROGRESS = "in_progress"
TODO_STATUS_COMPLETED = "completed"

_CHECKBOXES = {
    TODO_STATUS_PENDING: "- [ ]",
    TODO_STATUS_IN_PROGRESS: "- [⚡]",
    TODO_STATUS_COMPLETED: "- [X]",
}

_OPEN_FILE_MARKERS = (
    ("*** Add File: ", "add"),
    ("*** Modify File: ", "modify"),
    ("*** Update File: ", "update"),
)
_DELETE_FILE_MARKER = "*** Delete File: "
_INPUT_PREVIEW_LIMIT = 200


def _parse_object(text: str) -> dict[str, Any] | None:
    """Decode a JSON object, returning None when the text is not one."""
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _non_empty_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def format_update_plan(tool_name: str, arguments_json: str) -> str:
    """Render an update_plan call as a markdown checkbox list."""
    args = _parse_object(arguments_json)
    if args is None:
        return ""
    plan = args.get("plan")
    if not isinstance(plan, list) or not plan:
        return ""

    lines = ["**Agent task list:**\n"]
    for item in plan:
        if not isinstance(item, dict):
            continue
        step = _non_empty_str(item.get("step"))
        if not step:
            continue
        status = _non_empty_str(item.get("status"))
        checkbox = _CHECKBOXES.get(status, "- [ ]")
        lines.append(f"{checkbox} {step}\n")
    return "".join(lines)


def format_shell_with_summary(arguments_json: str) -> tuple[str, str]:
    """Return (summary, body) for a shell command.

    Single-line commands go into the summary as inline code; multi-line
    commands go into the body as a bash code fence.
    """
    args = _parse_object(arguments_json)
    if args is None:
        return "", ""
    command = _non_empty_str(args.get("command"))
    if not command:
        return "", ""
    if "\n" in command:
        return "", f"```bash\n{command}\n```"
    return f"`{command}`", ""


def format_view_image(tool_name: str, arguments_json: str) -> str:
    """Render a view_image call as the image path."""
    args = _parse_object(arguments_json)
    if args is None:
        return ""
    path = _non_empty_str(args.get("path"))
    if not path:
        return ""
    return f"{path}\n"


def capitalize_first(s: str) -> str:
    """Upper-case the first character of s."""
    if not s:
        return s
    return s[:1].upper() + s[1:]


def _patch_section(operation: str, filename: str, content: list[str]) -> str:
    if not content:
        return ""
    return (
        f"**{capitalize_first(operation)}: `{filename}`**\n\n"
        "```diff\n" + "".join(content) + "```\n\n"
    )


def format_apply_patch(tool_name: str, input_text: str) -> str:
    """Render apply_patch input as per-file diff sections."""
    if not input_text:
        return ""

    parts: list[str] = []
    current_file = ""
    current_op = ""
    content: list[str] = []
    in_patch = False

    for line in input_text.split("\n"):
        if line.startswith("*** Begin Patch"):
            in_patch = True
            continue
        if line.startswith("*** End Patch"):
            if current_file:
                parts.append(_patch_section(current_op, current_file, content))
            break
        if not in_patch:
            continue

        opened = next(
            ((marker, op) for marker, op in _OPEN_FILE_MARKERS if line.startswith(marker)),
            None,
        )
        if opened is not None:
            marker, op = opened
            if current_file:
                parts.append(_patch_section(current_op, current_file, content))
            current_file = line[len(marker):]
            current_op = op
            content = []
        elif line.startswith(_DELETE_FILE_MARKER):
            if current_file:
                parts.append(_patch_section(current_op, current_file, content))
            deleted = line[len(_DELETE_FILE_MARKER):]
            content = []
            parts.append(f"**Delete: `{deleted}`**\n\n")
            current_file = ""
            current_op = ""
        elif current_file:
            content.append(line + "\n")

    return "".join(parts)


def format_tool_call(tool_name: str, arguments_json: str) -> str:
    """Render a function call with JSON arguments, or "" when unsupported."""
    if tool_name == "update_plan":
        return format_update_plan(tool_name, arguments_json)
    if tool_name == "view_image":
        return format_view_image(tool_name, arguments_json)
    return ""


def format_custom_tool_call(tool_name: str, input_text: str) -> str:
    """Render a custom tool call whose input is plain text."""
    if tool_name == "apply_patch":
        return format_apply_patch(tool_name, input_text)
    if not input_text:
        return ""
    if len(input_text) > _INPUT_PREVIEW_LIMIT:
        return f"\n\nInput (truncated): ```\n{input_text[:_INPUT_PREVIEW_LIMIT]}\n...\n```\n"
    return f"\n\nInput: ```\n{input_text}\n```\n"