"""Discovery and loading of Codex CLI session files."""

from __future__ import annotations

import json
import logging
import os
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from .agent_session import generate_agent_session
from .models import SessionData
from .path_utils import codex_sessions_root, normalize_codex_path, read_dir_sorted_desc

logger = logging.getLogger(__name__)

KB = 1024
MB = 1024 * 1024
MAX_REASONABLE_LINE_SIZE = 250 * MB
_LARGE_LINE_SIZE = 10 * MB

_SLUG_MAX_WORDS = 6
_SLUG_MAX_LENGTH = 60
_NAME_MAX_LENGTH = 50


class SessionsNotAccessibleError(OSError):
    """The Codex sessions directory is missing, unreadable or not a directory."""


class HomeDirectoryError(RuntimeError):
    """The user's home directory cannot be determined."""


@dataclass
class SessionMeta:
    """The session_meta record that opens every Codex session file."""

    record_type: str = ""
    timestamp: str = ""
    session_id: str = ""
    session_timestamp: str = ""
    cwd: str = ""


@dataclass
class SessionInfo:
    """A session file found on disk together with its metadata."""

    session_id: str
    session_path: str
    meta: SessionMeta


@dataclass
class AgentChatSession:
    """A fully parsed session ready to hand to a consumer."""

    session_id: str
    created_at: str
    slug: str
    session_data: SessionData | None
    raw_data: str


@dataclass
class SessionMetadata:
    """Lightweight description of a session, read without full parsing."""

    session_id: str
    created_at: str
    slug: str
    name: str
    workspace_root: str


def _user_home_dir() -> str:
    home = os.environ.get("HOME", "")
    if not home:
        raise HomeDirectoryError("failed to determine home directory: $HOME is not defined")
    return home


def _is_dir(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def _sub_dirs(path: str) -> Iterator[str]:
    """Yield the sub-directories of path, highest name first; unreadable gives nothing."""
    try:
        entries = read_dir_sorted_desc(path)
    except OSError as exc:
        logger.debug("cannot read Codex directory %s: %s", path, exc)
        return
    for entry in entries:
        if _is_dir(entry):
            yield os.path.join(path, entry.name)


def project_matches(cwd: str, project_path: str, normalized_project_path: str) -> bool:
    """True if a session's normalised cwd belongs to the project.

    A blank project path matches every session.
    """
    if not project_path.strip():
        return True
    target = normalized_project_path or project_path
    return cwd == target or cwd.casefold() == target.casefold()


def find_codex_sessions(
    project_path: str, target_session_id: str, stop_on_first: bool
) -> list[SessionInfo]:
    """Walk the YYYY/MM/DD sessions tree, newest first, for sessions of a project.

    With a target session id the walk stops once that session is found; otherwise
    it stops after the first match when stop_on_first is set.
    """
    normalized_project = normalize_codex_path(project_path)
    if not normalized_project:
        logger.debug("unable to normalize project path %r", project_path)

    sessions_root = codex_sessions_root(_user_home_dir())
    try:
        is_directory = os.path.isdir(sessions_root) and os.stat(sessions_root) is not None
        if not os.path.exists(sessions_root):
            raise FileNotFoundError(sessions_root)
    except OSError as exc:
        raise SessionsNotAccessibleError(f"sessions directory not accessible: {exc}") from exc
    if not is_directory:
        raise SessionsNotAccessibleError(f"sessions root is not a directory: {sessions_root}")

    try:
        read_dir_sorted_desc(sessions_root)
    except OSError as exc:
        raise SessionsNotAccessibleError(f"failed to read sessions root: {exc}") from exc

    sessions: list[SessionInfo] = []
    for year_dir in _sub_dirs(sessions_root):
        for month_dir in _sub_dirs(year_dir):
            for day_dir in _sub_dirs(month_dir):
                try:
                    entries = read_dir_sorted_desc(day_dir)
                except OSError as exc:
                    logger.debug("cannot read Codex day directory %s: %s", day_dir, exc)
                    continue
                for entry in entries:
                    if _is_dir(entry) or not entry.name.endswith(".jsonl"):
                        continue
                    session_path = os.path.join(day_dir, entry.name)
                    try:
                        meta = load_codex_session_meta(session_path)
                    except (OSError, ValueError) as exc:
                        logger.debug("cannot load session meta from %s: %s", session_path, exc)
                        continue

                    session_id = meta.session_id.strip()
                    normalized_cwd = normalize_codex_path(meta.cwd)
                    if not normalized_cwd:
                        logger.debug("session %s at %s has no cwd", session_id, session_path)
                        continue
                    if not project_matches(normalized_cwd, project_path, normalized_project):
                        continue
                    if target_session_id and session_id != target_session_id:
                        continue

                    logger.debug("session %s at %s matches project", session_id, session_path)
                    sessions.append(SessionInfo(session_id, session_path, meta))
                    if target_session_id or stop_on_first:
                        return sessions
    return sessions


def _binary_lines(path: str) -> Iterator[bytes]:
    with open(path, "rb") as handle:
        yield from handle


def read_session_raw_data(session_path: str) -> tuple[list[dict[str, Any]], str]:
    """Read every JSONL record of a session file.

    Returns the parsed records and the non-blank lines as raw text. Corrupted
    lines are skipped but kept in the raw text. Raises OSError when the file
    cannot be read and ValueError when a line exceeds the size limit.
    """
    records: list[dict[str, Any]] = []
    raw_lines: list[str] = []
    name = os.path.basename(session_path)

    for line_number, raw in enumerate(_binary_lines(session_path), start=1):
        if raw.endswith(b"\n"):
            raw = raw[:-1]
        if not raw:
            continue
        if len(raw) > MAX_REASONABLE_LINE_SIZE:
            logger.warning(
                "line %d of %s is %d MB, over the %d MB limit",
                line_number, name, len(raw) // MB, MAX_REASONABLE_LINE_SIZE // MB,
            )
            raise ValueError(
                f"line {line_number} exceeds reasonable size limit "
                f"({MAX_REASONABLE_LINE_SIZE // MB} MB): refusing to process potentially malformed file"
            )
        if len(raw) > _LARGE_LINE_SIZE:
            logger.debug("processing large line %d of %s (%d MB)", line_number, name, len(raw) // MB)

        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        raw_lines.append(line + "\n")

        try:
            record = json.loads(line)
        except ValueError as exc:
            logger.warning("skipping corrupted line %d of %s: %s", line_number, name, exc)
            continue
        if not isinstance(record, dict):
            logger.warning("skipping non-object line %d of %s", line_number, name)
            continue
        records.append(record)

    return records, "".join(raw_lines)


def _meta_str(mapping: Mapping[str, Any], key: str) -> str:
    value = mapping.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"failed to parse codex session meta: field {key!r} is not a string")
    return value


def load_codex_session_meta(session_path: str) -> SessionMeta:
    """Parse the session_meta record on the first line of a session file.

    Raises OSError when the file cannot be read and ValueError when the first
    line is missing, empty, malformed or not a session_meta record.
    """
    with open(session_path, "rb") as handle:
        first = handle.readline()
    if not first:
        raise ValueError("codex session meta not found")

    line = first.decode("utf-8", errors="replace").strip()
    if not line:
        raise ValueError("codex session meta is empty")

    try:
        data = json.loads(line)
    except ValueError as exc:
        raise ValueError(f"failed to parse codex session meta: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("failed to parse codex session meta: not a JSON object")
    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValueError("failed to parse codex session meta: payload is not an object")

    meta = SessionMeta(
        record_type=_meta_str(data, "type"),
        timestamp=_meta_str(data, "timestamp"),
        session_id=_meta_str(payload, "id"),
        session_timestamp=_meta_str(payload, "timestamp"),
        cwd=_meta_str(payload, "cwd"),
    )
    if meta.record_type != "session_meta":
        raise ValueError(f"unexpected codex session record type: {meta.record_type}")
    return meta


def process_session_to_agent_chat(
    session_info: SessionInfo, workspace_root: str, debug_raw: bool
) -> AgentChatSession | None:
    """Read and convert a session file; None when it holds no records.

    Raises OSError or ValueError when the file cannot be read, and
    SessionRecordError when its records cannot be converted.
    """
    records, raw_data = read_session_raw_data(session_info.session_path)
    if not records:
        return None

    slug = generate_slug(find_first_user_message(records))
    if slug:
        logger.debug("session %s has slug %s", session_info.session_id, slug)
    else:
        logger.debug("session %s has no user message for a slug yet", session_info.session_id)

    session_data = generate_agent_session(records, workspace_root)

    if debug_raw:
        try:
            write_debug_raw_files(session_info.session_id, records)
        except OSError as exc:
            logger.debug("cannot write debug files for %s: %s", session_info.session_id, exc)

    return AgentChatSession(
        session_id=session_info.session_id,
        created_at=session_info.meta.timestamp,
        slug=slug,
        session_data=session_data,
        raw_data=raw_data,
    )


def _debug_dir(session_id: str) -> str:
    return os.path.join(".tracer", "debug", session_id)


def write_debug_raw_files(session_id: str, records: Sequence[Mapping[str, Any]]) -> None:
    """Write each record as pretty-printed JSON to .tracer/debug/<session_id>/<n>.json.

    Raises OSError when the directory cannot be created; failures on single
    files are logged and skipped.
    """
    debug_dir = _debug_dir(session_id)
    os.makedirs(debug_dir, mode=0o755, exist_ok=True)
    for number, record in enumerate(records, start=1):
        path = os.path.join(debug_dir, f"{number}.json")
        try:
            text = json.dumps(record, indent=2, sort_keys=True, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.debug("cannot encode record %d: %s", number, exc)
            continue
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(text)
        except OSError as exc:
            logger.debug("cannot write debug file %s: %s", path, exc)
            continue
        logger.debug("wrote debug file %s", path)


def _user_message(record: Mapping[str, Any]) -> str:
    if record.get("type") != "event_msg":
        return ""
    payload = record.get("payload")
    if not isinstance(payload, dict) or payload.get("type") != "user_message":
        return ""
    message = payload.get("message")
    return message if isinstance(message, str) else ""


def find_first_user_message(records: Sequence[Mapping[str, Any]]) -> str:
    """Return the text of the first non-empty user message, or ""."""
    for record in records:
        message = _user_message(record)
        if message:
            logger.debug("first user message: %s", message[:100])
            return message
    logger.debug("no user message found in session")
    return ""


def extract_codex_session_metadata(session_info: SessionInfo) -> SessionMetadata | None:
    """Read just far enough to find the first user message and describe the session.

    Returns None when the session has no user message. Raises OSError when the
    file cannot be read.
    """
    first_message = ""
    name = os.path.basename(session_info.session_path)
    for line_number, raw in enumerate(_binary_lines(session_info.session_path), start=1):
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError as exc:
            logger.warning("skipping malformed line %d of %s: %s", line_number, name, exc)
            continue
        if isinstance(record, dict):
            first_message = _user_message(record)
            if first_message:
                break

    if not first_message:
        return None
    return SessionMetadata(
        session_id=session_info.session_id,
        created_at=session_info.meta.timestamp,
        slug=generate_slug(first_message),
        name=generate_readable_name(first_message),
        workspace_root=session_info.meta.cwd.strip(),
    )


def generate_slug(message: str) -> str:
    """Make a lower-case, hyphen-separated filename slug from the first words of message."""
    ascii_text = (
        unicodedata.normalize("NFKD", message).encode("ascii", "ignore").decode("ascii").lower()
    )
    words = re.findall(r"[a-z0-9]+", ascii_text)[:_SLUG_MAX_WORDS]
    slug = "-".join(words)
    if len(slug) > _SLUG_MAX_LENGTH:
        slug = slug[:_SLUG_MAX_LENGTH].rstrip("-")
    return slug


def generate_readable_name(message: str) -> str:
    """Make a short one-line title from message, shortened with "..." when long."""
    text = " ".join(message.split())
    if len(text) > _NAME_MAX_LENGTH:
        return text[: _NAME_MAX_LENGTH - 3].rstrip() + "..."
    return text