"""Watching the Codex sessions tree for new and updated session files."""

from __future__ import annotations

import enum
import logging
import os
import queue
import threading
from datetime import datetime
from typing import Callable

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .path_utils import codex_sessions_root, normalize_codex_path
from .sessions import (
    AgentChatSession,
    HomeDirectoryError,
    SessionInfo,
    find_codex_sessions,
    load_codex_session_meta,
    process_session_to_agent_chat,
    project_matches,
)

logger = logging.getLogger(__name__)

SessionCallback = Callable[[AgentChatSession], None]

_POLL_INTERVAL = 0.2


class _Op(enum.Enum):
    CREATE = "create"
    WRITE = "write"
    REMOVE = "remove"


class _EventQueue(FileSystemEventHandler):
    """Forwards filesystem events to a queue as (operation, path) pairs."""

    def __init__(self, events: queue.Queue):
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        kind = event.event_type
        if kind == EVENT_TYPE_CREATED:
            self._events.put((_Op.CREATE, os.fsdecode(event.src_path)))
        elif kind == EVENT_TYPE_MODIFIED:
            self._events.put((_Op.WRITE, os.fsdecode(event.src_path)))
        elif kind == EVENT_TYPE_DELETED:
            self._events.put((_Op.REMOVE, os.fsdecode(event.src_path)))
        elif kind == EVENT_TYPE_MOVED:
            self._events.put((_Op.CREATE, os.fsdecode(event.dest_path)))


def _home_dir() -> str:
    home = os.environ.get("HOME", "")
    if not home:
        raise HomeDirectoryError("failed to get home directory: $HOME is not defined")
    return home


def watch_for_codex_sessions(
    stop_event: threading.Event,
    project_path: str,
    resume_session_id: str,
    debug_raw: bool,
    session_callback: SessionCallback,
) -> None:
    """Watch for Codex sessions of a project until stop_event is set.

    With a resume session id, the directory holding that session is scanned
    first; otherwise today's directory is. Raises LookupError when the resumed
    session cannot be found.
    """
    logger.info(
        "watching Codex sessions for project %r (resume %r)", project_path, resume_session_id
    )
    sessions_root = codex_sessions_root(_home_dir())

    if resume_session_id:
        sessions = find_codex_sessions(project_path, resume_session_id, False)
        if not sessions:
            raise LookupError(f"resumed session {resume_session_id} not found")
        initial_day_dir = os.path.dirname(sessions[0].session_path)
        logger.info("resumed session lives in %s", initial_day_dir)
    else:
        now = datetime.now()
        initial_day_dir = os.path.join(
            sessions_root, f"{now.year:04d}", f"{now.month:02d}", f"{now.day:02d}"
        )

    start_codex_session_watcher(
        stop_event, project_path, sessions_root, initial_day_dir, debug_raw, session_callback
    )


def dir_type(path: str, sessions_root: str) -> str:
    """Classify path under sessions_root as "year", "month", "day" or ""."""
    try:
        rel = os.path.relpath(path, sessions_root)
    except ValueError:
        return ""
    if rel.startswith(".."):
        return ""
    parts = rel.replace(os.sep, "/").split("/")
    widths = [len(part) for part in parts]
    if widths == [4]:
        return "year"
    if widths == [4, 2]:
        return "month"
    if widths == [4, 2, 2]:
        return "day"
    return ""


class _HierarchyWatch:
    """Keeps non-recursive watches on the root, year, month and day directories."""

    def __init__(
        self,
        observer,
        handler: FileSystemEventHandler,
        project_path: str,
        debug_raw: bool,
        callback: SessionCallback,
    ):
        self._observer = observer
        self._handler = handler
        self._project_path = project_path
        self._debug_raw = debug_raw
        self._callback = callback
        self._watched: set[str] = set()
        self._lock = threading.Lock()

    def add(self, directory: str) -> None:
        with self._lock:
            if directory in self._watched:
                return
            if not os.path.isdir(directory):
                raise FileNotFoundError(directory)
            self._observer.schedule(self._handler, directory, recursive=False)
            self._watched.add(directory)
        logger.info("added watch on %s", directory)

    def scan_day(self, day_dir: str) -> None:
        if os.path.exists(day_dir):
            logger.info("scanning day directory %s", day_dir)
            scan_codex_sessions(self._project_path, day_dir, None, self._debug_raw, self._callback)

    def _child_dirs(self, directory: str, width: int) -> list[str]:
        try:
            with os.scandir(directory) as entries:
                return [
                    os.path.join(directory, entry.name)
                    for entry in entries
                    if entry.is_dir() and len(entry.name) == width
                ]
        except OSError as exc:
            logger.debug("cannot read directory %s: %s", directory, exc)
            return []

    def _try_add(self, directory: str, kind: str) -> bool:
        try:
            self.add(directory)
        except OSError as exc:
            logger.error("failed to watch %s directory %s: %s", kind, directory, exc)
            return False
        return True

    def day(self, day_dir: str) -> None:
        if self._try_add(day_dir, "day"):
            self.scan_day(day_dir)

    def month(self, month_dir: str) -> None:
        if self._try_add(month_dir, "month"):
            for day_dir in self._child_dirs(month_dir, 2):
                self.day(day_dir)

    def year(self, year_dir: str) -> None:
        if self._try_add(year_dir, "year"):
            for month_dir in self._child_dirs(year_dir, 2):
                self.month(month_dir)

    def root(self, sessions_root: str) -> None:
        self.add(sessions_root)
        for year_dir in self._child_dirs(sessions_root, 4):
            self.year(year_dir)


def start_codex_session_watcher(
    stop_event: threading.Event,
    project_path: str,
    sessions_root: str,
    initial_day_dir: str,
    debug_raw: bool,
    session_callback: SessionCallback,
) -> None:
    """Watch sessions_root/YYYY/MM/DD for session files until stop_event is set.

    The initial day directory is scanned at once if it exists. Raises OSError
    when the sessions root cannot be watched.
    """
    events: queue.Queue = queue.Queue()
    observer = Observer()
    observer.start()
    try:
        hierarchy = _HierarchyWatch(
            observer, _EventQueue(events), project_path, debug_raw, session_callback
        )
        try:
            hierarchy.root(sessions_root)
        except OSError as exc:
            logger.error("error watching sessions root %s: %s", sessions_root, exc)
            raise
        hierarchy.scan_day(initial_day_dir)

        logger.info("watching for file and directory events")
        while not stop_event.is_set():
            try:
                op, path = events.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if not observer.is_alive():
                    logger.info("observer stopped, ending watch")
                    return
                continue

            parent = os.path.dirname(path)
            if path.endswith(".jsonl"):
                if op in (_Op.CREATE, _Op.WRITE):
                    logger.info("session file %s: %s", op.value, path)
                    scan_codex_sessions(project_path, parent, path, debug_raw, session_callback)
                else:
                    logger.info("session file removed: %s", path)
                    scan_codex_sessions(project_path, parent, None, debug_raw, session_callback)
                continue

            if op is _Op.CREATE:
                kind = dir_type(path, sessions_root)
                if kind == "year":
                    hierarchy.year(path)
                elif kind == "month":
                    hierarchy.month(path)
                elif kind == "day":
                    hierarchy.day(path)
        logger.info("stop requested, ending watch")
    finally:
        observer.stop()
        observer.join(timeout=5)


def scan_codex_sessions(
    project_path: str,
    session_dir: str,
    changed_file: str | None,
    debug_raw: bool,
    callback: SessionCallback | None,
) -> None:
    """Process the session files of session_dir, or only changed_file when given.

    Failures are logged, never raised.
    """
    try:
        if callback is None:
            logger.error("scan_codex_sessions called without a callback")
            return
        normalized_project = normalize_codex_path(project_path)

        if changed_file is not None:
            paths = [changed_file]
        else:
            try:
                with os.scandir(session_dir) as entries:
                    paths = [
                        os.path.join(session_dir, entry.name)
                        for entry in entries
                        if not entry.is_dir() and entry.name.endswith(".jsonl")
                    ]
            except OSError as exc:
                logger.error("failed to read session directory %s: %s", session_dir, exc)
                return

        for path in paths:
            try:
                process_codex_session_file(
                    path, project_path, normalized_project, debug_raw, callback
                )
            except Exception as exc:  # one bad file must not stop the scan
                logger.debug("failed to process session file %s: %s", path, exc)
    except Exception:
        logger.exception("unexpected failure while scanning %s", session_dir)


def _run_callback(callback: SessionCallback, session: AgentChatSession) -> None:
    try:
        callback(session)
    except Exception:
        logger.exception("session callback failed for %s", session.session_id)


def process_codex_session_file(
    session_path: str,
    project_path: str,
    normalized_project_path: str,
    debug_raw: bool,
    callback: SessionCallback,
) -> threading.Thread | None:
    """Hand a matching session file to callback on a background thread.

    Returns that thread, or None when the session belongs to another project,
    is empty or has no user message. Raises ValueError or OSError when the
    file cannot be read.
    """
    meta = load_codex_session_meta(session_path)
    session_id = meta.session_id.strip()
    normalized_cwd = normalize_codex_path(meta.cwd)
    if not normalized_cwd:
        raise ValueError("session meta missing cwd")

    if not project_matches(normalized_cwd, project_path, normalized_project_path):
        logger.debug(
            "session %s (cwd %s) does not match project %s",
            session_id, normalized_cwd, normalized_project_path,
        )
        return None

    info = SessionInfo(session_id=session_id, session_path=session_path, meta=meta)
    session = process_session_to_agent_chat(info, project_path, debug_raw)
    if session is None:
        logger.debug("skipping empty session %s", session_id)
        return None
    if not session.slug:
        logger.debug("skipping session %s without a user message", session.session_id)
        return None

    logger.info("calling callback for session %s", session.session_id)
    thread = threading.Thread(target=_run_callback, args=(callback, session), daemon=True)
    thread.start()
    return thread