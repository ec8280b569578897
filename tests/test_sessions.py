import json
import os

import pytest

from codextrace.path_utils import codex_sessions_root
from codextrace.sessions import (
    AgentChatSession,
    HomeDirectoryError,
    SessionInfo,
    SessionMeta,
    SessionMetadata,
    SessionsNotAccessibleError,
    extract_codex_session_metadata,
    find_codex_sessions,
    find_first_user_message,
    generate_readable_name,
    generate_slug,
    load_codex_session_meta,
    process_session_to_agent_chat,
    project_matches,
    read_session_raw_data,
    write_debug_raw_files,
)


def _write(path, content):
    path.write_text(content, encoding="utf-8")
    return str(path)


def _make_session(sessions_dir, year, month, day, filename, session_id, cwd):
    directory = os.path.join(sessions_dir, year, month, day)
    os.makedirs(directory, exist_ok=True)
    meta = {
        "type": "session_meta",
        "timestamp": "2025-10-01T12:00:00Z",
        "payload": {"id": session_id, "timestamp": "2025-10-01T12:00:00Z", "cwd": cwd},
    }
    with open(os.path.join(directory, filename), "w", encoding="utf-8") as handle:
        handle.write(json.dumps(meta) + "\n")


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    return str(tmp_path)


# load_codex_session_meta

def test_load_meta_valid(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","timestamp":"2025-10-01T12:00:00Z","payload":'
        '{"id":"test-session-123","timestamp":"2025-10-01T12:00:00Z","cwd":"/tmp/test"}}\n',
    )
    meta = load_codex_session_meta(path)
    assert meta.session_id == "test-session-123"
    assert meta.cwd == "/tmp/test"
    assert meta.timestamp == "2025-10-01T12:00:00Z"


@pytest.mark.parametrize(
    "content",
    ["", "{invalid json", '{"type":"turn_context","payload":{}}'],
)
def test_load_meta_errors(tmp_path, content):
    path = _write(tmp_path / "s.jsonl", content)
    with pytest.raises(ValueError):
        load_codex_session_meta(path)


def test_load_meta_missing_payload(tmp_path):
    path = _write(tmp_path / "s.jsonl", '{"type":"session_meta","timestamp":"2025-10-01T12:00:00Z"}')
    meta = load_codex_session_meta(path)
    assert (meta.session_id, meta.cwd) == ("", "")


def test_load_meta_extra_fields(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","timestamp":"2025-10-01T12:00:00Z","payload":'
        '{"id":"session-456","timestamp":"2025-10-01T12:00:00Z","cwd":"/home/user","extra":"ignored"}}\n',
    )
    meta = load_codex_session_meta(path)
    assert (meta.session_id, meta.cwd) == ("session-456", "/home/user")


def test_load_meta_missing_file(tmp_path):
    with pytest.raises(OSError):
        load_codex_session_meta(str(tmp_path / "missing.jsonl"))


# read_session_raw_data

def _raw_line_count(raw):
    return len(raw.strip().split("\n")) if raw else 0


@pytest.mark.parametrize(
    "content, records, raw_lines",
    [
        (
            '{"type":"session_meta","payload":{"id":"test-123"}}\n'
            '{"type":"turn_context","payload":{"model":"gpt-5"}}\n'
            '{"type":"response_item","payload":{"type":"message"}}\n',
            3,
            3,
        ),
        ("", 0, 0),
        (
            '{"type":"session_meta","payload":{"id":"test-123"}}\n\n'
            '{"type":"turn_context","payload":{"model":"gpt-5"}}\n\n',
            2,
            2,
        ),
        (
            '{"type":"session_meta","payload":{"id":"test-123"}}\n'
            "{invalid json}\n"
            '{"type":"turn_context","payload":{"model":"gpt-5"}}\n',
            2,
            3,
        ),
        ('{"type":"session_meta","payload":{"data":"' + "x" * (1024 * 1024) + '"}}\n', 1, 1),
    ],
)
def test_read_session_raw_data(tmp_path, content, records, raw_lines):
    path = _write(tmp_path / "s.jsonl", content)
    got_records, raw = read_session_raw_data(path)
    assert len(got_records) == records
    assert _raw_line_count(raw) == raw_lines


def test_read_session_raw_data_normal_file(tmp_path):
    path = _write(tmp_path / "s.jsonl", '{"type":"session_meta","payload":{"id":"test"}}\n')
    records, raw = read_session_raw_data(path)
    assert records == [{"type": "session_meta", "payload": {"id": "test"}}]
    assert raw == '{"type":"session_meta","payload":{"id":"test"}}\n'


def test_read_session_raw_data_no_trailing_newline(tmp_path):
    path = _write(tmp_path / "s.jsonl", '  {"a":1}  \n{"b":2}')
    records, raw = read_session_raw_data(path)
    assert records == [{"a": 1}, {"b": 2}]
    assert raw == '{"a":1}\n{"b":2}\n'


# process_session_to_agent_chat

def _info(path, session_id="test-session-123"):
    meta = SessionMeta(
        record_type="session_meta",
        timestamp="2025-10-01T12:00:00Z",
        session_id=session_id,
        session_timestamp="2025-10-01T12:00:00Z",
        cwd="/tmp/test",
    )
    return SessionInfo(session_id=session_id, session_path=path, meta=meta)


def test_process_valid_session(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","timestamp":"2025-10-01T12:00:00Z","payload":'
        '{"id":"test-session-123","timestamp":"2025-10-01T12:00:00Z","cwd":"/tmp/test"}}\n'
        '{"type":"event_msg","timestamp":"2025-10-01T12:00:01Z","payload":'
        '{"type":"user_message","message":"Test message"}}\n',
    )
    session = process_session_to_agent_chat(_info(path), "/test/workspace", False)
    assert isinstance(session, AgentChatSession)
    assert session.session_id == "test-session-123"
    assert session.created_at == "2025-10-01T12:00:00Z"
    assert session.slug == "test-message"
    assert session.session_data.workspace_root == "/test/workspace"
    assert len(session.session_data.exchanges) == 1
    assert _raw_line_count(session.raw_data) == 2


def test_process_session_with_only_meta(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","timestamp":"2025-10-01T12:00:00Z","payload":'
        '{"id":"minimal-session","timestamp":"2025-10-01T12:00:00Z","cwd":"/tmp/test"}}\n',
    )
    session = process_session_to_agent_chat(_info(path, "minimal-session"), "/test/workspace", False)
    assert session.slug == ""
    assert session.session_data.exchanges == []


def test_process_empty_session(tmp_path):
    path = _write(tmp_path / "s.jsonl", "")
    assert process_session_to_agent_chat(_info(path), "/test/workspace", False) is None


def test_process_session_debug_raw(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","payload":{"id":"dbg","cwd":"/tmp/test"}}\n',
    )
    session = process_session_to_agent_chat(_info(path, "dbg"), "/w", True)
    assert session.session_id == "dbg"
    assert session.session_data.workspace_root == "/w"
    assert _raw_line_count(session.raw_data) == 1
    written = tmp_path / ".tracer" / "debug" / "dbg" / "1.json"
    assert json.loads(written.read_text())["payload"]["id"] == "dbg"


# write_debug_raw_files

def test_write_debug_raw_files(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = write_debug_raw_files("abc", [{"n": 1}, {"n": 2}])
    assert result is None
    directory = tmp_path / ".tracer" / "debug" / "abc"
    assert sorted(os.listdir(directory)) == ["1.json", "2.json"]
    assert json.loads((directory / "1.json").read_text()) == {"n": 1}
    assert json.loads((directory / "2.json").read_text()) == {"n": 2}


# find_codex_sessions

def test_find_no_sessions_match(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "01", "session1.jsonl", "session-123", "/different/project")
    assert find_codex_sessions("/nonexistent/project", "", False) == []


def test_find_single_session(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "01", "session1.jsonl", "session-123", "/tmp/test-project")
    sessions = find_codex_sessions("/tmp/test-project", "", False)
    assert [s.session_id for s in sessions] == ["session-123"]
    assert sessions[0].meta.cwd == "/tmp/test-project"


def test_find_stop_on_first(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "01", "session1.jsonl", "session-123", "/tmp/test-project")
    _make_session(root, "2025", "10", "01", "session2.jsonl", "session-456", "/tmp/test-project")
    sessions = find_codex_sessions("/tmp/test-project", "", True)
    assert [s.session_id for s in sessions] == ["session-456"]


def test_find_all_newest_first(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "01", "session1.jsonl", "session-123", "/tmp/test-project")
    _make_session(root, "2025", "10", "02", "session2.jsonl", "session-456", "/tmp/test-project")
    sessions = find_codex_sessions("/tmp/test-project", "", False)
    assert [s.session_id for s in sessions] == ["session-456", "session-123"]


def test_find_across_dates_filters_cwd(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "09", "30", "session1.jsonl", "session-123", "/tmp/test-project")
    _make_session(root, "2025", "10", "01", "session2.jsonl", "session-456", "/tmp/test-project")
    _make_session(root, "2025", "10", "01", "session3.jsonl", "session-789", "/different/project")
    sessions = find_codex_sessions("/tmp/test-project", "", False)
    assert len(sessions) == 2


def test_find_global_mode(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "01", "a.jsonl", "one", "/p/one")
    _make_session(root, "2025", "10", "01", "b.jsonl", "two", "/p/two")
    assert len(find_codex_sessions("", "", False)) == 2


@pytest.mark.parametrize(
    "layout, target, expected",
    [
        (
            [("03", "target-session"), ("02", "other-session-2"), ("01", "other-session-1")],
            "target-session",
            ["target-session"],
        ),
        (
            [("03", "other-session-3"), ("02", "target-session"), ("01", "other-session-1")],
            "target-session",
            ["target-session"],
        ),
        (
            [("03", "other-session-3"), ("02", "other-session-2"), ("01", "target-session")],
            "target-session",
            ["target-session"],
        ),
        (
            [("02", "other-session-2"), ("01", "other-session-1")],
            "nonexistent-session",
            [],
        ),
    ],
)
def test_find_short_circuit(home, layout, target, expected):
    root = codex_sessions_root(home)
    for day, session_id in layout:
        _make_session(root, "2025", "10", day, f"session{day}.jsonl", session_id, "/tmp/test-project")
    sessions = find_codex_sessions("/tmp/test-project", target, False)
    assert [s.session_id for s in sessions] == expected


def test_find_target_in_different_project(home):
    root = codex_sessions_root(home)
    _make_session(root, "2025", "10", "02", "session2.jsonl", "other-session", "/tmp/test-project")
    _make_session(root, "2025", "10", "01", "session1.jsonl", "target-session", "/different/project")
    assert find_codex_sessions("/tmp/test-project", "target-session", False) == []


def test_find_missing_sessions_root(home):
    with pytest.raises(SessionsNotAccessibleError, match="sessions directory not accessible"):
        find_codex_sessions("/tmp/test-project", "", False)


def test_find_sessions_root_is_file(home):
    os.makedirs(os.path.join(home, ".codex"))
    with open(codex_sessions_root(home), "w", encoding="utf-8") as handle:
        handle.write("x")
    with pytest.raises(SessionsNotAccessibleError, match="sessions root"):
        find_codex_sessions("/tmp/test-project", "", False)


def test_find_without_home(monkeypatch):
    monkeypatch.setenv("HOME", "")
    with pytest.raises(HomeDirectoryError, match="home directory"):
        find_codex_sessions("/tmp/test-project", "", False)


# find_first_user_message and metadata

def test_find_first_user_message():
    records = [
        {"type": "session_meta", "payload": {"id": "x"}},
        {"type": "event_msg", "payload": {"type": "agent_message", "message": "hi"}},
        {"type": "event_msg", "payload": {"type": "user_message", "message": ""}},
        {"type": "event_msg", "payload": {"type": "user_message", "message": "first"}},
        {"type": "event_msg", "payload": {"type": "user_message", "message": "second"}},
    ]
    assert find_first_user_message(records) == "first"
    assert find_first_user_message(records[:3]) == ""


def test_extract_metadata(tmp_path):
    path = _write(
        tmp_path / "s.jsonl",
        '{"type":"session_meta","payload":{"id":"m1","cwd":"/tmp/test"}}\n'
        "{broken\n"
        '{"type":"event_msg","payload":{"type":"user_message","message":"Fix the login bug"}}',
    )
    metadata = extract_codex_session_metadata(_info(path, "m1"))
    assert metadata == SessionMetadata(
        session_id="m1",
        created_at="2025-10-01T12:00:00Z",
        slug="fix-the-login-bug",
        name="Fix the login bug",
        workspace_root="/tmp/test",
    )


def test_extract_metadata_without_user_message(tmp_path):
    path = _write(tmp_path / "s.jsonl", '{"type":"session_meta","payload":{"id":"m1"}}\n')
    assert extract_codex_session_metadata(_info(path, "m1")) is None


# project matching and naming

def test_project_matches():
    assert project_matches("/a/b", "  ", "")
    assert project_matches("/a/B", "/a/b", "/a/b")
    assert project_matches("/x", "/x", "")
    assert not project_matches("/a/b", "/a/c", "/a/c")


def test_generate_slug():
    assert generate_slug("") == ""
    assert generate_slug("Fix the login bug!") == "fix-the-login-bug"
    slug = generate_slug("word " * 50)
    assert len(slug) <= 60 and set(slug) <= set("abcdefghijklmnopqrstuvwxyz0123456789-")


def test_generate_readable_name():
    assert generate_readable_name("  hello\n  world ") == "hello world"
    long_name = generate_readable_name("a" * 200)
    assert len(long_name) == 50 and long_name.endswith("...")