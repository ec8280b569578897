# codextrace

`codextrace` finds the session logs that the Codex CLI writes under
`~/.codex/sessions/YYYY/MM/DD/*.jsonl` and turns them into structured
conversations: exchanges made of user messages, agent replies, reasoning,
tool calls with their outputs, token usage and the file paths each tool
touched. It can also keep watching the sessions directory and hand you each
session as it changes.

The home directory is taken from `$HOME`.

## Checking the installation

```python
from codextrace.provider import Provider

provider = Provider()
result = provider.check("")          # or a custom command, e.g. "/opt/local/bin/codex"
if result.success:
    print(result.version, result.location)
else:
    print(result.error_message)
```

With no command, `check` looks for the `codex` binary via `HOMEBREW_PREFIX`,
`brew --prefix`, `/opt/homebrew/bin`, `NVM_BIN`, `npm bin -g` and `NVM_DIR`,
then falls back to `codex` on the `PATH`. It runs the binary with `--version`
(falling back to `-V`) and, on failure, `error_message` explains whether the
binary was not found, could not be run, printed nothing, or failed otherwise.
The lower-level helpers live in `codextrace.cli_exec`
(`parse_codex_command`, `run_codex_version_command`, `classify_check_error`).

## Reading sessions for a project

```python
from codextrace.provider import Provider

provider = Provider()

if provider.detect_agent("/path/to/project", True):
    for meta in provider.list_agent_chat_sessions("/path/to/project"):
        print(meta.session_id, meta.created_at, meta.name)

    sessions = provider.get_agent_chat_sessions(
        "/path/to/project",
        False,
        lambda done, total: print(f"{done}/{total}"),
    )
    for chat in sessions:
        print(chat.slug, len(chat.session_data.exchanges))
```

- A session belongs to a project when its recorded working directory equals
  the project path (after resolving it, compared case-insensitively). An
  empty project path means every session.
- Sessions are returned newest first, following the date directories.
- `detect_agent` prints guidance when `help_output` is true and nothing is found.
- `list_agent_chat_sessions` reads each file only up to the first user message
  and skips sessions that have none.
- `get_agent_chat_sessions` fully parses each file, skipping files that cannot
  be read or hold no records; `progress` is called as `(done, total)`.
- If the sessions directory is missing, both return an empty list.

## Building a session from records

If you already have the parsed JSONL records of one session:

```python
from codextrace.agent_session import generate_agent_session

session = generate_agent_session(records, "/path/to/project")
document = session.to_dict()
```

The first record must be a `session_meta` record with a session id;
otherwise a `SessionRecordError` is raised. Each tool call gets a short
summary and a Markdown rendering: shell commands, plan updates, image views
and `apply_patch` diffs are formatted by `codextrace.markdown_tools`, and raw
tool output is shown in a code block, cut at 5000 characters. The data
classes (`SessionData`, `Exchange`, `Message`, `ToolInfo`, `Usage`, ...) are
in `codextrace.models`.

## Watching for activity

```python
import threading
from codextrace.provider import Provider

stop = threading.Event()
Provider().watch_agent(stop, "/path/to/project", False, lambda chat: print(chat.session_id))
```

`watch_agent` blocks until `stop` is set. It watches the sessions root and
every year, month and day directory below it, picks up new directories as
they appear, scans today's directory at start, and rescans a session file
whenever it is created or written. Sessions without a user message are not
reported. The callback runs on a background thread; exceptions it raises are
logged.

## Debug output

Passing `True` for `debug_raw` writes every raw record of a processed session
as a numbered, pretty-printed JSON file into `.tracer/debug/<session_id>/`
under the current directory.

## What this package does not do

It is a library only: it has no command-line program. It reads session
files but does not store, upload or export the results anywhere.