"""The Codex CLI provider: installation checks, session discovery and watching."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from typing import Callable

from .cli_exec import (
    VersionCommandError,
    classify_check_error,
    parse_codex_command,
    run_codex_version_command,
)
from .path_utils import codex_sessions_root
from .sessions import (
    AgentChatSession,
    HomeDirectoryError,
    SessionMetadata,
    SessionsNotAccessibleError,
    extract_codex_session_metadata,
    find_codex_sessions,
    process_session_to_agent_chat,
)
from .watcher import watch_for_codex_sessions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
SessionCallback = Callable[[AgentChatSession], None]


@dataclass
class CheckResult:
    """Outcome of checking the Codex CLI installation."""

    success: bool
    version: str = ""
    location: str = ""
    error_message: str = ""


def build_check_error_message(
    error_type: str, codex_cmd: str, is_custom: bool, stderr_output: str
) -> str:
    """Compose user guidance for a failed installation check."""
    lines: list[str] = []
    if error_type == "not_found":
        lines.append(f"Could not find Codex CLI at: {codex_cmd}\n\n")
        lines.append("How to fix:\n")
        if is_custom:
            lines.append("- Double-check the custom command/path.\n")
            lines.append("- Ensure the file exists and is executable.\n")
            lines.append("- If the binary lives elsewhere, use an absolute path.")
        else:
            lines.append("- Check common installation locations:\n")
            lines.append("  Homebrew: /opt/homebrew/bin/codex (brew install codex)\n")
            lines.append("  npm: $(npm bin -g)/codex (npm install -g codex)\n")
            lines.append("- If installed already, ensure `codex` is in PATH.\n")
            lines.append("- Use `-c` to specify the full path.\n")
            lines.append('- Example: tracer config check codex -c "/opt/local/bin/codex"')
    elif error_type == "permission_denied":
        lines.append(f"Permission denied when trying to run: {codex_cmd}\n\n")
        lines.append("How to fix:\n")
        lines.append(f"- Ensure the binary is executable: chmod +x {codex_cmd}\n")
        lines.append("- Run the command manually to confirm it works outside Tracer.")
    elif error_type == "no_output":
        lines.append("No version information from codex\n\n")
        lines.append("The command ran but produced no output.\n")
        lines.append(f"- Try running '{codex_cmd} --version' directly.\n")
        lines.append("- If using a wrapper script, pass the real codex binary with -c.")
    else:
        lines.append(f"Error running '{codex_cmd} --version'\n")
        if stderr_output:
            lines.append(f"Details: {stderr_output}\n")
        lines.append("\nTroubleshooting:\n")
        lines.append("- Make sure Codex CLI is correctly installed.\n")
        lines.append("- Run 'codex --version' directly in your terminal.\n")
        lines.append("- See the Codex CLI installation documentation.")
    return "".join(lines)


def _say(text: str) -> None:
    print(text, end="")


def _sessions_root_for_display() -> str:
    return codex_sessions_root(os.environ.get("HOME", ""))


class Provider:
    """Access to OpenAI Codex CLI sessions stored under ~/.codex/sessions."""

    def name(self) -> str:
        """The human-readable provider name."""
        return "Codex CLI"

    def check(self, custom_command: str = "") -> CheckResult:
        """Verify the Codex CLI runs and report its version and location."""
        codex_cmd, _ = parse_codex_command(custom_command)
        is_custom = bool(custom_command)

        resolved = codex_cmd
        if not os.path.isabs(codex_cmd):
            found = shutil.which(codex_cmd)
            if found:
                resolved = found

        try:
            output, flag, stderr = run_codex_version_command(codex_cmd)
        except VersionCommandError as exc:
            error_type = classify_check_error(exc)
            return CheckResult(
                success=False,
                location=resolved,
                error_message=build_check_error_message(
                    error_type, codex_cmd, is_custom, exc.stderr
                ),
            )

        if not output:
            return CheckResult(
                success=False,
                location=resolved,
                error_message=build_check_error_message("no_output", codex_cmd, is_custom, stderr),
            )

        logger.debug("Codex CLI check passed: %s at %s (flag %s)", output, resolved, flag)
        return CheckResult(success=True, version=output, location=resolved)

    def detect_agent(self, project_path: str, help_output: bool) -> bool:
        """True if Codex CLI has saved a session for project_path."""
        try:
            sessions = find_codex_sessions(project_path, "", True)
        except HomeDirectoryError as exc:
            logger.debug("cannot resolve home directory: %s", exc)
            if help_output:
                print()
                _say("Could not scan Codex CLI sessions for this directory.\n")
                _say("Reason: failed to determine your home directory.\n")
                print()
            return False
        except SessionsNotAccessibleError as exc:
            logger.debug("Codex sessions directory not accessible: %s", exc)
            if help_output:
                print()
                _say("No Codex CLI sessions were found for this directory.\n")
                _say(
                    "Codex CLI stores activity under ~/.codex/sessions/YYYY/MM/DD/. "
                    "We couldn't find that directory.\n\n"
                )
                _say("To fix this:\n")
                _say("  1. Start Codex CLI manually in a project directory\n")
                _say("  2. Run `tracer sync codex` to backfill sessions\n")
                _say("  3. Run `tracer watch codex` for continuous updates\n\n")
                _say(f"Expected sessions directory: {_sessions_root_for_display()}\n")
                print()
            return False
        except Exception as exc:
            logger.debug("error finding Codex sessions: %s", exc)
            return False

        if sessions:
            first = sessions[0]
            logger.debug("Codex CLI activity detected: %s at %s", first.session_id, first.session_path)
            return True

        if help_output:
            print()
            _say("No Codex CLI sessions were found for this directory.\n")
            _say("Codex CLI hasn't saved a session with this working directory yet.\n")
            _say("Codex stores sessions in ~/.codex/sessions/YYYY/MM/DD/ as JSONL files.\n\n")
            _say("To fix this:\n")
            _say("  1. Open Codex CLI manually in this project\n")
            _say("  2. Run `tracer sync codex` to backfill sessions\n")
            _say("  3. Run `tracer watch codex` for continuous updates\n\n")
            _say(f"Checked sessions directory: {_sessions_root_for_display()}\n")
            print()
        return False

    def get_agent_chat_sessions(
        self,
        project_path: str,
        debug_raw: bool = False,
        progress: ProgressCallback | None = None,
    ) -> list[AgentChatSession]:
        """Parse every session of the project, newest first.

        Sessions that cannot be read or are empty are skipped; progress, when
        given, is called as (done, total) after each one.
        """
        try:
            sessions = find_codex_sessions(project_path, "", False)
        except (SessionsNotAccessibleError, HomeDirectoryError):
            return []

        total = len(sessions)
        result: list[AgentChatSession] = []
        for done, info in enumerate(sessions, start=1):
            try:
                session = process_session_to_agent_chat(info, project_path, debug_raw)
            except (OSError, ValueError) as exc:
                logger.debug("failed to process session %s: %s", info.session_id, exc)
                session = None
            if session is None:
                logger.debug("skipping session %s", info.session_id)
            else:
                result.append(session)
            if progress is not None:
                progress(done, total)
        return result

    def list_agent_chat_sessions(self, project_path: str) -> list[SessionMetadata]:
        """Describe every session of the project without fully parsing it."""
        try:
            sessions = find_codex_sessions(project_path, "", False)
        except (SessionsNotAccessibleError, HomeDirectoryError):
            return []

        result: list[SessionMetadata] = []
        for info in sessions:
            try:
                metadata = extract_codex_session_metadata(info)
            except OSError as exc:
                logger.warning(
                    "failed to read metadata of session %s at %s: %s",
                    info.session_id, info.session_path, exc,
                )
                continue
            if metadata is None:
                logger.debug("skipping empty session %s", info.session_id)
                continue
            result.append(metadata)
        return result

    def watch_agent(
        self,
        stop_event: threading.Event,
        project_path: str,
        debug_raw: bool,
        session_callback: SessionCallback,
    ) -> None:
        """Report Codex sessions of the project to session_callback until stop_event is set."""
        logger.info("watching Codex CLI activity for %r (debug_raw=%s)", project_path, debug_raw)

        def forward(session: AgentChatSession) -> None:
            logger.debug(
                "received session %s (has data: %s)",
                session.session_id, session.session_data is not None,
            )
            session_callback(session)

        try:
            watch_for_codex_sessions(stop_event, project_path, "", debug_raw, forward)
        except Exception as exc:
            logger.error("Codex session watcher stopped: %s", exc)
            raise