"""Locating and probing the Codex CLI executable."""

from __future__ import annotations

import errno
import logging
import os
import shlex
import shutil
import stat
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_VERSION_FLAGS = ("--version", "-V")
_DEFAULT_HOMEBREW_CODEX = "/opt/homebrew/bin/codex"


class VersionCommandError(Exception):
    """Running the Codex version command failed.

    The underlying error, if any, is available as __cause__.
    """

    def __init__(self, message: str, *, flag: str, stderr: str = "", no_output: bool = False):
        super().__init__(message)
        self.flag = flag
        self.stderr = stderr
        self.no_output = no_output


def _split_command_line(command: str) -> list[str]:
    try:
        return shlex.split(command)
    except ValueError:
        return command.split()


def parse_codex_command(custom_command: str) -> tuple[str, list[str]]:
    """Split a custom command into binary and arguments.

    An empty command falls back to the detected default binary.
    """
    if custom_command:
        parts = _split_command_line(custom_command)
        if parts:
            return expand_tilde(parts[0]), parts[1:]
    return get_default_codex_command(), []


def get_default_codex_command() -> str:
    """Find codex in common installation locations, or fall back to "codex"."""
    return find_homebrew_codex() or find_npm_codex() or "codex"


def _run_for_output(argv: list[str]) -> str | None:
    """Run argv with stdout and stderr combined; None when it fails."""
    try:
        completed = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError:
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip()


def _candidate_in(directory: str, source: str) -> str | None:
    candidate = os.path.join(directory, "codex")
    if is_executable(candidate):
        logger.debug("Codex CLI: found binary via %s at %s", source, candidate)
        return candidate
    return None


def find_homebrew_codex() -> str | None:
    """Return the Homebrew-installed codex binary, if any."""
    prefix = os.environ.get("HOMEBREW_PREFIX", "").strip()
    if prefix:
        found = _candidate_in(os.path.join(prefix, "bin"), "HOMEBREW_PREFIX")
        if found:
            return found

    brew = shutil.which("brew")
    if brew:
        prefix = _run_for_output([brew, "--prefix"])
        if prefix:
            found = _candidate_in(os.path.join(prefix, "bin"), "brew --prefix")
            if found:
                return found

    if is_executable(_DEFAULT_HOMEBREW_CODEX):
        logger.debug("Codex CLI: found Homebrew binary at default path %s", _DEFAULT_HOMEBREW_CODEX)
        return _DEFAULT_HOMEBREW_CODEX
    return None


def find_npm_codex() -> str | None:
    """Return the codex binary from global npm locations, if any."""
    nvm_bin = os.environ.get("NVM_BIN", "").strip()
    if nvm_bin:
        found = _candidate_in(nvm_bin, "NVM_BIN")
        if found:
            return found

    npm = shutil.which("npm")
    if npm:
        bin_dir = _run_for_output([npm, "bin", "-g"])
        if bin_dir:
            found = _candidate_in(bin_dir, "npm bin -g")
            if found:
                return found

    nvm_dir = os.environ.get("NVM_DIR", "").strip()
    if nvm_dir:
        found = _candidate_in(os.path.join(nvm_dir, "versions", "node", "current", "bin"), "NVM_DIR")
        if found:
            return found
    return None


def _home_dir() -> str | None:
    home = os.environ.get("HOME")
    if home:
        return home
    try:
        return str(Path.home())
    except (RuntimeError, KeyError):
        return None


def expand_tilde(path: str) -> str:
    """Expand a leading "~" or "~/" to the user's home directory."""
    if not path or path[0] != "~":
        return path
    home = _home_dir()
    if home is None:
        return path
    if path == "~":
        return home
    if len(path) >= 2 and path[1] in "/\\":
        return os.path.join(home, path[2:])
    return path


def is_executable(path: str) -> bool:
    """True if path is an existing non-directory with an execute bit set."""
    try:
        info = os.stat(path)
    except OSError:
        return False
    return not stat.S_ISDIR(info.st_mode) and bool(info.st_mode & 0o111)


def run_codex_version_command(command: str) -> tuple[str, str, str]:
    """Try the version flags in turn; return (output, flag, stderr) of the first success.

    Raises VersionCommandError when no flag succeeds or the output is empty.
    """
    last = len(_VERSION_FLAGS) - 1
    for index, flag in enumerate(_VERSION_FLAGS):
        try:
            completed = subprocess.run(
                [command, flag],
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            if classify_check_error(exc) != "unknown" or index == last:
                raise VersionCommandError(
                    f"failed to run {command} {flag}: {exc}", flag=flag
                ) from exc
            continue

        stderr = completed.stderr.strip()
        if completed.returncode != 0:
            if index == last:
                failure = subprocess.CalledProcessError(
                    completed.returncode, [command, flag], completed.stdout, completed.stderr
                )
                raise VersionCommandError(
                    f"{command} {flag} exited with status {completed.returncode}",
                    flag=flag,
                    stderr=stderr,
                ) from failure
            continue

        output = completed.stdout.strip()
        if not output:
            raise VersionCommandError(
                "codex CLI version command produced no output",
                flag=flag,
                stderr=stderr,
                no_output=True,
            )
        return output, flag, stderr

    raise VersionCommandError("failed to execute codex version command", flag="")


def classify_check_error(error: BaseException | None) -> str:
    """Bucket an error as not_found, permission_denied, no_output or unknown."""
    if error is None:
        return ""
    if isinstance(error, VersionCommandError):
        if error.no_output:
            return "no_output"
        if error.__cause__ is not None:
            return classify_check_error(error.__cause__)
        return "unknown"
    if isinstance(error, FileNotFoundError):
        return "not_found"
    if isinstance(error, PermissionError):
        return "permission_denied"
    if isinstance(error, OSError):
        if error.errno == errno.ENOENT:
            return "not_found"
        if error.errno in (errno.EACCES, errno.EPERM):
            return "permission_denied"
    return "unknown"