"""Read, summarise and watch Codex CLI session logs."""

__version__ = "0.1.0"