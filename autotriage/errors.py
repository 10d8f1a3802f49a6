from __future__ import annotations


class WarehouseQueryError(RuntimeError):
    """The log warehouse query failed (connection, SQL, missing table)."""


class GitCommandError(RuntimeError):
    def __init__(self, cmd: list[str], returncode: int | None, output: str) -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.output = output
        super().__init__(f"git_failed rc={returncode}: {' '.join(cmd)}: {output[-800:]}")


class CompletionError(RuntimeError):
    """Non-2xx, unparsable envelope, or exhausted retries from the completion service."""


class TrackerError(RuntimeError):
    """Issue/PR API call failed."""
