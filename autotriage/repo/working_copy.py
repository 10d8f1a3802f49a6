from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from autotriage.errors import GitCommandError


logger = logging.getLogger(__name__)

# (cmd, cwd, timeout_s) -> object with returncode/stdout/stderr (subprocess.CompletedProcess shape)
GitRunner = Callable[[List[str], Optional[str], float], "subprocess.CompletedProcess[str]"]


def _subprocess_runner(cmd: List[str], cwd: Optional[str], timeout_s: float) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, check=False, timeout=timeout_s)


@dataclass
class WorkingCopy:
    """
    The single local clone of the target repository.

    One orchestrator owns one WorkingCopy; every branch/commit/push goes through this object
    sequentially. Sharing it between workers would race on the checked-out branch.
    """

    path: str
    repo_url: str
    default_branch: str = "main"
    timeout_s: float = 120.0
    author_name: str = "autotriage"
    author_email: str = "autotriage@users.noreply.github.com"
    runner: GitRunner = _subprocess_runner
    # Strings (tokens embedded in repo_url) to mask in errors and logs.
    redact: Sequence[str] = field(default_factory=tuple)

    def _mask(self, text: str) -> str:
        for s in self.redact:
            if s:
                text = text.replace(s, "***")
        return text

    def _git(self, *args: str, cwd: Optional[str] = None, check: bool = True) -> str:
        cmd = ["git", *args]
        run_in = self.path if cwd is None else cwd
        try:
            p = self.runner(cmd, run_in, self.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise GitCommandError([self._mask(c) for c in cmd], None, f"timeout after {self.timeout_s}s") from e
        except OSError as e:
            raise GitCommandError([self._mask(c) for c in cmd], None, str(e)) from e
        out = (p.stdout or "") + (p.stderr or "")
        if check and p.returncode != 0:
            raise GitCommandError([self._mask(c) for c in cmd], p.returncode, self._mask(out))
        return out

    def exists(self) -> bool:
        return os.path.isdir(os.path.join(self.path, ".git"))

    def ensure_synced(self) -> None:
        """
        Clone if missing, else discard leftovers from an interrupted attempt, check out the default
        branch and fast-forward it. Idempotent.
        """
        if not self.exists():
            parent = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(parent, exist_ok=True)
            logger.info("cloning working copy into %s", self.path)
            self._git("clone", "--branch", self.default_branch, self.repo_url, self.path, cwd=parent)
            return
        self.reset_to_default()
        self._git("pull", "--ff-only", "origin", self.default_branch)
        logger.info("working copy synced to origin/%s", self.default_branch)

    # ---- path handling -------------------------------------------------

    def resolve(self, rel_path: str) -> str:
        """
        Absolute path for a repo-relative path. Raises ValueError if it would escape the working copy.
        """
        if not rel_path or os.path.isabs(rel_path):
            raise ValueError(f"path must be repo-relative: {rel_path!r}")
        root = os.path.abspath(self.path)
        abs_path = os.path.abspath(os.path.join(root, rel_path))
        if abs_path != root and not abs_path.startswith(root + os.sep):
            raise ValueError(f"path escapes working copy: {rel_path!r}")
        return abs_path

    def read_file(self, rel_path: str) -> str:
        with open(self.resolve(rel_path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, rel_path: str, content: str) -> None:
        abs_path = self.resolve(rel_path)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        with open(abs_path, "w", encoding="utf-8") as f:
            f.write(content)

    # ---- branch / commit / push ---------------------------------------

    def create_branch(self, name: str) -> None:
        self._git("checkout", "-b", name, self.default_branch)

    def add(self, rel_path: str) -> None:
        self._git("add", "--", rel_path)

    def commit(self, message: str) -> None:
        self._git(
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "commit",
            "-m",
            message,
        )

    def push(self, branch: str) -> None:
        self._git("push", "-u", "origin", branch)

    def reset_to_default(self) -> None:
        """
        Drop any staged/unstaged/untracked changes and return to the default branch.
        """
        self._git("reset", "--hard", check=False)
        self._git("clean", "-fd", check=False)
        self._git("checkout", "-f", self.default_branch)

    def delete_branch(self, name: str) -> None:
        self._git("branch", "-D", name, check=False)
