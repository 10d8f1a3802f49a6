from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List

from autotriage.models import IssueResult, PullRequestResult


@dataclass(frozen=True)
class MockGitHub:
    """
    Local stand-in for the issue/PR API (no network).

    It writes:
      - issues: <root>/issues/<n>.json
      - PRs:    <root>/prs/<n>.json
    """

    root_dir: str
    repo: str = "local/mock"

    def _next_number(self, kind: str) -> int:
        d = os.path.join(self.root_dir, kind)
        os.makedirs(d, exist_ok=True)
        nums = [int(n[:-5]) for n in os.listdir(d) if n.endswith(".json") and n[:-5].isdigit()]
        return (max(nums) if nums else 0) + 1

    def _write(self, kind: str, number: int, meta: Dict[str, Any]) -> str:
        path = os.path.join(self.root_dir, kind, f"{number}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)
        return path

    def create_issue(self, *, title: str, body: str, labels: List[str]) -> IssueResult:
        n = self._next_number("issues")
        self._write("issues", n, {"number": n, "repo": self.repo, "title": title, "body": body, "labels": list(labels)})
        return IssueResult(mode="mock", issue_id=str(n), issue_url=f"mock://{self.repo}/issues/{n}")

    def create_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        n = self._next_number("prs")
        self._write("prs", n, {"number": n, "repo": self.repo, "title": title, "body": body, "head": head, "base": base})
        return PullRequestResult(
            mode="mock",
            pr_number=n,
            pr_title=title,
            pr_url=f"mock://{self.repo}/pull/{n}",
            branch_name=head,
        )
