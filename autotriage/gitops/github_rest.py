from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

import httpx

from autotriage.errors import TrackerError
from autotriage.models import IssueResult, PullRequestResult


@dataclass(frozen=True)
class GitHubRestClient:
    """
    Minimal GitHub REST wrapper for the issue/PR half of remediation.

    Branches and commits are pushed with git from the working copy; this client only:
    - files issues
    - opens pull requests for already-pushed branches

    Mockable in tests via an httpx transport override.
    """

    token: str
    repo: str  # owner/name
    api_base: str = "https://api.github.com"
    timeout_s: float = 15.0
    transport: httpx.BaseTransport | None = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_s, transport=self.transport)

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_base.rstrip('/')}/repos/{self.repo}/{path}"
        try:
            with self._client() as c:
                r = c.post(url, headers=self._headers(), json=payload)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as e:
            raise TrackerError(f"github_http_{e.response.status_code}: {e.response.text[:800]}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise TrackerError(f"github_request_failed: {type(e).__name__}: {e}") from e
        if not isinstance(data, dict):
            raise TrackerError("github_unexpected_response")
        return data

    def create_issue(self, *, title: str, body: str, labels: List[str]) -> IssueResult:
        data = self._post("issues", {"title": title, "body": body, "labels": list(labels)})
        try:
            return IssueResult(mode="real", issue_id=str(data["number"]), issue_url=str(data["html_url"]))
        except KeyError as e:
            raise TrackerError(f"github_issue_response_missing_field: {e}") from e

    def create_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        data = self._post("pulls", {"title": title, "body": body, "head": head, "base": base})
        try:
            return PullRequestResult(
                mode="real",
                pr_number=int(data["number"]),
                pr_title=str(data.get("title") or title),
                pr_url=str(data["html_url"]),
                branch_name=head,
            )
        except KeyError as e:
            raise TrackerError(f"github_pr_response_missing_field: {e}") from e
