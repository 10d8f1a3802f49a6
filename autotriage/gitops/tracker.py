from __future__ import annotations

from typing import List, Protocol

from autotriage.gitops.github_rest import GitHubRestClient
from autotriage.gitops.mock_github import MockGitHub
from autotriage.models import IssueResult, PullRequestResult
from autotriage.settings import Settings


class IssueTracker(Protocol):
    def create_issue(self, *, title: str, body: str, labels: List[str]) -> IssueResult: ...

    def create_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult: ...


def build_tracker(settings: Settings) -> IssueTracker:
    if settings.github_mode == "mock":
        return MockGitHub(settings.mock_github_dir, repo=settings.github_repo or "local/mock")

    if not settings.github_token or not settings.github_repo:
        raise ValueError("AUTOTRIAGE_GITHUB_TOKEN and AUTOTRIAGE_GITHUB_REPO are required for github_mode=real")
    return GitHubRestClient(
        token=settings.github_token,
        repo=settings.github_repo,
        api_base=settings.github_api_base,
        timeout_s=settings.github_timeout_s,
    )
