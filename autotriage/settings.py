from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROVIDER_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "groq": "https://api.groq.com/openai/v1",
    "openai": "https://api.openai.com/v1",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUTOTRIAGE_", extra="ignore")

    # Poll loop
    poll_interval_s: float = 60.0
    batch_size: int = 10

    # Log warehouse (DuckDB file with an error_events table)
    warehouse_path: str = "var/warehouse/logs.duckdb"
    warehouse_table: str = "error_events"
    # Empty string keeps the cursor in memory only (lost on restart).
    cursor_state_path: str = "var/state/cursor.json"

    # Language-model completion service (OpenAI-compatible API)
    llm_provider: str = "openrouter"  # openrouter|groq|openai|off
    llm_model: str = "openai/gpt-4o-mini"
    llm_api_key: str | None = None
    # If not set, derived from llm_provider.
    llm_base_url: str | None = None
    llm_max_tokens: int = 4096
    llm_timeout_s: float = 90.0
    llm_max_retries: int = 3

    # Issue / PR hosting
    github_mode: str = "mock"  # mock|real
    github_token: str | None = None
    github_repo: str | None = None  # owner/name
    github_api_base: str = "https://api.github.com"
    github_timeout_s: float = 15.0
    mock_github_dir: str = ".mock_github"

    # Working copy
    # If not set, derived from github_repo (https://github.com/<owner>/<repo>.git).
    repo_url: str | None = None
    working_copy_dir: str = "var/working_copy"
    default_branch: str = "main"
    git_timeout_s: float = 120.0
    git_author_name: str = "autotriage"
    git_author_email: str = "autotriage@users.noreply.github.com"
    branch_prefix: str = "autotriage/fix"

    # Policy: patches touching any of these prefixes are never auto-PR'd.
    protected_paths: List[str] = Field(
        default_factory=lambda: [
            ".github/",
            "config/secrets",
            ".env",
            "firestore.rules",
            "storage.rules",
            "package-lock.json",
        ]
    )
    issue_labels: List[str] = Field(default_factory=lambda: ["auto-triage"])

    # Audit store: one JSONL file per collection under audit_dir.
    audit_dir: str = "var/audit"
    audit_collection: str = "auditLogs"

    # Context extraction
    source_root_markers: List[str] = Field(default_factory=lambda: ["src/"])
    max_snippets: int = 3

    def resolved_llm_base_url(self) -> str:
        if self.llm_base_url:
            return self.llm_base_url
        return _PROVIDER_BASE_URLS.get(self.llm_provider, _PROVIDER_BASE_URLS["openai"])

    def resolved_repo_url(self) -> str | None:
        if self.repo_url:
            return self.repo_url
        if self.github_repo:
            return f"https://github.com/{self.github_repo}.git"
        return None

    def problems(self) -> List[str]:
        """
        Human-readable configuration problems. Empty list means the service can start.
        """
        out: List[str] = []
        if self.llm_provider not in ("openrouter", "groq", "openai", "off"):
            out.append(f"unsupported llm_provider: {self.llm_provider}")
        elif self.llm_provider != "off" and not self.llm_api_key:
            out.append("AUTOTRIAGE_LLM_API_KEY is required unless llm_provider=off")

        if self.github_mode not in ("mock", "real"):
            out.append(f"unsupported github_mode: {self.github_mode}")
        elif self.github_mode == "real":
            if not self.github_token:
                out.append("AUTOTRIAGE_GITHUB_TOKEN is required for github_mode=real")
            if not self.github_repo:
                out.append("AUTOTRIAGE_GITHUB_REPO is required for github_mode=real")

        if not self.resolved_repo_url():
            out.append("AUTOTRIAGE_REPO_URL (or AUTOTRIAGE_GITHUB_REPO) is required to clone the working copy")
        if self.batch_size < 1:
            out.append("batch_size must be >= 1")
        if self.poll_interval_s <= 0:
            out.append("poll_interval_s must be > 0")
        return out
