from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorEvent(BaseModel):
    """
    A single high-severity error occurrence read from the log warehouse.
    `signature` is a display/log identity, not a uniqueness guarantee.
    """

    model_config = ConfigDict(frozen=True)

    signature: str
    timestamp: datetime
    service: str
    severity: Severity
    message: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ParsedLogContext(BaseModel):
    known_format: bool = False
    format_name: Optional[str] = None
    stack_trace: Optional[str] = None
    plugin_names: List[str] = Field(default_factory=list)
    out_of_memory: bool = False
    first_n_lines: List[str] = Field(default_factory=list)


class SourceSnippet(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class DiagnosisCategory(str, Enum):
    crash = "crash"
    performance = "performance"
    conflict = "conflict"
    config = "config"
    memory = "memory"
    other = "other"


class Patch(BaseModel):
    """
    Whole-file replacement: repo-relative path -> complete new file content.
    Never a diff.
    """

    model_config = ConfigDict(frozen=True)

    files: Dict[str, str] = Field(default_factory=dict)

    def touched_paths(self) -> List[str]:
        return list(self.files.keys())


class Diagnosis(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    generated_at: datetime = Field(default_factory=_utc_now)
    actionable: bool = False
    category: DiagnosisCategory = DiagnosisCategory.other
    probable_root_cause: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    suggested_patch: Optional[Patch] = None
    issue_title: Optional[str] = None
    issue_body: Optional[str] = None
    # Raw model output, kept for human follow-up in issues/PRs.
    raw_response: Optional[str] = None


class PolicyDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    blocked: bool = False
    matched_rule: Optional[str] = None


class PullRequestOpened(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pr_opened"] = "pr_opened"
    url: str
    branch: str


class IssueFiled(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["issue_filed"] = "issue_filed"
    id: str
    url: Optional[str] = None


class Failed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    reason: str


RemediationOutcome = Annotated[Union[PullRequestOpened, IssueFiled, Failed], Field(discriminator="kind")]


class AuditKind(str, Enum):
    no_action = "no_action"
    policy_block = "policy_block"
    pr_created = "pr_created"
    pr_failed = "pr_failed"


class IssueResult(BaseModel):
    mode: Literal["mock", "real"]
    issue_id: str
    issue_url: str


class PullRequestResult(BaseModel):
    mode: Literal["mock", "real"]
    pr_number: int
    pr_title: str
    pr_url: str
    branch_name: str
