from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Union

from autotriage.gitops.tracker import IssueTracker
from autotriage.models import (
    AuditKind,
    Diagnosis,
    ErrorEvent,
    Failed,
    IssueFiled,
    PolicyDecision,
    PullRequestOpened,
)
from autotriage.repo.working_copy import WorkingCopy
from autotriage.telemetry.audit import AuditSink


logger = logging.getLogger(__name__)

Outcome = Union[PullRequestOpened, IssueFiled, Failed]

RAW_RESPONSE_MAX_CHARS = 20000
REVIEW_NOTE = (
    "> This pull request was generated automatically from a production error. "
    "It has not been reviewed by a human and must be reviewed and tested before merging."
)


def build_issue_summary(event: ErrorEvent, diagnosis: Diagnosis) -> str:
    touched = diagnosis.suggested_patch.touched_paths() if diagnosis.suggested_patch else []
    parts = [
        "Automated analysis detected an issue.",
        "",
        f"- **Event:** `{event.signature}`",
        f"- **Service:** {event.service}",
        f"- **Severity:** {event.severity.value}",
        f"- **Seen at:** {event.timestamp.isoformat()}",
        f"- **Category:** {diagnosis.category.value}",
        f"- **Confidence:** {diagnosis.confidence:.2f}",
        f"- **Diagnosis id:** {diagnosis.id}",
        "",
        "### Probable root cause",
        diagnosis.probable_root_cause or "(not determined)",
        "",
        "### Suggested files",
        ", ".join(f"`{p}`" for p in touched) if touched else "(none)",
    ]
    if diagnosis.raw_response:
        parts += ["", "### Model output", "```json", diagnosis.raw_response[:RAW_RESPONSE_MAX_CHARS], "```"]
    return "\n".join(parts) + "\n"


def build_pr_body(event: ErrorEvent, diagnosis: Diagnosis) -> str:
    touched = diagnosis.suggested_patch.touched_paths() if diagnosis.suggested_patch else []
    parts = [
        REVIEW_NOTE,
        "",
        f"**Event:** `{event.signature}` ({event.service}, {event.severity.value}, {event.timestamp.isoformat()})",
        f"**Diagnosis id:** {diagnosis.id}",
        f"**Category:** {diagnosis.category.value} | **Confidence:** {diagnosis.confidence:.2f}",
        "",
        "### Probable root cause",
        diagnosis.probable_root_cause or "(not determined)",
        "",
        "### Files changed",
        "\n".join(f"- `{p}`" for p in touched),
    ]
    if diagnosis.issue_body:
        parts += ["", "### Details", diagnosis.issue_body]
    return "\n".join(parts) + "\n"


@dataclass
class Remediator:
    """
    Turns (event, diagnosis, policy decision) into exactly one outcome:
    PullRequestOpened, IssueFiled or Failed. Every outcome is audited before returning.
    """

    working_copy: WorkingCopy
    tracker: IssueTracker
    audit: AuditSink
    issue_labels: List[str] = field(default_factory=lambda: ["auto-triage"])
    branch_prefix: str = "autotriage/fix"
    clock: Callable[[], float] = time.time

    def remediate(self, event: ErrorEvent, diagnosis: Diagnosis, decision: PolicyDecision) -> Outcome:
        patch = diagnosis.suggested_patch
        if not diagnosis.actionable or patch is None or not patch.files or decision.blocked:
            return self._file_issue(event, diagnosis, decision)
        return self._open_pull_request(event, diagnosis, patch.files)

    # ---- issue branch --------------------------------------------------

    def _file_issue(self, event: ErrorEvent, diagnosis: Diagnosis, decision: PolicyDecision) -> Outcome:
        policy_blocked = bool(diagnosis.actionable and diagnosis.suggested_patch and decision.blocked)
        kind = AuditKind.policy_block if policy_blocked else AuditKind.no_action

        title = diagnosis.issue_title or event.signature
        body = diagnosis.issue_body or build_issue_summary(event, diagnosis)
        labels = list(self.issue_labels)
        if policy_blocked:
            labels.append("policy-block")
            body += (
                "\n\n---\n"
                f"Automated fix was blocked by protected-path rule `{decision.matched_rule}`. "
                "A human must apply the change.\n"
            )

        extra: Dict[str, Any] = {"diagnosis_id": diagnosis.id, "actionable": diagnosis.actionable}
        if diagnosis.suggested_patch:
            extra["files"] = diagnosis.suggested_patch.touched_paths()
        if policy_blocked:
            extra["matched_rule"] = decision.matched_rule

        outcome: Outcome
        try:
            issue = self.tracker.create_issue(title=title, body=body, labels=labels)
            outcome = IssueFiled(id=issue.issue_id, url=issue.issue_url)
            extra.update({"issue_id": issue.issue_id, "issue_url": issue.issue_url})
            logger.info("issue %s filed for %s (%s)", issue.issue_id, event.signature, kind.value)
        except Exception as e:  # noqa: BLE001
            outcome = Failed(reason=f"create_issue: {type(e).__name__}: {e}")
            extra["error"] = outcome.reason
            logger.error("issue filing failed for %s: %s", event.signature, e)

        self.audit.record(kind, event, extra)
        return outcome

    # ---- automated fix branch ------------------------------------------

    def _branch_name(self, diagnosis: Diagnosis) -> str:
        return f"{self.branch_prefix}/{diagnosis.id[:8]}-{int(self.clock())}"

    def _open_pull_request(self, event: ErrorEvent, diagnosis: Diagnosis, files: Dict[str, str]) -> Outcome:
        title = diagnosis.issue_title or event.signature
        branch = self._branch_name(diagnosis)
        wc = self.working_copy

        stage = "validate_paths"
        branch_created = False
        succeeded = False
        outcome: Outcome = Failed(reason="not attempted")
        try:
            for path in files:
                wc.resolve(path)

            stage = "create_branch"
            wc.create_branch(branch)
            branch_created = True

            stage = "write_files"
            for path, content in files.items():
                wc.write_file(path, content)
                wc.add(path)

            stage = "commit"
            wc.commit(f"[autotriage] auto-fix {diagnosis.id}: {title}\n\nEvent: {event.signature}")

            stage = "push"
            wc.push(branch)

            stage = "create_pull_request"
            pr = self.tracker.create_pull_request(
                title=f"[auto-fix][{diagnosis.category.value}] {title}",
                body=build_pr_body(event, diagnosis),
                head=branch,
                base=wc.default_branch,
            )
            outcome = PullRequestOpened(url=pr.pr_url, branch=branch)
            succeeded = True
        except Exception as e:  # noqa: BLE001
            outcome = Failed(reason=f"{stage}: {type(e).__name__}: {e}")
            logger.error("automated fix failed for %s at %s: %s", event.signature, stage, e)
        finally:
            self._restore_default(branch if (branch_created and not succeeded) else None)

        if isinstance(outcome, PullRequestOpened):
            logger.info("pull request opened for %s: %s", event.signature, outcome.url)
            self.audit.record(
                AuditKind.pr_created,
                event,
                {"diagnosis_id": diagnosis.id, "pr_url": outcome.url, "branch": branch, "files": list(files)},
            )
        else:
            self.audit.record(
                AuditKind.pr_failed,
                event,
                {"diagnosis_id": diagnosis.id, "branch": branch, "stage": stage, "reason": outcome.reason},
            )
        return outcome

    def _restore_default(self, branch_to_delete: str | None) -> None:
        """
        Leave the working copy on a clean default branch. Cleanup errors are logged, never raised,
        so they cannot replace the attempt's outcome.
        """
        try:
            self.working_copy.reset_to_default()
        except Exception as e:  # noqa: BLE001
            logger.error("failed to reset working copy to %s: %s", self.working_copy.default_branch, e)
        if branch_to_delete:
            try:
                self.working_copy.delete_branch(branch_to_delete)
            except Exception as e:  # noqa: BLE001
                logger.error("failed to delete local branch %s: %s", branch_to_delete, e)
