from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

from autotriage.context.extractor import ContextExtractor
from autotriage.diagnosis.engine import DiagnosisEngine
from autotriage.gitops.mock_github import MockGitHub
from autotriage.models import IssueFiled, PullRequestOpened
from autotriage.policy.gate import PolicyGate
from autotriage.remediation.remediator import Remediator
from autotriage.repo.working_copy import WorkingCopy
from autotriage.service.orchestrator import Orchestrator
from autotriage.telemetry.audit import AuditSink
from autotriage.warehouse.cursor import InMemoryCursorStore
from autotriage.warehouse.log_source import LogSourceAdapter


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

CRASH_MESSAGE = "\n".join(
    [
        "TypeError: Cannot read properties of undefined (reading 'map')",
        "    at WeeklyChart (/app/src/components/WeeklyChart.tsx:14:22)",
        "    at renderWithHooks (/app/node_modules/react-dom/cjs/react-dom.development.js:1:1)",
    ]
)


class _Warehouse:
    def __init__(self, rows: List[Dict[str, Any]]) -> None:
        self.rows = rows

    def query_events(self, *, since, severities, limit):
        out = [r for r in self.rows if r["severity"] in severities and (since is None or r["timestamp"] > since)]
        out.sort(key=lambda r: r["timestamp"], reverse=True)
        return out[:limit]


class _Completion:
    def __init__(self, reply: Dict[str, Any]) -> None:
        self.reply = reply
        self.calls = 0

    def complete_json(self, *, system: str, user: str) -> str:
        self.calls += 1
        return json.dumps(self.reply)


def _git_runner(calls: list):
    def run(cmd, cwd, timeout_s):
        calls.append(cmd[1:])
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    return run


def _build(tmp_path, reply: Dict[str, Any]):
    wc_dir = tmp_path / "wc"
    (wc_dir / ".git").mkdir(parents=True)
    (wc_dir / "src" / "components").mkdir(parents=True)
    (wc_dir / "src" / "components" / "WeeklyChart.tsx").write_text("export const WeeklyChart = () => data.map(f);\n", encoding="utf-8")

    git_calls: list = []
    wc = WorkingCopy(path=str(wc_dir), repo_url="file:///srv/app.git", runner=_git_runner(git_calls))
    tracker = MockGitHub(str(tmp_path / "gh"))
    completion = _Completion(reply)
    rows = [{"timestamp": T0, "service": "web", "severity": "CRITICAL", "message": CRASH_MESSAGE, "metadata": "{}", "signature": None}]
    o = Orchestrator(
        log_source=LogSourceAdapter(warehouse=_Warehouse(rows), cursor_store=InMemoryCursorStore()),
        working_copy=wc,
        extractor=ContextExtractor(),
        engine=DiagnosisEngine(completion=completion),
        gate=PolicyGate(protected_prefixes=(".github/", "config/secrets", ".env")),
        remediator=Remediator(working_copy=wc, tracker=tracker, audit=AuditSink(str(tmp_path / "audit")), clock=lambda: 1709283600.0),
    )
    return o, git_calls, completion


def _reply(files: Dict[str, str] | None, actionable: bool = True) -> Dict[str, Any]:
    fixes = [{"kind": "code_patch", "description": "guard", "files": files}] if files else []
    return {
        "actionable": actionable,
        "category": "crash",
        "probable_root_cause": "chart renders before data resolves",
        "suggested_fixes": fixes,
        "confidence": 0.7,
        "quick_issue_title": "Weekly chart crashes on empty data",
        "quick_issue_body": "The chart maps over undefined data.",
    }


def _audit_types(tmp_path) -> List[str]:
    path = tmp_path / "audit" / "auditLogs.jsonl"
    return [json.loads(ln)["type"] for ln in path.read_text(encoding="utf-8").splitlines()]


def _mutating(git_calls: list) -> List[list]:
    return [c for c in git_calls if c[0] in ("commit", "push", "add") or c[:2] == ["checkout", "-b"] or "commit" in c]


def test_actionable_patch_opens_pull_request(tmp_path) -> None:
    patched = "export const WeeklyChart = () => (data ?? []).map(f);\n"
    o, git_calls, completion = _build(tmp_path, _reply({"src/components/WeeklyChart.tsx": patched}))

    outcomes = o.run_cycle()

    assert len(outcomes) == 1 and isinstance(outcomes[0], PullRequestOpened)
    branch = outcomes[0].branch
    assert [c for c in git_calls if c[:2] == ["checkout", "-b"]] == [["checkout", "-b", branch, "main"]]
    assert sum(1 for c in git_calls if "commit" in c) == 1
    assert [c for c in git_calls if c[:1] == ["push"]] == [["push", "-u", "origin", branch]]
    assert (tmp_path / "wc" / "src" / "components" / "WeeklyChart.tsx").read_text(encoding="utf-8") == patched
    assert len(list((tmp_path / "gh" / "prs").glob("*.json"))) == 1
    assert not (tmp_path / "gh" / "issues").exists()
    assert _audit_types(tmp_path) == ["pr_created"]

    # the snippet for the frame in src/ reached the prompt context; cursor moved past the event
    assert completion.calls == 1
    assert o.log_source.cursor_store.get_cursor() == T0
    assert o.run_cycle() == []


def test_non_actionable_files_issue(tmp_path) -> None:
    o, git_calls, _ = _build(tmp_path, _reply(None, actionable=False))

    outcomes = o.run_cycle()

    assert len(outcomes) == 1 and isinstance(outcomes[0], IssueFiled)
    assert _mutating(git_calls) == []
    issue = json.loads((tmp_path / "gh" / "issues" / "1.json").read_text(encoding="utf-8"))
    assert issue["title"] == "Weekly chart crashes on empty data"
    assert issue["body"] == "The chart maps over undefined data."
    assert not (tmp_path / "gh" / "prs").exists()
    assert _audit_types(tmp_path) == ["no_action"]


def test_protected_path_is_blocked_to_issue(tmp_path) -> None:
    o, git_calls, _ = _build(tmp_path, _reply({"config/secrets.yaml": "apiKey: rotate-me\n"}))

    outcomes = o.run_cycle()

    assert len(outcomes) == 1 and isinstance(outcomes[0], IssueFiled)
    assert _mutating(git_calls) == []
    assert not (tmp_path / "wc" / "config").exists()
    assert len(list((tmp_path / "gh" / "issues").glob("*.json"))) == 1
    assert not (tmp_path / "gh" / "prs").exists()
    assert _audit_types(tmp_path) == ["policy_block"]


def test_later_events_are_fetched_incrementally(tmp_path) -> None:
    o, _, completion = _build(tmp_path, _reply(None, actionable=False))
    o.run_cycle()
    o.log_source.warehouse.rows.append(
        {"timestamp": T0 + timedelta(minutes=5), "service": "api", "severity": "ERROR", "message": "quota exceeded", "metadata": None, "signature": None}
    )
    outcomes = o.run_cycle()
    assert len(outcomes) == 1
    assert completion.calls == 2
    issue = json.loads((tmp_path / "gh" / "issues" / "2.json").read_text(encoding="utf-8"))
    assert issue["title"] == "Weekly chart crashes on empty data"


def test_dotted_protected_path_is_still_blocked(tmp_path) -> None:
    o, git_calls, _ = _build(tmp_path, _reply({"config/./secrets.yaml": "apiKey: rotate-me\n"}))

    outcomes = o.run_cycle()

    assert len(outcomes) == 1 and isinstance(outcomes[0], IssueFiled)
    assert _mutating(git_calls) == []
    assert not (tmp_path / "wc" / "config").exists()
    assert not (tmp_path / "gh" / "prs").exists()
    assert _audit_types(tmp_path) == ["policy_block"]
