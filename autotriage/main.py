from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional
from urllib.parse import urlparse, urlunparse

from autotriage.context.extractor import ContextExtractor
from autotriage.diagnosis.engine import DiagnosisEngine
from autotriage.gitops.tracker import build_tracker
from autotriage.llm.completion_client import build_completion_service
from autotriage.policy.gate import PolicyGate
from autotriage.remediation.remediator import Remediator
from autotriage.repo.working_copy import WorkingCopy
from autotriage.service.orchestrator import Orchestrator
from autotriage.settings import Settings
from autotriage.telemetry.audit import AuditSink
from autotriage.warehouse.cursor import build_cursor_store
from autotriage.warehouse.duckdb_query import DuckDBWarehouse
from autotriage.warehouse.log_source import LogSourceAdapter


logger = logging.getLogger(__name__)


def _authenticated_url(url: str, token: str | None) -> str:
    # Only https GitHub-style remotes get the token; ssh/file remotes are used as-is.
    if not token:
        return url
    p = urlparse(url)
    if p.scheme != "https" or "@" in p.netloc:
        return url
    return urlunparse(p._replace(netloc=f"x-access-token:{token}@{p.netloc}"))


def build_orchestrator(settings: Settings) -> Orchestrator:
    repo_url = settings.resolved_repo_url()
    if not repo_url:
        raise ValueError("AUTOTRIAGE_REPO_URL (or AUTOTRIAGE_GITHUB_REPO) is required")
    token = settings.github_token if settings.github_mode == "real" else None

    working_copy = WorkingCopy(
        path=settings.working_copy_dir,
        repo_url=_authenticated_url(repo_url, token),
        default_branch=settings.default_branch,
        timeout_s=settings.git_timeout_s,
        author_name=settings.git_author_name,
        author_email=settings.git_author_email,
        redact=(token,) if token else (),
    )
    log_source = LogSourceAdapter(
        warehouse=DuckDBWarehouse(path=settings.warehouse_path, table=settings.warehouse_table),
        cursor_store=build_cursor_store(settings.cursor_state_path),
        batch_size=settings.batch_size,
    )
    remediator = Remediator(
        working_copy=working_copy,
        tracker=build_tracker(settings),
        audit=AuditSink(settings.audit_dir, settings.audit_collection),
        issue_labels=list(settings.issue_labels),
        branch_prefix=settings.branch_prefix,
    )
    return Orchestrator(
        log_source=log_source,
        working_copy=working_copy,
        extractor=ContextExtractor(source_root_markers=tuple(settings.source_root_markers), max_snippets=settings.max_snippets),
        engine=DiagnosisEngine(completion=build_completion_service(settings)),
        gate=PolicyGate(protected_prefixes=tuple(settings.protected_paths)),
        remediator=remediator,
        poll_interval_s=settings.poll_interval_s,
    )


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="autotriage", description="Poll error logs, diagnose with an LLM, open fix PRs or issues.")
    ap.add_argument("--log-level", default="INFO", help="DEBUG|INFO|WARNING|ERROR")
    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="poll forever")
    sub.add_parser("once", help="run a single poll cycle and exit")
    sub.add_parser("check-config", help="report configuration problems")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings()
    problems = settings.problems()
    if args.command == "check-config":
        for p in problems:
            print(f"- {p}")
        if not problems:
            print("config ok")
        return 1 if problems else 0

    if problems:
        for p in problems:
            logger.error("config: %s", p)
        return 2

    orchestrator = build_orchestrator(settings)
    if args.command == "once":
        outcomes = orchestrator.run_cycle()
        for o in outcomes:
            print(o.model_dump_json())
        return 0

    orchestrator.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
