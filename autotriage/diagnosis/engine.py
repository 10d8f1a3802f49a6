from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from autotriage.diagnosis.contracts import DiagnosisResponseV1
from autotriage.diagnosis.prompts import SYSTEM_PROMPT, build_prompt
from autotriage.llm.completion_client import CompletionService
from autotriage.models import Diagnosis, DiagnosisCategory, ErrorEvent, ParsedLogContext, Patch, SourceSnippet
from autotriage.policy.safety import screen_for_injection


logger = logging.getLogger(__name__)

NOT_STRUCTURED_ROOT_CAUSE = "diagnosis response was not valid structured output"
SCHEMA_MISMATCH_ROOT_CAUSE = "diagnosis response did not match the expected schema"
INJECTION_ROOT_CAUSE = "event text contains prompt-injection markers; automated diagnosis skipped"

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def parse_json_object(text: str) -> Tuple[Dict[str, Any] | None, str | None]:
    """
    Parse the model's JSON object. Only surrounding whitespace and a markdown fence are
    tolerated; prose around the object is a decode failure.
    """
    t = _FENCE_RE.sub("", (text or "").strip()).strip()
    if not t:
        return None, "empty"
    try:
        parsed = json.loads(t)
    except ValueError as e:
        return None, f"json_parse_failed: {e}"
    if not isinstance(parsed, dict):
        return None, f"json_not_object: {type(parsed).__name__}"
    return parsed, None


def _fallback_category(context: ParsedLogContext) -> DiagnosisCategory:
    if context.out_of_memory:
        return DiagnosisCategory.memory
    if context.stack_trace:
        return DiagnosisCategory.crash
    return DiagnosisCategory.other


@dataclass(frozen=True)
class DiagnosisEngine:
    completion: CompletionService

    def diagnose(self, event: ErrorEvent, context: ParsedLogContext, snippets: List[SourceSnippet]) -> Diagnosis:
        screen = screen_for_injection(event.message, json.dumps(event.metadata, default=str))
        if not screen.clean:
            logger.warning("prompt-injection markers in %s: %s", event.signature, screen.markers)
            return Diagnosis(
                actionable=False,
                category=DiagnosisCategory.other,
                probable_root_cause=INJECTION_ROOT_CAUSE,
                issue_body=(
                    f"{INJECTION_ROOT_CAUSE}.\n\nMatched markers: {', '.join(screen.markers)}\n\n"
                    f"Event: `{event.signature}`\n"
                ),
            )

        prompt = build_prompt(event, context, snippets)
        # Transport/HTTP failures propagate to the per-event boundary.
        raw = self.completion.complete_json(system=SYSTEM_PROMPT, user=prompt)
        return self.parse_response(raw, context)

    def parse_response(self, raw: str, context: ParsedLogContext) -> Diagnosis:
        parsed, err = parse_json_object(raw)
        if parsed is None:
            logger.warning("diagnosis output not JSON (%s)", err)
            return Diagnosis(
                actionable=False,
                category=_fallback_category(context),
                probable_root_cause=NOT_STRUCTURED_ROOT_CAUSE,
                issue_body=raw,
                raw_response=raw,
            )

        try:
            resp = DiagnosisResponseV1.model_validate(parsed)
        except ValidationError as e:
            logger.warning("diagnosis output failed schema validation: %s", e.errors()[:3])
            return Diagnosis(
                actionable=False,
                category=_fallback_category(context),
                probable_root_cause=SCHEMA_MISMATCH_ROOT_CAUSE,
                issue_body=raw,
                raw_response=raw,
            )

        files = resp.first_code_patch()
        patch: Optional[Patch] = Patch(files=files) if files else None
        return Diagnosis(
            actionable=resp.actionable,
            category=resp.category or _fallback_category(context),
            probable_root_cause=resp.probable_root_cause,
            confidence=resp.confidence,
            suggested_patch=patch,
            issue_title=(resp.quick_issue_title or None),
            issue_body=(resp.quick_issue_body or None),
            raw_response=raw,
        )
