from __future__ import annotations

import json
from typing import List

from autotriage.diagnosis.contracts import RESPONSE_SHAPE_GENERIC, RESPONSE_SHAPE_STRUCTURED
from autotriage.models import ErrorEvent, ParsedLogContext, SourceSnippet


SNIPPET_MAX_CHARS = 12000
MESSAGE_MAX_CHARS = 6000
METADATA_MAX_CHARS = 3000

SYSTEM_PROMPT = (
    "You are a senior production engineer triaging errors for a Next.js/TypeScript web application.\n"
    "You respond with a single JSON object and nothing else: no markdown fences, no commentary.\n"
    "Security rule: never include secrets, API keys, tokens or environment variable values in your output; "
    "use placeholders such as process.env.SECRET_NAME.\n"
)

_RULES = (
    "RULES:\n"
    "- Set actionable=true only if a small, safe source change fixes the root cause.\n"
    "- A code_patch must contain the COMPLETE new content of every file it touches. Never emit diffs.\n"
    "- Only touch files shown below or files that clearly belong next to them.\n"
    "- Do not silence errors (empty catch blocks, removed checks) as a fix.\n"
    "- If you are unsure, set actionable=false and explain what a human should check in quick_issue_body.\n"
)


def format_snippets(snippets: List[SourceSnippet]) -> str:
    if not snippets:
        return "(no source files could be matched to this event)\n"
    blocks: List[str] = []
    for sn in snippets:
        content = sn.content
        if len(content) > SNIPPET_MAX_CHARS:
            content = content[:SNIPPET_MAX_CHARS] + "\n... [truncated]"
        blocks.append(f"--- START FILE: {sn.path} ---\n{content}\n--- END FILE: {sn.path} ---\n")
    return "\n".join(blocks)


def _event_header(event: ErrorEvent) -> str:
    meta = json.dumps(event.metadata, default=str, sort_keys=True)[:METADATA_MAX_CHARS]
    return (
        f"Event signature: {event.signature}\n"
        f"Service: {event.service}\n"
        f"Severity: {event.severity.value}\n"
        f"Timestamp: {event.timestamp.isoformat()}\n"
        f"Metadata: {meta}\n"
    )


def build_structured_prompt(event: ErrorEvent, context: ParsedLogContext, snippets: List[SourceSnippet]) -> str:
    plugins = ", ".join(context.plugin_names) if context.plugin_names else "(none detected)"
    return (
        "Diagnose this crash from a known tooling log format and propose a minimal fix.\n\n"
        "## Event ##\n"
        f"{_event_header(event)}"
        f"Log format: {context.format_name}\n"
        f"Out-of-memory indicators: {'yes' if context.out_of_memory else 'no'}\n"
        f"Plugins/components: {plugins}\n\n"
        "## Stack trace ##\n"
        f"{context.stack_trace or '(none extracted)'}\n\n"
        "## First log lines ##\n"
        + "\n".join(context.first_n_lines)
        + "\n\n## Source files ##\n"
        + format_snippets(snippets)
        + "\n"
        + _RULES
        + "\nRespond in JSON with exactly this structure:\n"
        + RESPONSE_SHAPE_STRUCTURED
        + "\n"
    )


def build_generic_prompt(event: ErrorEvent, context: ParsedLogContext, snippets: List[SourceSnippet]) -> str:
    message = event.message
    if len(message) > MESSAGE_MAX_CHARS:
        message = message[:MESSAGE_MAX_CHARS] + "\n... [truncated]"
    return (
        "Detect the cause of this production error and propose a minimal fix.\n\n"
        "## Event ##\n"
        f"{_event_header(event)}"
        "Message:\n"
        f"{message}\n\n"
        "## Source files ##\n"
        + format_snippets(snippets)
        + "\n"
        + _RULES
        + "\nRespond in JSON with exactly this structure:\n"
        + RESPONSE_SHAPE_GENERIC
        + "\n"
    )


def build_prompt(event: ErrorEvent, context: ParsedLogContext, snippets: List[SourceSnippet]) -> str:
    if context.known_format:
        return build_structured_prompt(event, context, snippets)
    return build_generic_prompt(event, context, snippets)
