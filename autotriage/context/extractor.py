from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Tuple

from autotriage.models import ErrorEvent, ParsedLogContext, SourceSnippet


logger = logging.getLogger(__name__)

STACK_TRACE_MAX_CHARS = 2000
FIRST_N_LINES = 20

# Known structured formats emitted by JS/TS tooling (node, V8, tsserver, bundlers).
_KNOWN_FORMATS: List[Tuple[str, re.Pattern[str]]] = [
    ("v8_fatal", re.compile(r"<--- Last few GCs --->|FATAL ERROR: .*JavaScript heap")),
    ("tsserver", re.compile(r"(?i)\btsserver\b|TypeScript Server Error")),
    ("bundler", re.compile(r"(?i)\b(webpack|turbopack|next build|vite)\b.*(error|failed)")),
    ("node_crash", re.compile(r"(?m)^\s+at\s+\S.*(\(.+:\d+:\d+\)|:\d+:\d+)\s*$")),
]

_STACK_LINE_RE = re.compile(r"^\s+at\s+\S")
_OOM_RE = re.compile(r"OutOfMemory|FATAL ERROR|Allocation failed")
_PLUGIN_RES: List[re.Pattern[str]] = [
    # "[plugin next-pwa]", "plugin: @sentry/nextjs", "Plugin \"eslint-plugin-react\""
    re.compile(r"(?i)\[plugin[:\s]+([@\w][\w@./-]*)\]"),
    re.compile(r"(?i)\bplugin\s*(?:[:=]\s*|\s+[\"'])[\"']?(@?[\w][\w@./-]*)"),
    # "plugins: a, b, c" / "plugins: [a, b]"
    re.compile(r"(?i)\bplugins\s*[:=]\s*\[?([^\]\n]+)\]?"),
]
# Segments may hold Next.js route syntax: [id], [...slug], (group).
_PATH_RE = re.compile(
    r"(?:[A-Za-z]:)?[\w@.~\-/\\\[\]()]*[\w\-\])]\.(?:json|tsx?|jsx?|mjs|cjs|py|css|scss|ya?ml|rules)(?!\w)(?::\d+(?::\d+)?)?"
)
_LINE_COL_SUFFIX_RE = re.compile(r"(?::\d+){1,2}$")


class SourceReader(Protocol):
    def read_file(self, rel_path: str) -> str: ...


def _split_plugins(raw: str) -> List[str]:
    out: List[str] = []
    for part in re.split(r"[,\s]+", raw):
        name = part.strip().strip("\"'[]()")
        if name and re.match(r"^@?[\w][\w@./-]*$", name):
            out.append(name)
    return out


def _extract_stack_trace(text: str) -> Optional[str]:
    run: List[str] = []
    for ln in text.splitlines():
        if _STACK_LINE_RE.match(ln):
            run.append(ln.rstrip())
        elif run:
            break
    if not run:
        return None
    return "\n".join(run)[:STACK_TRACE_MAX_CHARS]


@dataclass(frozen=True)
class ContextExtractor:
    source_root_markers: Sequence[str] = field(default_factory=lambda: ("src/",))
    max_snippets: int = 3

    def extract(self, event: ErrorEvent) -> ParsedLogContext:
        text = event.message or ""
        fmt: Optional[str] = None
        for name, pat in _KNOWN_FORMATS:
            if pat.search(text):
                fmt = name
                break

        lines = text.splitlines()
        ctx = ParsedLogContext(known_format=fmt is not None, format_name=fmt, first_n_lines=lines[:FIRST_N_LINES])
        if fmt is None:
            return ctx

        plugins: List[str] = []
        for pat in _PLUGIN_RES:
            for m in pat.finditer(text):
                for name in _split_plugins(m.group(1)):
                    if name not in plugins:
                        plugins.append(name)

        return ctx.model_copy(
            update={
                "stack_trace": _extract_stack_trace(text),
                "plugin_names": plugins,
                "out_of_memory": bool(_OOM_RE.search(text)),
            }
        )

    def candidate_paths(self, text: str) -> List[str]:
        """
        Repo-relative paths mentioned in `text`, in order of appearance, de-duplicated.
        Only paths containing a source-root marker are kept; they are cut at the marker.
        """
        out: List[str] = []
        for m in _PATH_RE.finditer(text or ""):
            raw = _LINE_COL_SUFFIX_RE.sub("", m.group(0)).replace("\\", "/")
            for marker in self.source_root_markers:
                idx = raw.find(marker)
                if idx == -1:
                    continue
                rel = raw[idx:]
                if rel not in out:
                    out.append(rel)
                break
        return out

    def gather_snippets(self, context: ParsedLogContext, event: ErrorEvent, working_copy: SourceReader) -> List[SourceSnippet]:
        text = context.stack_trace or event.message or ""
        snippets: List[SourceSnippet] = []
        for rel in self.candidate_paths(text):
            if len(snippets) >= self.max_snippets:
                break
            try:
                content = working_copy.read_file(rel)
            except (OSError, ValueError) as e:
                logger.warning("skipping unreadable source path %s: %s", rel, e)
                continue
            snippets.append(SourceSnippet(path=rel, content=content))
        return snippets
