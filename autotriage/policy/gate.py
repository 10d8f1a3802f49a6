from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Optional, Tuple

from autotriage.models import Patch, PolicyDecision


def _normalize_path(p: str) -> str:
    # Same path the working copy will write: "./", "//" and ".." segments collapse before matching.
    p = (p or "").replace("\\", "/")
    if not p:
        return p
    return posixpath.normpath(p).lstrip("/")


@dataclass(frozen=True)
class PolicyGate:
    """
    Decides whether a patch may become a pull request. Pure: no I/O, no state, never raises.
    """

    protected_prefixes: Tuple[str, ...] = ()

    def evaluate(self, patch: Optional[Patch]) -> PolicyDecision:
        if patch is None:
            return PolicyDecision(blocked=False)
        for raw_path in patch.touched_paths():
            raw = str(raw_path).replace("\\", "/")
            candidates = (raw, _normalize_path(raw))
            for rule in self.protected_prefixes:
                if not rule:
                    continue
                if any(p.startswith(rule) or rule in p for p in candidates):
                    return PolicyDecision(blocked=True, matched_rule=rule)
        return PolicyDecision(blocked=False)
