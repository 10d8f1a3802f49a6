from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from autotriage.models import AuditKind, ErrorEvent


logger = logging.getLogger(__name__)


class AuditSink:
    """
    Append-only JSONL audit store. One file per collection: <audit_dir>/<collection>.jsonl.
    Records are never rewritten. Write failures are logged and swallowed.
    """

    def __init__(self, audit_dir: str, collection: str = "auditLogs") -> None:
        self.path = os.path.join(audit_dir, f"{collection}.jsonl")

    def record(self, kind: AuditKind | str, event: ErrorEvent, extra: Optional[Dict[str, Any]] = None) -> bool:
        doc = {
            "type": kind.value if isinstance(kind, AuditKind) else str(kind),
            "event": event.model_dump(mode="json"),
            "extra": extra or {},
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        try:
            line = json.dumps(doc, ensure_ascii=False, default=str)
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error("audit write failed (%s) for %s: %s", doc["type"], event.signature, e)
            return False
        return True
