from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from autotriage.models import ErrorEvent, Severity
from autotriage.warehouse.cursor import CursorStore
from autotriage.warehouse.duckdb_query import WarehouseQuery


logger = logging.getLogger(__name__)

SEVERITIES = (Severity.ERROR.value, Severity.CRITICAL.value)
SIGNATURE_MESSAGE_CHARS = 120


def derive_signature(service: str, message: str) -> str:
    return f"{service}::{(message or '')[:SIGNATURE_MESSAGE_CHARS]}"


def _as_utc(ts: Any) -> datetime:
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if not isinstance(ts, datetime):
        raise ValueError(f"unsupported timestamp value: {ts!r}")
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _as_metadata(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"raw": raw}
        return parsed if isinstance(parsed, dict) else {"value": parsed}
    return {"value": raw}


def row_to_event(row: Dict[str, Any]) -> ErrorEvent:
    service = str(row.get("service") or "unknown")
    message = str(row.get("message") or "")
    signature = row.get("signature")
    if not isinstance(signature, str) or not signature.strip():
        signature = derive_signature(service, message)
    return ErrorEvent(
        signature=signature,
        timestamp=_as_utc(row.get("timestamp")),
        service=service,
        severity=Severity(str(row.get("severity") or "ERROR").upper()),
        message=message,
        metadata=_as_metadata(row.get("metadata")),
    )


@dataclass
class LogSourceAdapter:
    """
    Incremental reader of high-severity events. The cursor advances at fetch time, so
    processing is at-most-once: events of a batch whose remediation later fails are not refetched.
    """

    warehouse: WarehouseQuery
    cursor_store: CursorStore
    batch_size: int = 10

    def fetch_recent_events(self) -> List[ErrorEvent]:
        since = self.cursor_store.get_cursor()
        # Raises on failure; the cursor is untouched so the same window is retried next poll.
        rows = self.warehouse.query_events(since=since, severities=SEVERITIES, limit=self.batch_size)

        events: List[ErrorEvent] = []
        for row in rows:
            try:
                events.append(row_to_event(row))
            except ValueError as e:
                logger.warning("skipping malformed warehouse row: %s", e)
        if not events:
            return []

        newest = max(ev.timestamp for ev in events)
        if since is None or newest > _as_utc(since):
            self.cursor_store.set_cursor(newest)
        logger.info("fetched %d events (cursor=%s)", len(events), self.cursor_store.get_cursor())
        return events
