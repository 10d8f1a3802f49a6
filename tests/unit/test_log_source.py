from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from autotriage.errors import WarehouseQueryError
from autotriage.warehouse.cursor import FileCursorStore, InMemoryCursorStore
from autotriage.warehouse.log_source import LogSourceAdapter, derive_signature


T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _row(minutes: int, *, message: str = "boom", signature: Optional[str] = None, metadata: Any = None) -> Dict[str, Any]:
    return {
        "timestamp": T0 + timedelta(minutes=minutes),
        "service": "web",
        "severity": "ERROR",
        "message": message,
        "metadata": metadata,
        "signature": signature,
    }


class _FakeWarehouse:
    def __init__(self, batches: List[Any]) -> None:
        self.batches = list(batches)
        self.calls: List[Dict[str, Any]] = []

    def query_events(self, *, since, severities, limit):
        self.calls.append({"since": since, "severities": tuple(severities), "limit": limit})
        nxt = self.batches.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def test_cursor_tracks_max_timestamp_and_never_decreases() -> None:
    wh = _FakeWarehouse([[_row(5), _row(3)], [_row(9), _row(7)], []])
    store = InMemoryCursorStore()
    src = LogSourceAdapter(warehouse=wh, cursor_store=store, batch_size=10)

    assert len(src.fetch_recent_events()) == 2
    assert store.get_cursor() == T0 + timedelta(minutes=5)
    assert len(src.fetch_recent_events()) == 2
    assert store.get_cursor() == T0 + timedelta(minutes=9)
    assert src.fetch_recent_events() == []
    assert store.get_cursor() == T0 + timedelta(minutes=9)

    assert wh.calls[0]["since"] is None
    assert wh.calls[1]["since"] == T0 + timedelta(minutes=5)
    assert wh.calls[0]["severities"] == ("ERROR", "CRITICAL")
    assert wh.calls[0]["limit"] == 10


def test_query_failure_leaves_cursor_unchanged() -> None:
    store = InMemoryCursorStore(initial=T0)
    wh = _FakeWarehouse([WarehouseQueryError("down"), [_row(1)]])
    src = LogSourceAdapter(warehouse=wh, cursor_store=store)

    with pytest.raises(WarehouseQueryError):
        src.fetch_recent_events()
    assert store.get_cursor() == T0

    events = src.fetch_recent_events()
    assert wh.calls[1]["since"] == T0
    assert len(events) == 1


def test_signature_derived_when_missing() -> None:
    long_msg = "TypeError: cannot read properties of undefined " * 10
    wh = _FakeWarehouse([[_row(1, message=long_msg), _row(0, signature="given-sig")]])
    events = LogSourceAdapter(warehouse=wh, cursor_store=InMemoryCursorStore()).fetch_recent_events()

    assert events[0].signature == derive_signature("web", long_msg)
    assert events[0].signature == "web::" + long_msg[:120]
    assert events[1].signature == "given-sig"


def test_metadata_json_string_is_parsed_and_naive_timestamps_are_utc() -> None:
    row = _row(1, metadata=json.dumps({"route": "/admin"}))
    row["timestamp"] = datetime(2024, 5, 1, 12, 1, 0)
    events = LogSourceAdapter(warehouse=_FakeWarehouse([[row]]), cursor_store=InMemoryCursorStore()).fetch_recent_events()

    assert events[0].metadata == {"route": "/admin"}
    assert events[0].timestamp.tzinfo is not None
    assert events[0].timestamp == T0 + timedelta(minutes=1)


def test_malformed_row_is_skipped() -> None:
    bad = _row(2)
    bad["severity"] = "NOTICE"
    events = LogSourceAdapter(warehouse=_FakeWarehouse([[bad, _row(1)]]), cursor_store=InMemoryCursorStore()).fetch_recent_events()
    assert len(events) == 1


def test_file_cursor_store_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "state" / "cursor.json"
    store = FileCursorStore(str(path))
    assert store.get_cursor() is None

    store.set_cursor(T0)
    assert FileCursorStore(str(path)).get_cursor() == T0


def test_file_cursor_store_treats_corrupt_state_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "cursor.json"
    path.write_text("{not json", encoding="utf-8")
    assert FileCursorStore(str(path)).get_cursor() is None
