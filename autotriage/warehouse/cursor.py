from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Optional, Protocol


logger = logging.getLogger(__name__)


class CursorStore(Protocol):
    def get_cursor(self) -> Optional[datetime]: ...

    def set_cursor(self, value: datetime) -> None: ...


class InMemoryCursorStore:
    def __init__(self, initial: Optional[datetime] = None) -> None:
        self._value = initial

    def get_cursor(self) -> Optional[datetime]:
        return self._value

    def set_cursor(self, value: datetime) -> None:
        self._value = value


class FileCursorStore:
    """
    Persists the cursor as a small JSON state file so restarts resume from the last fetch.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def get_cursor(self) -> Optional[datetime]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                st = json.load(f) or {}
            raw = st.get("cursor")
            if isinstance(raw, str) and raw:
                return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (OSError, ValueError) as e:
            # A corrupt state file means "start from the beginning", same as no state.
            logger.warning("cursor state unreadable at %s: %s", self.path, e)
        return None

    def set_cursor(self, value: datetime) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump({"cursor": value.isoformat()}, f)
        os.replace(tmp, self.path)


def build_cursor_store(path: str | None) -> CursorStore:
    if path:
        return FileCursorStore(path)
    return InMemoryCursorStore()
