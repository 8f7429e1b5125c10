"""Structured JSON-lines event log for batch runs.

Events are buffered in memory and appended to the log file on flush().
Without a path the log is memory-only and entries stay inspectable.
``history`` holds the events of the most recent batch.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from batch_tester.security import redact_text


class RunLog:
    """Append-only structured run log with size rotation."""

    MAX_SIZE = 10 * 1024 * 1024  # 10 MB

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._entries: list[dict] = []
        self.history: list[dict] = []

    def log(
        self,
        event: str,
        test: str = "",
        method: str = "",
        url: str = "",
        status: Optional[int] = None,
        attempt: int = 0,
        duration_ms: float = 0.0,
        detail: str = "",
    ) -> None:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "event": event,
        }
        if test:
            entry["test"] = test
        if method:
            entry["method"] = method
        if url:
            entry["url"] = url
        if status is not None:
            entry["status"] = status
        if attempt:
            entry["attempt"] = attempt
        if duration_ms:
            entry["duration_ms"] = round(duration_ms, 2)
        if detail:
            entry["detail"] = redact_text(detail)
        self._entries.append(entry)
        self.history.append(entry)

    def events(self, name: str) -> list[dict]:
        return [e for e in self.history if e["event"] == name]

    def clear_history(self) -> None:
        self.history.clear()

    def flush(self) -> None:
        """Append buffered entries to the log file, rotating if oversized."""
        if not self._entries or self.path is None:
            self._entries.clear()
            return
        # Refuse to write through symlinks
        if self.path.is_symlink():
            self._entries.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists() and self.path.stat().st_size > self.MAX_SIZE:
            rotated = self.path.with_suffix(self.path.suffix + ".1")
            if rotated.exists():
                rotated.unlink()
            self.path.rename(rotated)
        with self.path.open("a") as f:
            for entry in self._entries:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        self._entries.clear()

    @property
    def entry_count(self) -> int:
        return len(self._entries)
