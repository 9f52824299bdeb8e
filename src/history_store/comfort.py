"""Comfort-zone checks: is the history too large to hand back directly?

Two bases are kept apart on purpose. The store-level check looks at the
files on disk; the response-level check looks at what a fetch is about to
return. They are not guaranteed to agree.
"""

import json
from pathlib import Path
from typing import Any

from history_store.models import ComfortReport
from history_store.paths import MESSAGES_FILE, SUMMARY_FILE
from history_store.storage.durable import read_json

REASON_MESSAGES = "messages_count_exceeds_comfort_zone"
REASON_BYTES = "bytes_exceed_comfort_zone"

GUIDANCE = [
    "summarize: fold the older messages into the rolling summary",
    "clear: call history_clear (a backup is taken automatically)",
    "merge: call history_set_summary with mode=merge and the new summary",
    "re-seed: save back only the few messages still needed verbatim",
]


class ComfortZoneMonitor:
    """Advisory size checks; never blocks or changes state."""

    def __init__(self, max_messages: int, max_bytes: int) -> None:
        self.max_messages = max_messages
        self.max_bytes = max_bytes

    def thresholds(self) -> dict[str, int]:
        return {"maxMessages": self.max_messages, "maxBytes": self.max_bytes}

    def check(self, message_count: int, byte_size: int) -> ComfortReport:
        reason = None
        if message_count > self.max_messages:
            reason = REASON_MESSAGES
        elif byte_size > self.max_bytes:
            reason = REASON_BYTES
        return ComfortReport(
            messages=message_count,
            bytes=byte_size,
            max_messages=self.max_messages,
            max_bytes=self.max_bytes,
            needs_compaction=reason is not None,
            reason=reason,
            guidance=list(GUIDANCE) if reason else [],
        )

    def check_store(self, dialog_dir: Path) -> ComfortReport:
        """Check the stored log: message count plus on-disk file sizes."""
        messages = read_json(dialog_dir / MESSAGES_FILE, [])
        count = len(messages) if isinstance(messages, list) else 0
        size = 0
        for name in (MESSAGES_FILE, SUMMARY_FILE):
            try:
                size += (dialog_dir / name).stat().st_size
            except OSError:
                continue
        return self.check(count, size)

    def check_response(self, messages: list[dict[str, Any]], summary: str | None) -> ComfortReport:
        """Check a response: returned slice plus summary, as UTF-8 bytes."""
        size = len(json.dumps(messages, ensure_ascii=False, separators=(",", ":")).encode("utf-8")) if messages else 0
        if summary:
            size += len(summary.encode("utf-8"))
        return self.check(len(messages), size)
