"""Data models for dialogs, backups and comfort-zone reports."""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

ROLES = ("user", "assistant")


@dataclass
class Message:
    """A single stored dialog message."""

    role: str  # user, assistant
    text: str
    ts: int  # Unix timestamp (milliseconds)
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_entry(cls, entry: Any, ts: int) -> "Message":
        """Build a message from a caller-supplied entry.

        Args:
            entry: Mapping with role, text and optional ts / metadata
            ts: Timestamp to use when the entry carries none

        Raises:
            ValueError: If the entry does not have the role/text/ts shape
        """
        if not isinstance(entry, dict):
            raise ValueError("entry must be an object")
        role = entry.get("role")
        if role not in ROLES:
            raise ValueError(f"role must be one of {', '.join(ROLES)}")
        text = entry.get("text")
        if not isinstance(text, str):
            raise ValueError("text must be a string")
        given_ts = entry.get("ts")
        if given_ts is not None and (isinstance(given_ts, bool) or not isinstance(given_ts, (int, float))):
            raise ValueError("ts must be a number")
        if isinstance(given_ts, float) and not math.isfinite(given_ts):
            raise ValueError("ts must be a finite number")
        metadata = entry.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
        return cls(
            role=role,
            text=text,
            ts=int(given_ts) if given_ts is not None else ts,
            metadata=metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"role": self.role, "text": self.text, "ts": self.ts}
        if self.metadata is not None:
            doc["metadata"] = self.metadata
        return doc


@dataclass
class BackupInfo:
    """A backup directory as listed for callers."""

    id: str
    mtime: int  # milliseconds
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "mtime": self.mtime, "files": self.files}


@dataclass
class BackupResult:
    """Outcome of a snapshot: where it went and which files made it."""

    dir: Path | None
    files: list[str] = field(default_factory=list)

    @property
    def id(self) -> str | None:
        return self.dir.name if self.dir is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {"dir": str(self.dir) if self.dir is not None else None, "files": self.files}


@dataclass
class ComfortReport:
    """Result of a comfort-zone check."""

    messages: int
    bytes: int
    max_messages: int
    max_bytes: int
    needs_compaction: bool = False
    reason: str | None = None
    guidance: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "needsCompaction": self.needs_compaction,
            "reason": self.reason,
            "messages": self.messages,
            "bytes": self.bytes,
            "maxMessages": self.max_messages,
            "maxBytes": self.max_bytes,
            "guidance": self.guidance,
        }


@dataclass
class DialogDetail:
    """What a fetch returns: summary, trailing messages, maintenance advice."""

    summary: str | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)
    maintenance: ComfortReport | None = None
    include_summary: bool = True
    include_messages: bool = True

    def summary_value(self) -> Any:
        """The summary parsed as JSON, or the raw text if it does not parse."""
        if self.summary is None:
            return None
        try:
            return json.loads(self.summary)
        except json.JSONDecodeError:
            return self.summary

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if self.include_summary:
            doc["summary"] = self.summary_value()
        if self.include_messages:
            doc["messages"] = self.messages
        if self.maintenance is not None:
            doc["maintenance"] = self.maintenance.to_dict()
        return doc
