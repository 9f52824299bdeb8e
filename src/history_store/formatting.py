"""Flat, line-oriented rendering of dialog details for LLM consumption."""

import json

from history_store.models import ComfortReport, DialogDetail

ROLE_PREFIX = {"user": "U", "assistant": "A"}


def escape_flat_text(text: str) -> str:
    """Escape backslashes, newlines and carriage returns so a message fits on one line."""
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace("\r", "\\r")


def format_maintenance(report: ComfortReport) -> str:
    return f"MAINTENANCE: {report.reason} | {'; '.join(report.guidance)}"


def format_summary(detail: DialogDetail) -> str:
    value = detail.summary_value()
    if isinstance(value, str) and value == detail.summary:
        # Unparseable summary text is shown as-is, escaped.
        return f"SUMMARY: {escape_flat_text(value)}"
    return f"SUMMARY: {json.dumps(value, ensure_ascii=False, separators=(',', ':'))}"


def render_flat(detail: DialogDetail) -> str:
    """Render a dialog detail as maintenance line, summary line, then messages."""
    lines = []
    if detail.maintenance is not None and detail.maintenance.needs_compaction:
        lines.append(format_maintenance(detail.maintenance))
    if detail.include_summary and detail.summary is not None:
        lines.append(format_summary(detail))
    if detail.include_messages:
        for msg in detail.messages:
            prefix = ROLE_PREFIX.get(msg.get("role"), "?")
            lines.append(f"{prefix}: {escape_flat_text(str(msg.get('text', '')))}")
    return "\n".join(lines)
