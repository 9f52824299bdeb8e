"""Tool registry: maps tool names and wire arguments onto DialogStore calls."""

import json
import math
from collections.abc import Awaitable, Callable
from typing import Any

from history_store.formatting import render_flat
from history_store.logging import get_logger
from history_store.paths import DEFAULT_DIALOG
from history_store.store import DEFAULT_RECENT_TURNS, DEFAULT_SINCE_LIMIT, DialogStore

logger = get_logger("tools")

FORMAT_FLAT = "flat"
FORMAT_JSON = "json"

ToolHandler = Callable[[DialogStore, dict[str, Any]], Awaitable[str]]


class ToolError(Exception):
    """Raised for unknown tools and badly shaped arguments."""


def to_text(result: Any) -> str:
    return json.dumps(result, ensure_ascii=False, separators=(",", ":"))


def _require_str(args: dict[str, Any], name: str, default: str | None = None) -> str:
    value = args.get(name, default)
    if not isinstance(value, str):
        raise ToolError(f"'{name}' must be a string")
    return value


def _optional_int(args: dict[str, Any], name: str, default: int | None) -> int | None:
    value = args.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolError(f"'{name}' must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ToolError(f"'{name}' must be a finite number")
    return int(value)


def _optional_bool(args: dict[str, Any], name: str, default: bool) -> bool:
    value = args.get(name, default)
    if not isinstance(value, bool):
        raise ToolError(f"'{name}' must be a boolean")
    return value


def _target(args: dict[str, Any]) -> tuple[str, str]:
    project_root = _require_str(args, "projectRoot")
    dialog = args.get("dialog") or DEFAULT_DIALOG
    if not isinstance(dialog, str):
        raise ToolError("'dialog' must be a string")
    return project_root, dialog


async def _fetch(store: DialogStore, args: dict[str, Any]) -> str:
    fmt = _require_str(args, "format", FORMAT_FLAT)
    if fmt not in (FORMAT_FLAT, FORMAT_JSON):
        raise ToolError("'format' must be 'flat' or 'json'")
    detail = await store.fetch(
        *_target(args),
        recent_turns=_optional_int(args, "recentTurns", DEFAULT_RECENT_TURNS),
        include_summary=_optional_bool(args, "includeSummary", True),
        include_messages=_optional_bool(args, "includeMessages", True),
    )
    return render_flat(detail) if fmt == FORMAT_FLAT else to_text(detail.to_dict())


async def _save(store: DialogStore, args: dict[str, Any]) -> str:
    entries = args.get("entries")
    if entries is not None and not isinstance(entries, list):
        raise ToolError("'entries' must be a list")
    return to_text(await store.save(*_target(args), entry=args.get("entry"), entries=entries))


async def _get_summary(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.get_summary(*_target(args)))


async def _set_summary(store: DialogStore, args: dict[str, Any]) -> str:
    summary = _require_str(args, "summary")
    mode = _require_str(args, "mode", "merge")
    return to_text(await store.set_summary(*_target(args), summary, mode=mode))


async def _clear(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.clear(*_target(args)))


async def _list_dialogs(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.list_dialogs(_require_str(args, "projectRoot")))


async def _messages_since(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(
        await store.get_messages_since(
            *_target(args),
            since_ts=_optional_int(args, "sinceTs", None),
            limit=_optional_int(args, "limit", DEFAULT_SINCE_LIMIT),
        )
    )


async def _stats(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.stats(*_target(args)))


async def _list_backups(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.list_backups(*_target(args)))


async def _restore_backup(store: DialogStore, args: dict[str, Any]) -> str:
    return to_text(await store.restore_backup(*_target(args), _require_str(args, "id")))


TOOLS: dict[str, ToolHandler] = {
    "history_fetch": _fetch,
    "history_get_dialog_detail": _fetch,
    "history_save": _save,
    "history_get_summary": _get_summary,
    "history_set_summary": _set_summary,
    "history_clear": _clear,
    "history_list_dialogs": _list_dialogs,
    "history_get_messages_since": _messages_since,
    "history_stats": _stats,
    "history_list_backups": _list_backups,
    "history_restore_backup": _restore_backup,
}


class ToolDispatcher:
    """Dispatches tool calls to a DialogStore and returns result text."""

    def __init__(self, store: DialogStore) -> None:
        self.store = store

    @staticmethod
    def tool_names() -> list[str]:
        return sorted(TOOLS)

    async def dispatch(self, tool_name: str, arguments: dict[str, Any] | None = None) -> str:
        """Run a tool.

        Raises:
            ToolError: If the tool is unknown or its arguments are malformed
        """
        handler = TOOLS.get(tool_name)
        if handler is None:
            raise ToolError(f"Unknown tool: {tool_name}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolError("arguments must be an object")
        logger.debug("Dispatching tool: %s", tool_name)
        return await handler(self.store, arguments)
