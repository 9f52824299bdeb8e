"""Stdio JSON-lines server.

One request per input line: {"id": ..., "tool": "...", "arguments": {...}}
One response per output line: {"id": ..., "result": "..."} or {"id": ..., "error": "..."}

Each request runs as its own task in arrival order, so requests for
different dialogs overlap while the dialog locks keep each dialog ordered.
"""

import asyncio
import json
import signal
import sys
import threading
from typing import Any, TextIO

from history_store.logging import get_logger
from history_store.tools import ToolDispatcher, ToolError

logger = get_logger("server")

# Global flag for graceful shutdown
_shutdown_requested = False
# Loop and event of the running server, woken by request_shutdown
_wakeup: tuple[asyncio.AbstractEventLoop, asyncio.Event] | None = None


def request_shutdown() -> None:
    """Request graceful shutdown of the server loop."""
    global _shutdown_requested
    _shutdown_requested = True
    if _wakeup is not None:
        loop, event = _wakeup
        loop.call_soon_threadsafe(event.set)


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


async def handle_line(dispatcher: ToolDispatcher, line: str) -> dict[str, Any]:
    """Turn one request line into a response document."""
    try:
        request = json.loads(line)
    except json.JSONDecodeError as e:
        return {"id": None, "error": f"Malformed request: {e}"}
    if not isinstance(request, dict):
        return {"id": None, "error": "Malformed request: expected an object"}

    request_id = request.get("id")
    tool = request.get("tool")
    if not isinstance(tool, str):
        return {"id": request_id, "error": "Malformed request: 'tool' must be a string"}

    try:
        result = await dispatcher.dispatch(tool, request.get("arguments"))
    except ToolError as e:
        return {"id": request_id, "error": str(e)}
    except Exception as e:  # noqa: BLE001
        logger.exception("Tool %s failed", tool)
        return {"id": request_id, "error": f"Error executing '{tool}': {e}"}
    return {"id": request_id, "result": result}


def _pump_lines(reader: TextIO, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    """Read request lines on a daemon thread and hand them to the loop.

    None marks EOF.
    """
    while True:
        line = reader.readline()
        try:
            loop.call_soon_threadsafe(lines.put_nowait, line or None)
        except RuntimeError:
            # Loop already closed after a shutdown.
            return
        if not line:
            return


def _on_signal(signum: int) -> None:
    logger.info("Received signal %s, shutting down", signal.Signals(signum).name)
    request_shutdown()


def _install_signal_handlers(loop: asyncio.AbstractEventLoop) -> list[int]:
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot install handler for %s", signal.Signals(signum).name)
            continue
        installed.append(signum)
    return installed


async def serve(
    dispatcher: ToolDispatcher,
    reader: TextIO | None = None,
    writer: TextIO | None = None,
    handle_signals: bool = False,
) -> int:
    """Serve requests until EOF or shutdown.

    Args:
        dispatcher: Tool dispatcher bound to a store
        reader: Request stream (defaults to stdin)
        writer: Response stream (defaults to stdout)
        handle_signals: Stop on SIGINT/SIGTERM (main thread only)

    Returns:
        Number of requests handled
    """
    global _wakeup
    reader = reader or sys.stdin
    writer = writer or sys.stdout
    loop = asyncio.get_running_loop()
    tasks: set[asyncio.Task] = set()
    handled = 0

    async def respond(line: str) -> None:
        response = await handle_line(dispatcher, line)
        # Written from the loop thread, one complete line at a time.
        writer.write(json.dumps(response, ensure_ascii=False) + "\n")
        writer.flush()

    stop = asyncio.Event()
    _wakeup = (loop, stop)
    if is_shutdown_requested():
        stop.set()
    installed = _install_signal_handlers(loop) if handle_signals else []

    lines: asyncio.Queue[str | None] = asyncio.Queue()
    threading.Thread(
        target=_pump_lines, args=(reader, loop, lines), name="stdio-reader", daemon=True
    ).start()

    logger.info("Serving %d tools on stdio", len(dispatcher.tool_names()))

    stopped = asyncio.create_task(stop.wait())
    try:
        while not is_shutdown_requested():
            next_line = asyncio.create_task(lines.get())
            await asyncio.wait({next_line, stopped}, return_when=asyncio.FIRST_COMPLETED)
            if not next_line.done():
                next_line.cancel()
                break
            line = next_line.result()
            if line is None:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(respond(line))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            handled += 1
            # Let the new task register with its dialog lock before reading on.
            await asyncio.sleep(0)

        if tasks:
            await asyncio.gather(*tasks)
    finally:
        stopped.cancel()
        for signum in installed:
            loop.remove_signal_handler(signum)
        _wakeup = None

    logger.info("Server stopped after %d requests", handled)
    return handled
