"""Durable file I/O and per-dialog locking."""

from .durable import DurableWriter, dump_pretty, read_json
from .locks import DialogLocks

__all__ = [
    "DialogLocks",
    "DurableWriter",
    "dump_pretty",
    "read_json",
]
