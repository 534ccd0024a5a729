"""Adapters for the UI event loop pumped during reconciliation."""

from __future__ import annotations

import asyncio
import threading
from typing import Protocol, runtime_checkable


@runtime_checkable
class UILoop(Protocol):
    """What reconciliation needs from a GUI toolkit's event loop."""

    def has_live_loop(self) -> bool:
        """True if a live loop exists on the calling thread."""
        ...

    def pump_once(self) -> bool:
        """Dispatch pending events once. Returns whether anything was pending."""
        ...


class NoUILoop:
    """Stands in when no GUI toolkit is present."""

    def has_live_loop(self) -> bool:
        return False

    def pump_once(self) -> bool:
        return False


class AsyncioUILoop:
    """
    Pumps an asyncio event loop, the loop Textual applications run on.

    The loop counts as live only on the thread that created the adapter,
    while it is neither closed nor already running (a running loop cannot
    be pumped re-entrantly).
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._thread_id = threading.get_ident()

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    def attach(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Point the adapter at another loop, or detach with None."""
        self._loop = loop

    def has_live_loop(self) -> bool:
        loop = self._loop
        return (
            loop is not None
            and threading.get_ident() == self._thread_id
            and not loop.is_closed()
            and not loop.is_running()
        )

    def pump_once(self) -> bool:
        if not self.has_live_loop():
            return False
        pending = bool(asyncio.all_tasks(self._loop))
        self._loop.run_until_complete(asyncio.sleep(0))
        return pending
