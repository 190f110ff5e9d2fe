"""Process-level hooks that dump state before the process goes down."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
import traceback
from types import TracebackType
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from taskmesh.resources.checkpoints import CheckpointStore

logger = logging.getLogger(__name__)

ShutdownHook = Callable[[], Awaitable[None]]

_SIGNAL_REASONS = {
    signal.SIGTERM: "sigterm-shutdown",
    signal.SIGINT: "sigint-shutdown",
}


class CrashGuard:
    """Installs dump-on-failure hooks.

    * uncaught exceptions dump, then defer to the previous ``sys.excepthook``
      so the interpreter terminates as usual;
    * SIGTERM/SIGINT dump, then run the shutdown hook (or stop the loop);
    * exceptions nobody retrieved from asyncio tasks dump and keep running.
    """

    def __init__(self, store: CheckpointStore, *, shutdown: Optional[ShutdownHook] = None) -> None:
        self._store = store
        self._shutdown = shutdown
        self._previous_excepthook: Optional[Callable[..., Any]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signals: List[signal.Signals] = []
        self._pending: List[asyncio.Task[Any]] = []

    def install(
        self, loop: Optional[asyncio.AbstractEventLoop] = None, *, handle_signals: bool = True
    ) -> None:
        if self._previous_excepthook is None:
            self._previous_excepthook = sys.excepthook
            sys.excepthook = self._excepthook

        self._loop = loop or asyncio.get_running_loop()
        self._loop.set_exception_handler(self._loop_exception_handler)

        if handle_signals:
            for sig in _SIGNAL_REASONS:
                try:
                    self._loop.add_signal_handler(sig, self._on_signal, sig)
                except (NotImplementedError, RuntimeError):
                    logger.warning("Cannot install handler for %s on this platform", sig.name)
                    continue
                self._signals.append(sig)

    def uninstall(self) -> None:
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None
        if self._loop is not None:
            self._loop.set_exception_handler(None)
            for sig in self._signals:
                self._loop.remove_signal_handler(sig)
        self._signals.clear()
        self._loop = None

    def _excepthook(
        self,
        exc_type: Type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        logger.critical("Uncaught exception detected: %s", exc)
        self._store.emergency_dump_sync(
            "uncaught-exception",
            {"error": str(exc), "stack": "".join(traceback.format_exception(exc_type, exc, tb))},
        )
        previous = self._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc, tb)

    def _loop_exception_handler(
        self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]
    ) -> None:
        exc = context.get("exception")
        logger.error("Unhandled asyncio failure detected: %s", context.get("message"))
        details = {"message": context.get("message"), "reason": repr(exc) if exc else None}
        self._track(loop.create_task(self._store.emergency_dump("unhandled-rejection", details)))
        loop.default_exception_handler(context)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.warning("%s received, performing graceful shutdown...", sig.name)
        if self._loop is None:
            logger.error("No event loop bound, skipping shutdown dump for %s", sig.name)
            return
        self._track(self._loop.create_task(self._dump_and_shutdown(_SIGNAL_REASONS[sig])))

    async def _dump_and_shutdown(self, reason: str) -> None:
        await self._store.emergency_dump(reason)
        if self._shutdown is not None:
            await self._shutdown()
        elif self._loop is not None:
            self._loop.stop()

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._pending.append(task)
        task.add_done_callback(self._pending.remove)
