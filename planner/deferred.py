from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class DeferredCall:
    """
    A cancellable call scheduled on the event loop after ``delay`` seconds.

    ``schedule`` replaces any pending call, so repeated calls inside the delay
    window coalesce into one (debounce). Failures of the callback are logged
    and never prevent later schedules from running.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[..., Any],
        *,
        name: str = "deferred",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay = max(0.0, float(delay))
        self._callback = callback
        self._name = name
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._args: tuple = ()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, *args) -> None:
        self.cancel()
        self._args = args
        self._handle = self._get_loop().call_later(self.delay, self._run)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def flush(self) -> bool:
        """Run the pending call now. Returns False when nothing was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._run()
        return True

    def _run(self) -> None:
        self._handle = None
        args, self._args = self._args, ()
        try:
            self._callback(*args)
        except Exception:
            logger.exception("Deferred call %s failed", self._name)
