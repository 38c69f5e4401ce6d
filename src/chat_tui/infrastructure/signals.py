"""Interrupt listener - turns SIGINT into a per-turn cancellation signal."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

logger = get_logger(__name__)


class InterruptListener:
    """
    Watch for SIGINT while a turn is running.

    An interrupt ends the current turn only; ``reset()`` re-arms the listener
    for the next one.
    """

    def __init__(self, signals: tuple[signal.Signals, ...] = (signal.SIGINT,)) -> None:
        self._signals = signals
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed = False

    @property
    def interrupted(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until the next interrupt."""
        await self._event.wait()

    def trigger(self) -> None:
        """Mark the current turn as interrupted."""
        if self._event.is_set():
            return  # already interrupted
        logger.info("Interrupt received, ending current turn")
        self._event.set()

    def install(self) -> None:
        """Register the signal handlers on the running loop."""
        self._loop = asyncio.get_running_loop()
        loop = self._loop
        # Windows has no loop.add_signal_handler
        try:
            for sig in self._signals:
                loop.add_signal_handler(sig, self.trigger)
        except NotImplementedError:
            for sig in self._signals:
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self.trigger))
        self._installed = True

    def remove(self) -> None:
        """Restore the default handlers."""
        if not self._installed or self._loop is None:
            return
        try:
            for sig in self._signals:
                self._loop.remove_signal_handler(sig)
        except NotImplementedError:
            for sig in self._signals:
                signal.signal(sig, signal.SIG_DFL)
        self._installed = False

    def reset(self) -> None:
        """Clear the interrupted flag and re-arm the handlers for the next turn."""
        self._event.clear()
        if self._installed:
            self.remove()
            self.install()

    def __enter__(self) -> InterruptListener:
        self.install()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.remove()
