"""Repaint engine - periodic redraw of the live transcript and interactive reads."""

from __future__ import annotations

import asyncio
import contextlib
import re
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from chat_tui.application.models import Answer
from chat_tui.infrastructure.logging import get_logger
from chat_tui.infrastructure.terminal import terminal_size

if TYPE_CHECKING:
    from chat_tui.infrastructure.readline import Prompter
    from chat_tui.infrastructure.terminal import TerminalArea

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PAINT_INTERVAL = 0.2

# Color resets and blank lines markdown rendering leaves at the end
_TRAILING_NOISE = re.compile(r"( ?\x1b\[[0-9;]+m ?)+\n+$")

_ANSWERS = {
    "y": Answer.YES,
    "yes": Answer.YES,
    "n": Answer.NO,
    "no": Answer.NO,
    "a": Answer.ALWAYS,
    "always": Answer.ALWAYS,
}


def parse_answer(line: str) -> Answer | None:
    """Map a typed answer to an ``Answer``; None when it is not recognized."""
    return _ANSWERS.get(line.strip().lower())


class Display:
    """
    Live view of the current turn.

    The session overwrites the content at any rate; a ticker task paints it
    every ``paint_interval`` seconds. Reads hold the paint lock so nothing is
    painted over the edit line.
    """

    def __init__(
        self,
        terminal: TerminalArea,
        prompter: Prompter,
        size: Callable[[], tuple[int, int]] = terminal_size,
        paint_interval: float = DEFAULT_PAINT_INTERVAL,
    ) -> None:
        """
        Initialize Display.

        Args:
            terminal: area the content is drawn into
            prompter: line editor used for reads
            size: returns the terminal ``(columns, lines)``
            paint_interval: seconds between paints
        """
        self._terminal = terminal
        self._prompter = prompter
        self._size = size
        self._paint_interval = paint_interval

        self._lock = threading.Lock()
        self._content = ""
        # None forces the next paint
        self._last_painted: str | None = ""
        self._finished = False

        self._paint_lock = asyncio.Lock()
        self._ticker: asyncio.Task[None] | None = None

    @property
    def content(self) -> str:
        with self._lock:
            return self._content

    def start(self) -> None:
        """Start the ticker on the running loop."""
        if self._ticker is None:
            self._ticker = asyncio.create_task(self._tick())

    async def close(self) -> None:
        """Stop the ticker and give the cursor back."""
        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None
        self._terminal.show_cursor()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._paint_interval)
            async with self._paint_lock:
                try:
                    self.paint()
                except OSError:
                    logger.warning("Failed to paint", exc_info=True)

    def set_content(self, text: str) -> None:
        """Replace what the next paint shows. Empty text is ignored."""
        text = _TRAILING_NOISE.sub("", text)
        if not text:
            return
        with self._lock:
            self._content = text

    async def finish(self, text: str) -> None:
        """
        Paint the final text of a turn and detach from it.

        The text is left on screen unclipped; the next content starts a new
        area below it.
        """
        if not text.endswith("\n"):
            text += "\n"
        with self._lock:
            self._content = text
            self._finished = True

        # A ticker queued on the lock may have painted the final text already
        async with self._paint_lock:
            self.paint()

    def paint(self) -> None:
        """
        Draw the content if it changed since the last paint.

        The final text is written once; the state is reset before the write
        so a later paint has nothing to draw. Callers other than tests hold
        the paint lock.
        """
        with self._lock:
            content = self._content
            finished = self._finished
            if content == self._last_painted and not finished:
                return
            if finished:
                self._content = ""
                self._last_painted = ""
                self._finished = False
            else:
                self._last_painted = content

        if finished:
            self._terminal.finish(content)
        else:
            self._terminal.update(self._clip(content))

    def _clip(self, content: str) -> str:
        height = max(self._size()[1], 1)
        lines = content.split("\n")
        if len(lines) <= height:
            return content
        return "\n".join(lines[-height:])

    async def _read(self, text: str, reader: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``reader`` below the content with the paint ticker held off.

        The last line of ``text`` becomes the edit line prompt; earlier lines
        are shown between the content and the edit line.
        """
        *leading, prompt = text.split("\n")

        async with self._paint_lock:
            with self._lock:
                content = self._content
                self._last_painted = content

            block = self._clip(content) if content else ""
            if block and not block.endswith("\n"):
                block += "\n"
            if leading:
                block += "\n".join(leading) + "\n"
            if block:
                self._terminal.update(block)

            self._prompter.set_prompt(prompt)
            self._terminal.show_cursor()
            try:
                return await reader()
            finally:
                self._terminal.hide_cursor()
                with self._lock:
                    self._last_painted = None

    async def ask(self, text: str, sensitive: bool = False) -> tuple[str, bool]:
        """Ask for one value; sensitive values are read masked."""
        if sensitive:
            return await self._read(text, self._prompter.read_password)
        return await self._read(text, self._prompter.read_line)

    async def ask_yes_no(self, text: str) -> tuple[Answer, bool]:
        """
        Ask a confirmation question until a recognized answer is typed.

        Returns:
            ``(answer, ok)``; ``ok`` is False when the read was aborted
        """
        while True:
            line, ok = await self._read(text, self._prompter.read_line)
            if not ok:
                return Answer.NO, False
            answer = parse_answer(line)
            if answer is not None:
                return answer, True

    async def prompt(self, text: str) -> tuple[str, bool]:
        """Read the next chat message (blank lines are not accepted)."""
        return await self._read(
            text, lambda: self._prompter.read_line(allow_empty=False)
        )
