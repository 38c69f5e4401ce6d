"""Terminal write primitive - an in-place redrawable area at the bottom of the screen."""

from __future__ import annotations

import shutil
import sys
from typing import TextIO

CURSOR_HIDE = "\x1b[?25l"
CURSOR_SHOW = "\x1b[?25h"
CLEAR_TO_END = "\x1b[J"

DEFAULT_SIZE = (80, 24)


def terminal_size() -> tuple[int, int]:
    """Return ``(columns, lines)`` of the controlling terminal."""
    size = shutil.get_terminal_size(DEFAULT_SIZE)
    return size.columns, size.lines


class TerminalArea:
    """
    A block of lines that can be rewritten in place.

    The area remembers what it last wrote. When new text extends that text
    only the suffix is written, otherwise the cursor moves back to the top of
    the area, clears to the end of the screen and writes the text again.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._content = ""
        self._height = 0
        self._started = False

    @property
    def content(self) -> str:
        """Text currently shown in the area."""
        return self._content

    def update(self, text: str) -> None:
        """Make the area show ``text``."""
        if not self._started:
            self._started = True
            self.hide_cursor()

        if text == self._content:
            return

        if text.startswith(self._content):
            self._write(text[len(self._content) :])
        else:
            self._clear()
            self._write(text)

        self._content = text
        self._height = text.count("\n")

    def finish(self, text: str) -> None:
        """Write the final text, show the cursor and detach from it."""
        self.update(text)
        self.show_cursor()
        self.reset()

    def reset(self) -> None:
        """Forget the area; the next update starts a fresh one below."""
        self._content = ""
        self._height = 0
        self._started = False

    def show_cursor(self) -> None:
        self._write(CURSOR_SHOW)

    def hide_cursor(self) -> None:
        self._write(CURSOR_HIDE)

    def _clear(self) -> None:
        if self._height > 0:
            self._stream.write(f"\x1b[{self._height}A")
        self._stream.write("\r" + CLEAR_TO_END)

    def _write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()
