"""Rendering configuration - markdown, boxes and colored lines as ANSI text."""

from __future__ import annotations

import io
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich import box as rich_box
from rich.console import Console
from rich.markdown import Markdown
from rich.padding import Padding
from rich.panel import Panel
from rich.text import Text

from chat_tui.infrastructure.terminal import terminal_size

if TYPE_CHECKING:
    from rich.console import RenderableType

MIN_WIDTH = 20
WORD_WRAP_MARGIN = 10
BOX_MARGIN_LEFT = 4

_BACKTICK_RUN = re.compile(r"`{3,}")


@dataclass(frozen=True)
class RenderConfig:
    """
    How text is turned into terminal output.

    The value is immutable and holds no console: every call builds one sized
    to the terminal as it is now, so resizes are picked up on the next render.
    """

    color: bool = True
    size: Callable[[], tuple[int, int]] = field(default=terminal_size)
    code_theme: str = "monokai"

    def width(self) -> int:
        return self.size()[0]

    def height(self) -> int:
        return self.size()[1]

    def _console(self, width: int) -> Console:
        return Console(
            file=io.StringIO(),
            width=max(width, MIN_WIDTH),
            force_terminal=self.color,
            no_color=not self.color,
            color_system="truecolor" if self.color else None,
            highlight=False,
            emoji=False,
            soft_wrap=False,
        )

    def _capture(
        self,
        renderable: RenderableType,
        width: int,
        end: str = "\n",
        soft_wrap: bool = False,
    ) -> str:
        console = self._console(width)
        with console.capture() as capture:
            console.print(renderable, end=end, soft_wrap=soft_wrap)
        return capture.get()

    def markdown(self, text: str) -> str:
        """Render markdown, word-wrapped a little inside the terminal width."""
        return self._capture(
            Markdown(text, code_theme=self.code_theme),
            self.width() - WORD_WRAP_MARGIN,
        )

    def box(self, text: str) -> str:
        """Render raw text inside a bordered box indented from the left edge."""
        panel = Panel(
            Text.from_ansi(text),
            box=rich_box.SQUARE,
            padding=(0, 1),
            expand=False,
        )
        return self._capture(Padding(panel, (0, 0, 1, BOX_MARGIN_LEFT)), self.width())

    def code_block(self, language: str, text: str) -> str:
        """Render ``text`` as a fenced code block labeled with ``language``."""
        longest = max((len(m) for m in _BACKTICK_RUN.findall(text)), default=2)
        fence = "`" * max(3, longest + 1)
        if not text.endswith("\n"):
            text += "\n"
        return self.markdown(f"{fence}{language}\n{text}{fence}\n")

    def colored(self, text: str, style: str) -> str:
        """Return ``text`` in ``style`` (e.g. ``"green"``) without a trailing newline."""
        return self._capture(
            Text(text, style=style), self.width(), end="", soft_wrap=True
        )
