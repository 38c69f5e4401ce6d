"""Tests for the redrawable terminal area."""

from __future__ import annotations

import io
import os
from unittest.mock import patch

from chat_tui.infrastructure.terminal import (
    CLEAR_TO_END,
    CURSOR_HIDE,
    CURSOR_SHOW,
    TerminalArea,
    terminal_size,
)


def test_terminal_size_uses_fallback() -> None:
    """The terminal size falls back to 80x24."""
    with patch(
        "chat_tui.infrastructure.terminal.shutil.get_terminal_size",
        return_value=os.terminal_size((120, 50)),
    ) as get_size:
        assert terminal_size() == (120, 50)
    get_size.assert_called_once_with((80, 24))


class TestTerminalArea:
    """Tests for TerminalArea."""

    def test_first_update_hides_cursor(self) -> None:
        """The first update hides the cursor."""
        stream = io.StringIO()
        area = TerminalArea(stream)

        area.update("hello")

        assert stream.getvalue() == CURSOR_HIDE + "hello"

    def test_same_text_writes_nothing(self) -> None:
        """Updating with the same text writes nothing."""
        stream = io.StringIO()
        area = TerminalArea(stream)
        area.update("hello")
        before = stream.getvalue()

        area.update("hello")

        assert stream.getvalue() == before

    def test_rewrite_moves_to_top_of_area(self) -> None:
        """A rewrite moves back to the top of the area."""
        stream = io.StringIO()
        area = TerminalArea(stream)
        area.update("a\nb\nc")

        area.update("x")

        assert stream.getvalue().endswith("\x1b[2A\r" + CLEAR_TO_END + "x")
        assert area.content == "x"

    def test_single_line_rewrite_stays_on_line(self) -> None:
        """A single-line rewrite stays on its line."""
        stream = io.StringIO()
        area = TerminalArea(stream)
        area.update("abc")

        area.update("xyz")

        assert stream.getvalue().endswith("abc\r" + CLEAR_TO_END + "xyz")

    def test_finish_shows_cursor_and_forgets_area(self) -> None:
        """finish() shows the cursor and forgets the area."""
        stream = io.StringIO()
        area = TerminalArea(stream)
        area.update("partial")

        area.finish("partial done\n")

        assert stream.getvalue().endswith(" done\n" + CURSOR_SHOW)
        assert area.content == ""

        area.update("next")
        assert stream.getvalue().endswith(CURSOR_HIDE + "next")
