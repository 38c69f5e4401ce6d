"""Line editing - prompt_toolkit wrapper used for every interactive read."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import DummyHistory, FileHistory, History, InMemoryHistory

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

PROMPT_STYLE = "ansigreen"


def history_id(tool: str) -> str:
    """Return a stable file-name-safe identifier for a tool reference."""
    return hashlib.sha256(tool.encode("utf-8")).hexdigest()


def open_history(tool: str, history_dir: Path | None) -> History:
    """
    Return the per-tool input history.

    Falls back to in-memory history when the history directory is unusable.
    """
    if history_dir is None:
        return InMemoryHistory()
    try:
        history_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.warning(
            "History directory unavailable, using in-memory history",
            history_dir=str(history_dir),
            exc_info=True,
        )
        return InMemoryHistory()
    return FileHistory(str(history_dir / f"chat-{history_id(tool)}.history"))


class Prompter:
    """Blocking (awaitable) line and password reads."""

    def __init__(
        self,
        session: PromptSession[str],
        password_session: PromptSession[str] | None = None,
    ) -> None:
        """
        Initialize Prompter.

        Args:
            session: session used for normal lines (keeps history)
            password_session: session used for masked input (keeps no history)
        """
        self._session = session
        self._password_session = password_session
        self._message = self._format_prompt("")
        self._closed = False

    @classmethod
    def create(cls, tool: str, history_dir: Path | None = None) -> Prompter:
        """
        Create a prompter whose history is keyed by the tool reference.

        The edit line is erased when a read completes so that the rendered
        transcript is the only record of the input.
        """
        session: PromptSession[str] = PromptSession(
            history=open_history(tool, history_dir),
            erase_when_done=True,
            enable_history_search=True,
        )
        return cls(session)

    @staticmethod
    def _format_prompt(text: str) -> FormattedText:
        if text:
            return FormattedText([(PROMPT_STYLE, f"{text}> ")])
        return FormattedText([(PROMPT_STYLE, "> ")])

    def set_prompt(self, text: str) -> None:
        self._message = self._format_prompt(text)

    async def read_line(self, allow_empty: bool = True) -> tuple[str, bool]:
        """
        Read one line.

        Args:
            allow_empty: when False, keep asking until a non-blank line is entered

        Returns:
            ``(line, ok)``; ``ok`` is False on Ctrl-C, Ctrl-D or after close
        """
        while not self._closed:
            try:
                line = await self._session.prompt_async(
                    self._message, handle_sigint=False
                )
            except (KeyboardInterrupt, EOFError):
                return "", False
            line = line.strip()
            if line or allow_empty:
                return line, True
        return "", False

    async def read_password(self) -> tuple[str, bool]:
        """Read one masked value; same ``(value, ok)`` contract as ``read_line``."""
        if self._closed:
            return "", False
        if self._password_session is None:
            self._password_session = PromptSession(
                history=DummyHistory(), erase_when_done=True
            )
        try:
            value = await self._password_session.prompt_async(
                self._message, is_password=True, handle_sigint=False
            )
        except (KeyboardInterrupt, EOFError):
            return "", False
        return value, True

    def close(self) -> None:
        self._closed = True
