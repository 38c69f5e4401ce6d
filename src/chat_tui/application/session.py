"""Session controller - drives a run turn by turn until the conversation ends."""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from chat_tui.infrastructure.engine import EngineError, RunOptions, RunState
from chat_tui.infrastructure.event_log import EventLog
from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from chat_tui.application.confirm import ConfirmationEngine
    from chat_tui.infrastructure.config import Config
    from chat_tui.infrastructure.engine import Engine, Run, ToolDef
    from chat_tui.infrastructure.signals import InterruptListener
    from chat_tui.presentation.display import Display
    from chat_tui.presentation.render import CallTreeRenderer
    from chat_tui.presentation.style import RenderConfig

logger = get_logger(__name__)

INTERRUPTED_TEXT = "Interrupted\n\n"
RESUME_PROMPT = "Resuming conversation"
LOAD_MESSAGE_DELAY = 1.0


def tool_prompt(run: Run) -> str:
    """Return the chat prompt for the tool that answers next, or ``""``."""
    name = run.responding_tool_name()
    return f"@{name}" if name else ""


class ChatSession:
    """
    One interactive conversation with a tool.

    Each turn consumes the run's events into the display and the
    confirmation flows, then asks the user for the next message.
    """

    def __init__(
        self,
        config: Config,
        engine: Engine,
        display: Display,
        confirm: ConfirmationEngine,
        renderer: CallTreeRenderer,
        render: RenderConfig,
        interrupt: InterruptListener,
        out: TextIO | None = None,
    ) -> None:
        """
        Initialize ChatSession.

        Args:
            config: application settings (run options, files)
            engine: execution engine client
            display: live view and interactive reads
            confirm: answers confirm and prompt events
            renderer: turns the call tree into display text
            render: used to color error lines
            interrupt: SIGINT listener, re-armed after every turn
            out: where errors and the load message are printed
        """
        self._config = config
        self._engine = engine
        self._display = display
        self._confirm = confirm
        self._renderer = renderer
        self._render = render
        self._interrupt = interrupt
        self._out = out if out is not None else sys.stdout

    async def run(self, tool: str, definitions: Sequence[ToolDef] = ()) -> None:
        """
        Hold a conversation until it finishes or the user quits.

        Args:
            tool: tool reference to run
            definitions: inline tool definitions; when given they are
                evaluated instead of running ``tool``

        Raises:
            EngineError: the engine failed to start the run or answer an event
        """
        workspace, temporary = self._prepare_workspace()
        try:
            await self._run(tool, list(definitions), workspace)
        finally:
            if temporary:
                shutil.rmtree(workspace, ignore_errors=True)
                logger.debug("Removed temporary workspace", workspace=str(workspace))

    def _prepare_workspace(self) -> tuple[Path, bool]:
        """Return the workspace directory and whether it is temporary."""
        if self._config.workspace is None:
            workspace = Path(
                tempfile.mkdtemp(prefix=f"{self._config.app_name}-workspace-")
            )
            return workspace, True

        workspace = self._config.workspace.absolute()
        workspace.mkdir(mode=0o700, parents=True, exist_ok=True)
        return workspace, False

    async def _run(self, tool: str, definitions: list[ToolDef], workspace: Path) -> None:
        config = self._config

        user_start = config.user_start_conversation
        if user_start is None:
            user_start = await self._user_starts_conversation(tool, definitions)

        chat_state = config.chat_state or self._load_chat_state()

        first_input = config.input
        if not first_input and user_start:
            first_input, ok = await self._display.prompt("")
            if not ok:
                return
        if not first_input and chat_state:
            first_input, ok = await self._display.prompt(RESUME_PROMPT)
            if not ok:
                return

        options = RunOptions(
            disable_cache=config.disable_cache,
            credential_overrides=config.credential_overrides,
            input=first_input,
            cache_dir=str(config.cache_dir) if config.cache_dir else "",
            sub_tool=config.sub_tool,
            workspace=str(workspace),
            chat_state=chat_state,
            location=config.location,
        )

        started = asyncio.Event()
        loader = asyncio.create_task(self._print_load_message(started))
        event_log = EventLog(config.event_log) if config.event_log else None
        try:
            if definitions:
                run = await self._engine.evaluate(options, *definitions)
            else:
                run = await self._engine.run(tool, options)
            logger.info("Run started", tool=tool, workspace=str(workspace))

            if event_log is not None:
                event_log.open()
            await self._converse(run, first_input, started, event_log)
        finally:
            started.set()
            loader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await loader
            if event_log is not None:
                event_log.close()

    async def _user_starts_conversation(
        self, tool: str, definitions: list[ToolDef]
    ) -> bool:
        """A chat tool without instructions waits for the user to speak first."""
        tools = definitions or await self._engine.parse(tool)
        if not tools:
            return False
        return tools[0].chat and not tools[0].instructions

    async def _print_load_message(self, started: asyncio.Event) -> None:
        if not self._config.load_message:
            return
        try:
            await asyncio.wait_for(started.wait(), timeout=LOAD_MESSAGE_DELAY)
        except asyncio.TimeoutError:
            self._write(self._config.load_message)

    async def _converse(
        self,
        run: Run,
        input: str,
        started: asyncio.Event,
        event_log: EventLog | None,
    ) -> None:
        try:
            while True:
                completed, text = await self._consume_turn(run, input, started, event_log)
                if not completed:
                    return

                interrupted = self._interrupt.interrupted
                if interrupted:
                    text = INTERRUPTED_TEXT

                await self._display.finish(text)
                self._save_chat_state(run)

                if run.state.is_terminal and not interrupted:
                    if not run.error:
                        logger.info("Run finished")
                        return
                    self._print_error(run.error)

                next_turn = await self._next_chat(run)
                if next_turn is None:
                    return
                input, run = next_turn
        finally:
            await run.close()

    async def _consume_turn(
        self,
        run: Run,
        input: str,
        started: asyncio.Event,
        event_log: EventLog | None,
    ) -> tuple[bool, str]:
        """
        Feed one turn's events to the display and the confirmation flows.

        Returns:
            ``(completed, text)``; ``completed`` is False when the user
            aborted a read, ``text`` is the last rendered tree
        """
        text = ""

        async def consume() -> bool:
            nonlocal text
            async for event in run.events():
                started.set()
                if event_log is not None:
                    event_log.record(event)

                if event.call is not None:
                    text = self._renderer.render_run(input, run.calls())
                    self._display.set_content(text)

                if not await self._confirm.handle_prompt(event, self._display.ask):
                    return False
                if not await self._confirm.handle_confirm(event, self._display.ask_yes_no):
                    return False
            return True

        consumer = asyncio.create_task(consume())
        waiter = asyncio.create_task(self._interrupt.wait())
        try:
            await asyncio.wait({consumer, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if consumer.done():
            return consumer.result(), text

        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer
        await run.interrupt()
        logger.info("Turn interrupted")
        return True, text

    async def _next_chat(self, run: Run) -> tuple[str, Run] | None:
        """Read the next message and start the turn; None when the user quits."""
        while True:
            self._interrupt.reset()
            line, ok = await self._display.prompt(tool_prompt(run))
            if not ok:
                return None
            try:
                return line, await run.next_chat(line)
            except EngineError as e:
                logger.warning("Failed to continue chat", error=e.message)
                self._print_error(e.message)

    def _load_chat_state(self) -> str:
        path = self._config.save_chat_state_file
        if path is None:
            return ""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError):
            logger.warning("Ignoring unreadable chat state", path=str(path), exc_info=True)
            return ""

    def _save_chat_state(self, run: Run) -> None:
        """Keep the state of an unfinished conversation for a later resume."""
        path = self._config.save_chat_state_file
        if path is None:
            return
        try:
            if run.state == RunState.FINISHED:
                path.unlink(missing_ok=True)
                return
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(run.chat_state())
        except OSError:
            logger.warning(
                "Failed to save chat state (non-blocking)", path=str(path), exc_info=True
            )

    def _print_error(self, message: str) -> None:
        self._write(self._render.colored(message, "red") + "\n")

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()
