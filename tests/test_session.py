"""Tests for the session controller."""

from __future__ import annotations

import asyncio
import io
import stat
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_tui.application import session as session_module
from chat_tui.application.session import INTERRUPTED_TEXT, RESUME_PROMPT, ChatSession
from chat_tui.infrastructure.config import Config
from chat_tui.infrastructure.engine import (
    CallFrame,
    EngineError,
    EventType,
    Frame,
    RunState,
    ToolDef,
)
from chat_tui.infrastructure.signals import InterruptListener
from chat_tui.presentation.style import RenderConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def _call_event(call_id: str = "c1") -> Frame:
    return Frame(call=CallFrame(id=call_id, type=EventType.CALL_CHAT))


class FakeRun:
    """Scripted run: yields its events, then optionally never ends."""

    def __init__(
        self,
        events: list[Frame] | None = None,
        state: RunState = RunState.FINISHED,
        error: str | None = None,
        tool_name: str = "",
        block: bool = False,
        delay: float = 0,
    ) -> None:
        self._events = events if events is not None else [_call_event()]
        self.state = state
        self.error = error
        self._tool_name = tool_name
        self._block = block
        self._delay = delay
        self.interrupt = AsyncMock()
        self.close = AsyncMock()
        self.next_chat = AsyncMock()

    async def events(self) -> AsyncIterator[Frame]:
        if self._delay:
            await asyncio.sleep(self._delay)
        for event in self._events:
            yield event
        if self._block:
            await asyncio.Event().wait()

    def calls(self) -> dict[str, CallFrame]:
        return {}

    def chat_state(self) -> str:
        return '{"chat": "state"}'

    def responding_tool_name(self) -> str:
        return self._tool_name


@pytest.fixture(autouse=True)
def _no_env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _config(tmp_path: Path, **overrides: Any) -> Config:
    values: dict[str, Any] = {
        "workspace": tmp_path / "workspace",
        "user_start_conversation": False,
        "input": "hi",
    }
    values.update(overrides)
    return Config(**values)


class Harness:
    """A session wired to mocks."""

    def __init__(self, config: Config, run: FakeRun) -> None:
        self.run = run
        self.engine = MagicMock()
        self.engine.run = AsyncMock(return_value=run)
        self.engine.evaluate = AsyncMock(return_value=run)
        self.engine.parse = AsyncMock(return_value=[])

        self.display = MagicMock()
        self.display.finish = AsyncMock()
        self.display.prompt = AsyncMock(return_value=("", False))

        self.confirm = MagicMock()
        self.confirm.handle_prompt = AsyncMock(return_value=True)
        self.confirm.handle_confirm = AsyncMock(return_value=True)

        self.renderer = MagicMock()
        self.renderer.render_run.return_value = "rendered"

        self.interrupt = InterruptListener()
        self.out = io.StringIO()
        self.session = ChatSession(
            config,
            self.engine,
            self.display,
            self.confirm,
            self.renderer,
            RenderConfig(color=False, size=lambda: (80, 24)),
            self.interrupt,
            out=self.out,
        )

    @property
    def options(self) -> Any:
        return self.engine.run.await_args.args[1]


class TestTurns:
    """Tests for the turn loop."""

    @pytest.mark.asyncio
    async def test_finished_run_ends_session(self, tmp_path: Path) -> None:
        """A finished run ends the session."""
        h = Harness(_config(tmp_path), FakeRun())

        await h.session.run("chat.gpt")

        h.engine.run.assert_awaited_once()
        assert h.engine.run.await_args.args[0] == "chat.gpt"
        assert h.options.input == "hi"
        assert h.options.workspace == str(tmp_path / "workspace")
        h.renderer.render_run.assert_called_once_with("hi", {})
        h.display.set_content.assert_called_once_with("rendered")
        h.display.finish.assert_awaited_once_with("rendered")
        h.display.prompt.assert_not_awaited()
        h.run.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_events_go_to_both_confirmation_flows(self, tmp_path: Path) -> None:
        """Every event is offered to both confirmation flows."""
        h = Harness(_config(tmp_path), FakeRun())

        await h.session.run("chat.gpt")

        event = _call_event()
        h.confirm.handle_prompt.assert_awaited_once_with(event, h.display.ask)
        h.confirm.handle_confirm.assert_awaited_once_with(event, h.display.ask_yes_no)

    @pytest.mark.asyncio
    async def test_continue_prompts_for_next_message(self, tmp_path: Path) -> None:
        """An unfinished run prompts for the next message."""
        first = FakeRun(state=RunState.CONTINUE, tool_name="helper")
        second = FakeRun()
        first.next_chat.return_value = second
        h = Harness(_config(tmp_path), first)
        h.display.prompt.return_value = ("tell me more", True)

        await h.session.run("chat.gpt")

        h.display.prompt.assert_awaited_once_with("@helper")
        first.next_chat.assert_awaited_once_with("tell me more")
        assert h.renderer.render_run.call_args_list[1].args[0] == "tell me more"
        assert h.display.finish.await_count == 2
        second.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_error_is_printed_and_prompting_continues(
        self, tmp_path: Path
    ) -> None:
        """A run error is printed and prompting continues."""
        h = Harness(_config(tmp_path), FakeRun(state=RunState.ERROR, error="boom"))

        await h.session.run("chat.gpt")

        assert h.out.getvalue() == "boom\n"
        h.display.prompt.assert_awaited_once_with("")

    @pytest.mark.asyncio
    async def test_next_chat_error_repeats_prompt(self, tmp_path: Path) -> None:
        """A failed next message is reported and asked again."""
        run = FakeRun(state=RunState.CONTINUE)
        run.next_chat.side_effect = EngineError("engine unavailable")
        h = Harness(_config(tmp_path), run)
        h.display.prompt.side_effect = [("again", True), ("", False)]

        await h.session.run("chat.gpt")

        assert "engine unavailable" in h.out.getvalue()
        assert h.display.prompt.await_count == 2

    @pytest.mark.asyncio
    async def test_aborted_confirmation_ends_session(self, tmp_path: Path) -> None:
        """Aborting a confirmation ends the session."""
        h = Harness(_config(tmp_path), FakeRun(state=RunState.CONTINUE))
        h.confirm.handle_confirm.return_value = False

        await h.session.run("chat.gpt")

        h.display.finish.assert_not_awaited()
        h.display.prompt.assert_not_awaited()
        h.run.close.assert_awaited_once()


class TestInterrupt:
    """Tests for Ctrl-C during a turn."""

    @pytest.mark.asyncio
    async def test_interrupt_ends_turn_not_session(self, tmp_path: Path) -> None:
        """An interrupt ends the turn but not the session."""
        run = FakeRun(state=RunState.CONTINUE, block=True)
        h = Harness(_config(tmp_path), run)
        h.display.set_content.side_effect = lambda text: h.interrupt.trigger()
        seen: list[bool] = []

        async def prompt(text: str) -> tuple[str, bool]:
            seen.append(h.interrupt.interrupted)
            return "", False

        h.display.prompt.side_effect = prompt

        await asyncio.wait_for(h.session.run("chat.gpt"), timeout=5)

        run.interrupt.assert_awaited_once()
        h.display.finish.assert_awaited_once_with(INTERRUPTED_TEXT)
        # the listener is re-armed before the next read
        assert seen == [False]

    @pytest.mark.asyncio
    async def test_interrupted_terminal_run_keeps_prompting(
        self, tmp_path: Path
    ) -> None:
        """An interrupted run keeps prompting even when terminal."""
        run = FakeRun(state=RunState.ERROR, error="cancelled", block=True)
        h = Harness(_config(tmp_path), run)
        h.display.set_content.side_effect = lambda text: h.interrupt.trigger()

        await asyncio.wait_for(h.session.run("chat.gpt"), timeout=5)

        assert h.out.getvalue() == ""
        h.display.prompt.assert_awaited_once()


class TestChatState:
    """Tests for the chat-state file."""

    @pytest.mark.asyncio
    async def test_unfinished_state_is_saved_privately(self, tmp_path: Path) -> None:
        """The state of an unfinished run is saved owner-only."""
        state_file = tmp_path / "state.json"
        h = Harness(
            _config(tmp_path, save_chat_state_file=state_file),
            FakeRun(state=RunState.CONTINUE),
        )

        await h.session.run("chat.gpt")

        assert state_file.read_text() == '{"chat": "state"}'
        assert stat.S_IMODE(state_file.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_finished_state_is_removed(self, tmp_path: Path) -> None:
        """The state file is removed once the run finishes."""
        state_file = tmp_path / "state.json"
        state_file.write_text("old")
        h = Harness(
            _config(tmp_path, save_chat_state_file=state_file, input="hi"),
            FakeRun(state=RunState.FINISHED),
        )

        await h.session.run("chat.gpt")

        assert not state_file.exists()

    @pytest.mark.asyncio
    async def test_save_failure_is_ignored(self, tmp_path: Path) -> None:
        """A failed state save does not end the session."""
        state_file = tmp_path / "missing-dir" / "state.json"
        h = Harness(
            _config(tmp_path, save_chat_state_file=state_file),
            FakeRun(state=RunState.CONTINUE),
        )

        await h.session.run("chat.gpt")

        assert not state_file.exists()
        h.display.prompt.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_saved_state_is_resumed(self, tmp_path: Path) -> None:
        """A saved state is resumed on the next start."""
        state_file = tmp_path / "state.json"
        state_file.write_text("saved state")
        h = Harness(
            _config(tmp_path, save_chat_state_file=state_file, input=""), FakeRun()
        )
        h.display.prompt.return_value = ("where were we", True)

        await h.session.run("chat.gpt")

        h.display.prompt.assert_awaited_once_with(RESUME_PROMPT)
        assert h.options.chat_state == "saved state"
        assert h.options.input == "where were we"

    @pytest.mark.asyncio
    async def test_declining_resume_starts_nothing(self, tmp_path: Path) -> None:
        """Declining to resume starts no run."""
        h = Harness(_config(tmp_path, chat_state="given", input=""), FakeRun())

        await h.session.run("chat.gpt")

        h.engine.run.assert_not_awaited()


class TestStartUp:
    """Tests for how a conversation starts."""

    @pytest.mark.asyncio
    async def test_chat_tool_without_instructions_waits_for_user(
        self, tmp_path: Path
    ) -> None:
        """A chat tool without instructions waits for the user."""
        h = Harness(
            _config(tmp_path, user_start_conversation=None, input=""), FakeRun()
        )
        h.engine.parse.return_value = [ToolDef(name="bot", chat=True)]
        h.display.prompt.return_value = ("hello", True)

        await h.session.run("chat.gpt")

        h.engine.parse.assert_awaited_once_with("chat.gpt")
        h.display.prompt.assert_awaited_once_with("")
        assert h.options.input == "hello"

    @pytest.mark.asyncio
    async def test_tool_with_instructions_starts_itself(self, tmp_path: Path) -> None:
        """A tool with instructions starts without input."""
        h = Harness(
            _config(tmp_path, user_start_conversation=None, input=""), FakeRun()
        )
        h.engine.parse.return_value = [
            ToolDef(name="bot", chat=True, instructions="Greet the user")
        ]

        await h.session.run("chat.gpt")

        h.display.prompt.assert_not_awaited()
        assert h.options.input == ""

    @pytest.mark.asyncio
    async def test_definitions_are_evaluated(self, tmp_path: Path) -> None:
        """Inline definitions are evaluated instead of run."""
        h = Harness(_config(tmp_path), FakeRun())
        definition = ToolDef(name="inline", instructions="Say hi")

        await h.session.run("inline", [definition])

        h.engine.evaluate.assert_awaited_once()
        assert h.engine.evaluate.await_args.args[1:] == (definition,)
        h.engine.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_temporary_workspace_is_removed(self, tmp_path: Path) -> None:
        """A temporary workspace is removed afterwards."""
        h = Harness(_config(tmp_path, workspace=None), FakeRun())
        seen: list[bool] = []

        async def run(tool: str, options: Any) -> FakeRun:
            seen.append(Path(options.workspace).is_dir())
            return h.run

        h.engine.run.side_effect = run

        await h.session.run("chat.gpt")

        workspace = h.options.workspace
        assert seen == [True]
        assert "chat-tui-workspace-" in workspace
        assert not Path(workspace).exists()

    @pytest.mark.asyncio
    async def test_configured_workspace_is_created(self, tmp_path: Path) -> None:
        """A configured workspace is created."""
        workspace = tmp_path / "nested" / "workspace"
        h = Harness(_config(tmp_path, workspace=workspace), FakeRun())

        await h.session.run("chat.gpt")

        assert workspace.is_dir()

    @pytest.mark.asyncio
    async def test_load_message_after_silence(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The load message is printed when no event arrives in time."""
        monkeypatch.setattr(session_module, "LOAD_MESSAGE_DELAY", 0.01)
        h = Harness(
            _config(tmp_path, load_message="Loading tools..."), FakeRun(delay=0.2)
        )

        await h.session.run("chat.gpt")

        assert h.out.getvalue() == "Loading tools..."

    @pytest.mark.asyncio
    async def test_no_load_message_when_events_arrive(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """No load message is printed when events arrive."""
        monkeypatch.setattr(session_module, "LOAD_MESSAGE_DELAY", 0.5)
        h = Harness(_config(tmp_path, load_message="Loading tools..."), FakeRun())

        await h.session.run("chat.gpt")

        assert h.out.getvalue() == ""

    @pytest.mark.asyncio
    async def test_event_log_is_written(self, tmp_path: Path) -> None:
        """Events are written to the event log."""
        event_log = tmp_path / "events.jsonl"
        h = Harness(_config(tmp_path, event_log=event_log), FakeRun())

        await h.session.run("chat.gpt")

        assert '"callChat"' in event_log.read_text()
