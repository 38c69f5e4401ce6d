"""Call-tree renderer - flattens a run's calls into the text shown on screen."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from chat_tui.infrastructure.engine import CallFrame, Output
    from chat_tui.presentation.style import RenderConfig

logger = get_logger(__name__)

TOOL_CALL_HEADER = "<tool call>"
# Columns reserved around the arguments inside the "Call Arguments" box
ARGUMENTS_WIDTH_MARGIN = 33
MIN_ARGUMENTS_WIDTH = 10
# Children running at least this long are shown while their parent is silent
STILL_RUNNING_AFTER = timedelta(seconds=1)


def find_root(calls: Mapping[str, CallFrame]) -> CallFrame | None:
    """Return the call without a parent (the earliest one if there are several)."""
    roots = [c for c in calls.values() if not c.parent_id]
    if not roots:
        return None
    return sorted_by_start(roots)[0]


def _start_key(call: CallFrame) -> float:
    return call.start.timestamp() if call.start is not None else float("-inf")


def sorted_by_start(calls: Iterable[CallFrame]) -> list[CallFrame]:
    """Order calls by start time; equal times keep their original order."""
    return sorted(calls, key=_start_key)


class CallTreeRenderer:
    """Renders the call tree as markdown prose, boxed raw output and call arguments."""

    def __init__(self, render: RenderConfig, raw_tool_prefix: str = "#!") -> None:
        """
        Initialize CallTreeRenderer.

        Args:
            render: rendering configuration
            raw_tool_prefix: instruction prefix of tools whose output is shown
                boxed and unformatted
        """
        self._render = render
        self._raw_tool_prefix = raw_tool_prefix

    def render_run(
        self,
        input: str,
        calls: Mapping[str, CallFrame],
        now: datetime | None = None,
    ) -> str:
        """
        Render the user's input line followed by the whole call tree.

        Args:
            input: the user's message for this turn
            calls: every call of the run, by id
            now: current time (defaults to the wall clock)
        """
        buf: list[str] = []
        if input:
            buf.append(self._render.colored("> " + input, "green") + "\n")

        root = find_root(calls)
        if root is not None:
            self._print_call(buf, calls, root, (), now)

        return "".join(buf)

    def _print_call(
        self,
        buf: list[str],
        calls: Mapping[str, CallFrame],
        call: CallFrame,
        stack: tuple[str, ...],
        now: datetime | None,
    ) -> None:
        if call.id in stack:
            return
        stack = (*stack, call.id)

        if call.display_text:
            try:
                buf.append(self._render.markdown(call.display_text))
            except Exception:
                logger.debug("Failed to render display text", call_id=call.id, exc_info=True)

        # Surface slow credential/context tools while the parent has nothing to show
        if not call.output:
            for child in self._still_running_children(calls, call, now):
                self._print_call(buf, calls, child, stack, now)

        for output in call.output:
            self._print_output(buf, calls, call, output, stack, now)

    def _print_output(
        self,
        buf: list[str],
        calls: Mapping[str, CallFrame],
        call: CallFrame,
        output: Output,
        stack: tuple[str, ...],
        now: datetime | None,
    ) -> None:
        content, _, tool_call = output.content.partition(TOOL_CALL_HEADER)
        if content:
            if call.tool.instructions.startswith(self._raw_tool_prefix):
                buf.append(self._render.box(content.strip()))
            else:
                buf.append(self._markdown_or_raw(content))

        if tool_call:
            buf.append(self.tool_call_arguments(TOOL_CALL_HEADER + tool_call))

        sub_calls = [calls[key] for key in output.sub_calls if key in calls]
        for sub_call in sorted_by_start(sub_calls):
            self._print_call(buf, calls, sub_call, stack, now)

    def _markdown_or_raw(self, content: str) -> str:
        try:
            return self._render.markdown(content)
        except Exception:
            logger.debug("Markdown rendering failed, showing raw text", exc_info=True)
            return content

    def _still_running_children(
        self,
        calls: Mapping[str, CallFrame],
        call: CallFrame,
        now: datetime | None,
    ) -> list[CallFrame]:
        children = []
        for child in calls.values():
            if child.id == call.id or child.parent_id != call.id:
                continue
            if not child.output or child.end is not None or child.start is None:
                continue
            current = now if now is not None else datetime.now(child.start.tzinfo)
            if current - child.start > STILL_RUNNING_AFTER:
                children.append(child)
        return sorted_by_start(children)

    def tool_call_arguments(self, tool_call: str) -> str:
        """
        Box the arguments of tool calls that are still being generated.

        Each ``<tool call>name -> arguments`` line becomes ``name arguments``,
        with arguments cut to the terminal width and the number of elided
        characters appended.
        """
        width = max(self._render.width() - ARGUMENTS_WIDTH_MARGIN, MIN_ARGUMENTS_WIDTH)
        lines: list[str] = []

        for line in tool_call.split("\n"):
            name, sep, args = line.removeprefix(TOOL_CALL_HEADER).partition(" -> ")
            if not sep:
                continue
            if len(args) > width:
                text = f"{name} {args[:width]}...({len(args) - width})"
            else:
                text = f"{name} {args}"
            lines.append(text.strip())

        if not lines:
            return ""
        return "\n" + self._render.box("Call Arguments:\n\n" + "\n".join(lines))
