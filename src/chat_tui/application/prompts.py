"""Prompt synthesizer - turns authorization requests into confirmation prompts."""

from __future__ import annotations

import difflib
from pathlib import Path
from typing import TYPE_CHECKING

from chat_tui.application.models import (
    AlwaysRule,
    ConfirmPrompt,
    ExecInput,
    WriteInput,
)
from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from chat_tui.application.models import AuthorizationRequest
    from chat_tui.presentation.style import RenderConfig

logger = get_logger(__name__)


def exec_prefix(command: str) -> str:
    """
    Return the command prefix an "always" answer should cover.

    The first word, plus the second one unless it looks like a flag (leading
    ``-``) or a file name (contains a ``.``)::

        git commit -m msg  -> git commit
        ls -la             -> ls
        python script.py   -> python
    """
    parts = command.split()
    if not parts:
        return ""
    prefix = parts[0]
    if len(parts) > 1 and not parts[1].startswith("-") and "." not in parts[1]:
        prefix += " " + parts[1]
    return prefix


def line_diff(name: str, old: str, new: str) -> str:
    """Return a unified diff of two file contents."""
    lines = difflib.unified_diff(
        old.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{name}",
        tofile=f"b/{name}",
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines)


class PromptSynthesizer:
    """Builds the message (and the candidate always rule) for a confirmation."""

    def __init__(
        self,
        render: RenderConfig,
        exec_always_scope_directory: bool = False,
    ) -> None:
        """
        Initialize PromptSynthesizer.

        Args:
            render: how code blocks and diffs are rendered
            exec_always_scope_directory: whether an "always" exec rule is also
                bound to the working directory of the command
        """
        self._render = render
        self._exec_always_scope_directory = exec_always_scope_directory

    def synthesize(self, request: AuthorizationRequest) -> ConfirmPrompt:
        if request.origin:
            return self.origin_prompt(request.origin)
        return self.tool_prompt(request)

    def origin_prompt(self, origin: str) -> ConfirmPrompt:
        return ConfirmPrompt(
            message=f"Do you trust tools from the git repository [{origin}] (y/n/a)",
            origin=origin,
        )

    def tool_prompt(self, request: AuthorizationRequest) -> ConfirmPrompt:
        """Prompt for a system tool call; write and exec get dedicated wording."""
        tool_name = request.tool_name or ""
        prompt: ConfirmPrompt | None = None
        if isinstance(request.arguments, WriteInput):
            prompt = self.write_prompt(request.arguments)
        elif isinstance(request.arguments, ExecInput):
            prompt = self.exec_prompt(request.arguments)
        if prompt is not None:
            return prompt
        return self.generic_prompt(tool_name, request.display_text)

    def generic_prompt(self, tool_name: str, display_text: str) -> ConfirmPrompt:
        text = tool_name
        if display_text:
            text = display_text[:1].lower() + display_text[1:]
        return ConfirmPrompt(
            message=(
                f"Proceed with {text} (or allow all {tool_name} calls)\n"
                "Confirm (y/n/a)"
            ),
            always_rule=AlwaysRule(tool_name=tool_name),
        )

    def exec_prompt(self, args: ExecInput) -> ConfirmPrompt | None:
        """Prompt for running a command, or None when there is no command."""
        if not args.command or not args.command.split():
            return None

        prefix = exec_prefix(args.command)
        msg = f'Run "{args.command}"'
        if args.directory:
            msg += f" in directory {args.directory}"
        msg += f' (or allow all "{prefix} ..." commands)\nConfirm (y/n/a)'

        arg_prefixes = {"command": prefix}
        if self._exec_always_scope_directory and args.directory:
            arg_prefixes["directory"] = args.directory

        return ConfirmPrompt(
            message=msg,
            always_rule=AlwaysRule(tool_name="exec", arg_prefixes=arg_prefixes),
        )

    def write_prompt(self, args: WriteInput) -> ConfirmPrompt | None:
        """
        Prompt for writing a file.

        Shows the full content for a new file and a diff for an existing one.
        Returns None (generic prompt) when the filename or content is empty or
        the current file cannot be read.
        """
        if not args.filename or not args.content:
            return None

        path = Path(args.filename)
        try:
            existing = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            block = self._render.code_block("", args.content)
            return ConfirmPrompt(
                message=f"{block}\nWrite to {args.filename}\nConfirm (y/n)"
            )
        except (OSError, UnicodeDecodeError):
            logger.debug(
                "Cannot read write target, using generic prompt",
                filename=args.filename,
                exc_info=True,
            )
            return None

        patch = line_diff(path.name, existing, args.content)
        block = self._render.code_block("diff", patch)
        return ConfirmPrompt(message=f"{block}\nUpdate {args.filename}\nConfirm (y/n)")
