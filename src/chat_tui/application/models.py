"""Data models for cross-layer communication."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from chat_tui.infrastructure.engine import EventType

if TYPE_CHECKING:
    from chat_tui.infrastructure.engine import CallFrame, Frame

GITHUB_PREFIX = "https://github.com/"


class Answer(str, Enum):
    """Answer to a confirmation prompt."""

    YES = "Yes"
    NO = "No"
    ALWAYS = "Always"


class RequestKind(str, Enum):
    """Kind of authorization request."""

    PROMPT = "prompt"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class AlwaysRule:
    """Session-scoped rule approving future calls of a tool.

    Every ``arg_prefixes`` entry must be a prefix of the matching argument of
    the request; an absent argument counts as the empty string.
    """

    tool_name: str
    arg_prefixes: Mapping[str, str] = field(default_factory=dict)

    def matches(self, tool_name: str, arguments: ToolInput) -> bool:
        if tool_name != self.tool_name:
            return False
        for name, prefix in self.arg_prefixes.items():
            value = arguments.argument(name) or ""
            if not value.startswith(prefix):
                return False
        return True


@dataclass(frozen=True)
class ConfirmPrompt:
    """Synthesized confirmation prompt."""

    message: str = ""
    origin: str = ""  # granted on an Always answer
    always_rule: AlwaysRule | None = None


def _str_field(data: Mapping[str, Any], name: str) -> str | None:
    value = data.get(name)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class WriteInput:
    """Arguments of the file-writing system tool."""

    filename: str | None = None
    content: str | None = None

    def argument(self, name: str) -> str | None:
        if name == "filename":
            return self.filename
        if name == "content":
            return self.content
        return None


@dataclass(frozen=True)
class ExecInput:
    """Arguments of the command-running system tool."""

    command: str | None = None
    directory: str | None = None

    def argument(self, name: str) -> str | None:
        if name == "command":
            return self.command
        if name == "directory":
            return self.directory
        return None


@dataclass(frozen=True)
class GenericInput:
    """Arguments of any other tool, as decoded from JSON."""

    arguments: Mapping[str, Any] = field(default_factory=dict)

    def argument(self, name: str) -> str | None:
        return _str_field(self.arguments, name)


ToolInput = Union[WriteInput, ExecInput, GenericInput]


def parse_tool_input(tool_name: str | None, raw: str) -> ToolInput:
    """
    Decode a call's JSON input into the variant for its tool.

    Malformed or non-object input decodes to an empty ``GenericInput``.
    """
    try:
        data = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    if tool_name == "write":
        return WriteInput(
            filename=_str_field(data, "filename"),
            content=_str_field(data, "content"),
        )
    if tool_name == "exec":
        return ExecInput(
            command=_str_field(data, "command"),
            directory=_str_field(data, "directory"),
        )
    return GenericInput(arguments=data)


def call_origin(call: CallFrame) -> str:
    """Return the origin a call's tool was loaded from, or ``""``.

    GitHub roots are normalized to ``github.com/<owner>/<repo>``.
    """
    repo = call.tool.source.repo
    if repo is None or not repo.root:
        return ""
    root = repo.root
    if root.startswith(GITHUB_PREFIX):
        root = root[len("https://") :].rstrip("/")
        return root.removesuffix(".git")
    return root


def system_tool_name(instructions: str, system_tool_prefix: str) -> str | None:
    """Return the system tool identifier encoded in ``instructions``, if any."""
    if not system_tool_prefix or not instructions.startswith(system_tool_prefix):
        return None
    rest = instructions[len(system_tool_prefix) :].split()
    return rest[0] if rest else ""


@dataclass(frozen=True)
class AuthorizationRequest:
    """A confirm or prompt request extracted from one engine event."""

    kind: RequestKind
    request_id: str
    origin: str = ""
    tool_name: str | None = None
    arguments: ToolInput = field(default_factory=GenericInput)
    display_text: str = ""
    # prompt requests only
    message: str = ""
    fields: tuple[str, ...] = ()
    sensitive: bool = False

    @classmethod
    def from_frame(
        cls, event: Frame, system_tool_prefix: str = "#!sys."
    ) -> AuthorizationRequest | None:
        """
        Build a request from an engine event.

        Returns:
            the request, or None when the event asks for nothing
        """
        if event.prompt is not None and event.prompt.type == EventType.PROMPT:
            return cls(
                kind=RequestKind.PROMPT,
                request_id=event.prompt.id,
                message=event.prompt.message,
                fields=tuple(event.prompt.fields),
                sensitive=event.prompt.sensitive,
            )

        call = event.call
        if call is not None and call.type == EventType.CALL_CONFIRM:
            tool_name = system_tool_name(call.tool.instructions, system_tool_prefix)
            return cls(
                kind=RequestKind.CONFIRM,
                request_id=call.id,
                origin=call_origin(call),
                tool_name=tool_name,
                arguments=parse_tool_input(tool_name, call.input),
                display_text=call.display_text,
            )

        return None
