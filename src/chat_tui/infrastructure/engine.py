"""Execution engine contract - wire models and the client protocols."""

from __future__ import annotations

import importlib
from collections.abc import AsyncIterator, Callable, Mapping
from datetime import datetime  # noqa: TC003
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from chat_tui.infrastructure.config import Config

logger = get_logger(__name__)


class WireModel(BaseModel):
    """Base for engine records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class EventType(str, Enum):
    """Event kinds emitted by a run."""

    RUN_START = "runStart"
    RUN_FINISH = "runFinish"
    CALL_START = "callStart"
    CALL_CHAT = "callChat"
    CALL_SUB_CALLS = "callSubCalls"
    CALL_PROGRESS = "callProgress"
    CALL_CONFIRM = "callConfirm"
    CALL_CONTINUE = "callContinue"
    CALL_FINISH = "callFinish"
    PROMPT = "prompt"


class RunState(str, Enum):
    """Lifecycle state of a run."""

    CREATING = "creating"
    RUNNING = "running"
    CONTINUE = "continue"
    FINISHED = "finished"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Whether the run can no longer continue the conversation."""
        return self in {RunState.FINISHED, RunState.ERROR}


class Repo(WireModel):
    """Repository a tool was loaded from."""

    vcs: str = ""
    root: str = ""
    path: str = ""
    name: str = ""
    revision: str = ""


class ToolSource(WireModel):
    """Where a tool definition came from."""

    location: str = ""
    line_no: int = 0
    repo: Repo | None = None


class ToolDef(WireModel):
    """Tool definition, as passed to ``Engine.evaluate`` or returned by ``parse``."""

    name: str = ""
    description: str = ""
    chat: bool = False
    instructions: str = ""


class Tool(ToolDef):
    """Tool resolved by the engine for a call."""

    id: str = ""
    source: ToolSource = Field(default_factory=ToolSource)


class SubCall(WireModel):
    """Reference from an output fragment to a nested call."""

    tool_id: str = ""
    input: str = ""


class Output(WireModel):
    """One output fragment of a call."""

    content: str = ""
    sub_calls: dict[str, SubCall] = Field(default_factory=dict)


class CallFrame(WireModel):
    """A node of the call tree."""

    id: str
    parent_id: str = ""
    type: EventType | None = None
    tool: Tool = Field(default_factory=Tool)
    display_text: str = ""
    input: str = ""
    output: list[Output] = Field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None


class PromptFrame(WireModel):
    """A request for one or more values from the user."""

    id: str
    type: EventType = EventType.PROMPT
    message: str = ""
    fields: list[str] = Field(default_factory=list)
    sensitive: bool = False


class Frame(WireModel):
    """One element of a run's event stream."""

    call: CallFrame | None = None
    prompt: PromptFrame | None = None

    def is_progress(self) -> bool:
        """Whether this is a high-volume progress event."""
        return self.call is not None and self.call.type == EventType.CALL_PROGRESS


class RunOptions(WireModel):
    """Options for starting a run."""

    confirm: bool = True
    prompt: bool = True
    include_events: bool = True
    disable_cache: bool = False
    credential_overrides: list[str] = Field(default_factory=list)
    input: str = ""
    cache_dir: str = ""
    sub_tool: str = ""
    workspace: str = ""
    chat_state: str = ""
    location: str = ""


class AuthResponse(WireModel):
    """Answer to a ``callConfirm`` event."""

    id: str
    accept: bool
    message: str = ""


class PromptResponse(WireModel):
    """Answer to a ``prompt`` event."""

    id: str
    responses: dict[str, str] = Field(default_factory=dict)


class EngineError(Exception):
    """Raised when the execution engine fails a request."""

    def __init__(self, message: str) -> None:
        """
        Initialize EngineError.

        Args:
            message: error message reported by the engine
        """
        super().__init__(message)
        self.message = message


class EngineLoadError(Exception):
    """Raised when the configured engine factory cannot be loaded."""

    def __init__(self, reference: str, reason: str) -> None:
        """
        Initialize EngineLoadError.

        Args:
            reference: the 'module:callable' reference
            reason: why loading failed
        """
        super().__init__(f"Cannot load engine '{reference}': {reason}")
        self.reference = reference


class Run(Protocol):
    """Handle for one conversational turn of a run."""

    @property
    def state(self) -> RunState: ...

    @property
    def error(self) -> str | None: ...

    def events(self) -> AsyncIterator[Frame]: ...

    def calls(self) -> Mapping[str, CallFrame]: ...

    def chat_state(self) -> str: ...

    def responding_tool_name(self) -> str: ...

    async def next_chat(self, input: str) -> Run: ...

    async def interrupt(self) -> None:
        """Stop the in-flight turn; the run stays usable for ``next_chat``."""
        ...

    async def close(self) -> None: ...


class Engine(Protocol):
    """Client of the tool-execution engine."""

    async def run(self, tool: str, options: RunOptions) -> Run: ...

    async def evaluate(self, options: RunOptions, *tools: ToolDef) -> Run: ...

    async def parse(self, tool: str) -> list[ToolDef]: ...

    async def confirm(self, response: AuthResponse) -> None: ...

    async def prompt_response(self, response: PromptResponse) -> None: ...

    async def close(self) -> None: ...


EngineFactory = Callable[["Config"], Engine]


def load_engine(reference: str, config: Config) -> Engine:
    """
    Build an engine from a ``module:callable`` reference.

    Args:
        reference: import reference of a factory taking the settings
        config: application settings

    Returns:
        the engine returned by the factory

    Raises:
        EngineLoadError: the reference is malformed, not importable or the
            factory fails
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise EngineLoadError(reference, "expected 'module:callable'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise EngineLoadError(reference, str(e)) from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise EngineLoadError(reference, f"'{attr}' is not a callable in {module_name}")

    try:
        engine: Engine = factory(config)
    except Exception as e:
        raise EngineLoadError(reference, str(e)) from e

    logger.info("Engine loaded", engine=reference)
    return engine
