"""Confirmation engine - answers the engine's confirm and prompt events."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from chat_tui.application.models import (
    Answer,
    AuthorizationRequest,
    ConfirmPrompt,
    RequestKind,
)
from chat_tui.infrastructure.engine import AuthResponse, PromptResponse
from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from chat_tui.application.prompts import PromptSynthesizer
    from chat_tui.application.trust import TrustStore
    from chat_tui.infrastructure.engine import Engine, Frame

# (message, sensitive) -> (value, ok)
AskCallback = Callable[[str, bool], Awaitable[tuple[str, bool]]]
# message -> (answer, ok)
AskYesNoCallback = Callable[[str], Awaitable[tuple[Answer, bool]]]

REJECTION_REASON = (
    "User rejected action, abort the current operation and ask the user how to proceed"
)

logger = get_logger(__name__)


class ConfirmationEngine:
    """
    Decides, per engine event, whether to auto-approve or ask the user.

    Both handlers return False only when the user aborted the read (Ctrl-C or
    Ctrl-D); events of another kind pass through as True.
    """

    def __init__(
        self,
        engine: Engine,
        trust: TrustStore,
        synthesizer: PromptSynthesizer,
        system_tool_prefix: str = "#!sys.",
    ) -> None:
        """
        Initialize ConfirmationEngine.

        Args:
            engine: where answers are sent
            trust: trusted origins and always rules
            synthesizer: builds the question shown to the user
            system_tool_prefix: instruction prefix of built-in system tools
        """
        self._engine = engine
        self._trust = trust
        self._synthesizer = synthesizer
        self._system_tool_prefix = system_tool_prefix

    def _request(self, event: Frame, kind: RequestKind) -> AuthorizationRequest | None:
        request = AuthorizationRequest.from_frame(event, self._system_tool_prefix)
        if request is None or request.kind != kind:
            return None
        return request

    async def handle_prompt(self, event: Frame, ask: AskCallback) -> bool:
        """
        Collect the values a prompt event asks for and send them to the engine.

        The overall message is shown with the first field; a single-field
        prompt shows only the message.
        """
        request = self._request(event, RequestKind.PROMPT)
        if request is None:
            return True

        values: dict[str, str] = {}
        for i, field_name in enumerate(request.fields):
            msg = field_name
            if i == 0:
                if len(request.fields) == 1:
                    msg = ""
                msg = request.message + "\n" + msg

            value, ok = await ask(msg, request.sensitive)
            if not ok:
                logger.info("Prompt aborted by user", prompt_id=request.request_id)
                return False
            values[field_name] = value

        await self._engine.prompt_response(
            PromptResponse(id=request.request_id, responses=values)
        )
        return True

    def resolve(self, request: AuthorizationRequest) -> tuple[ConfirmPrompt, bool]:
        """
        Decide whether a confirm request is already trusted.

        Order: granted origin, trusted origin prefix, origin prompt, always
        rules, system tool prompt. Calls of other tools without an origin need
        no confirmation.

        Returns:
            ``(prompt, trusted)``; the prompt is empty when trusted
        """
        origin = request.origin
        if origin:
            if self._trust.is_trusted(origin):
                return ConfirmPrompt(), True
            return self._synthesizer.origin_prompt(origin), False

        if request.tool_name is not None:
            if self._trust.is_always_trusted(request.tool_name, request.arguments):
                return ConfirmPrompt(), True
            return self._synthesizer.tool_prompt(request), False

        return ConfirmPrompt(), True

    async def handle_confirm(self, event: Frame, ask_yes_no: AskYesNoCallback) -> bool:
        """Answer a confirm event, asking the user unless it is already trusted."""
        request = self._request(event, RequestKind.CONFIRM)
        if request is None:
            return True

        prompt, trusted = self.resolve(request)
        reason = ""

        if not trusted:
            answer, ok = await ask_yes_no(prompt.message)
            if not ok:
                logger.info("Confirmation aborted by user", call_id=request.request_id)
                return False
            if answer == Answer.NO:
                reason = REJECTION_REASON
            else:
                trusted = True
                self.commit(prompt, answer)
            logger.info(
                "Confirmation answered",
                call_id=request.request_id,
                answer=answer.value,
            )

        await self._engine.confirm(
            AuthResponse(id=request.request_id, accept=trusted, message=reason)
        )
        return True

    def commit(self, prompt: ConfirmPrompt, answer: Answer) -> None:
        """
        Remember an Always answer: grant the origin or record the rule.

        Yes approves the current call only.
        """
        if answer != Answer.ALWAYS:
            return
        if prompt.origin:
            self._trust.grant(prompt.origin)
        if prompt.always_rule is not None and prompt.always_rule.tool_name:
            self._trust.record_always(prompt.always_rule)
