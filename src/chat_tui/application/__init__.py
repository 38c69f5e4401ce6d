"""Application layer."""

from chat_tui.application.confirm import ConfirmationEngine
from chat_tui.application.session import ChatSession
from chat_tui.application.trust import TrustPersistenceError, TrustStore

__all__ = [
    "ChatSession",
    "ConfirmationEngine",
    "TrustPersistenceError",
    "TrustStore",
]
