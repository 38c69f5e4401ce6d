"""Trust store - persisted trusted origins and session-scoped always rules."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from chat_tui.application.models import AlwaysRule, ToolInput

logger = get_logger(__name__)


class TrustPersistenceError(Exception):
    """Raised when the trusted-origin file cannot be written."""

    def __init__(self, path: Path, reason: str) -> None:
        """
        Initialize TrustPersistenceError.

        Args:
            path: trust file path
            reason: underlying error message
        """
        super().__init__(f"Failed to save trust file {path}: {reason}")
        self.path = path


class TrustStore:
    """Decides whether an origin or a tool call is already trusted."""

    def __init__(
        self,
        path: Path,
        trusted_prefixes: Iterable[str] = (),
        trusted: Iterable[str] = (),
    ) -> None:
        """
        Initialize TrustStore.

        Args:
            path: JSON file holding granted origins
            trusted_prefixes: origins trusted without asking, including everything below them
            trusted: origins already granted
        """
        self.path = path
        self.trusted_prefixes = list(trusted_prefixes)
        self._trusted: dict[str, dict[str, object]] = {o: {} for o in trusted}
        self._always: list[AlwaysRule] = []

    @classmethod
    def load(cls, path: Path, trusted_prefixes: Iterable[str] = ()) -> TrustStore:
        """
        Load granted origins from ``path``.

        A missing file is an empty store; an unreadable or malformed one is
        ignored with a warning.
        """
        store = cls(path, trusted_prefixes)
        if not path.exists():
            return store
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning(
                "Ignoring unreadable trust file", path=str(path), exc_info=True
            )
            return store
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed trust file", path=str(path))
            return store
        store._trusted = {str(origin): {} for origin in data}
        logger.debug("Loaded trust file", path=str(path), origins=len(store._trusted))
        return store

    @property
    def origins(self) -> list[str]:
        return sorted(self._trusted)

    @property
    def always_rules(self) -> list[AlwaysRule]:
        return list(self._always)

    def is_trusted(self, origin: str) -> bool:
        """
        Return True if ``origin`` was granted or sits under a trusted prefix.

        Prefix matches are bounded by path segments: ``github.com/acme`` covers
        ``github.com/acme/sub`` but not ``github.com/acmecorp``.
        """
        if not origin:
            return False
        if origin in self._trusted:
            return True
        return any(
            origin == prefix or origin.startswith(prefix + "/")
            for prefix in self.trusted_prefixes
        )

    def grant(self, origin: str) -> None:
        """Trust ``origin`` from now on; persisting it is best-effort."""
        if not origin or origin in self._trusted:
            return
        self._trusted[origin] = {}
        logger.info("Granted trust", origin=origin)
        try:
            self.save()
        except TrustPersistenceError:
            logger.warning(
                "Failed to persist trust grant (non-blocking)",
                origin=origin,
                exc_info=True,
            )

    def save(self) -> None:
        """
        Overwrite the trust file with every granted origin.

        Raises:
            TrustPersistenceError: the file could not be written
        """
        data = json.dumps(self._trusted, ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise TrustPersistenceError(self.path, str(e)) from e

    def is_always_trusted(self, tool_name: str, arguments: ToolInput) -> bool:
        """Return True if a recorded always rule covers this call."""
        return any(rule.matches(tool_name, arguments) for rule in self._always)

    def record_always(self, rule: AlwaysRule) -> None:
        if rule in self._always:
            return
        self._always.append(rule)
        logger.info(
            "Recorded always rule",
            tool_name=rule.tool_name,
            arg_prefixes=dict(rule.arg_prefixes),
        )
