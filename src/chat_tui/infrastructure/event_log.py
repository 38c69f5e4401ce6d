"""Structured event log - one JSON line per non-progress engine event."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TextIO

from chat_tui.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from chat_tui.infrastructure.engine import Frame

logger = get_logger(__name__)


class EventLog:
    """Append-only JSON lines file of engine events."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: TextIO | None = None

    def open(self) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding="utf-8")
            logger.info("Event log opened", path=str(self.path))

    def record(self, event: Frame, now: datetime | None = None) -> None:
        """
        Append ``event`` unless it is a progress event.

        Args:
            event: engine event
            now: capture timestamp (defaults to the current time)
        """
        if self._file is None or event.is_progress():
            return
        record = {
            "time": (now or datetime.now(timezone.utc)).isoformat(),
            "event": event.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        self._file.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> EventLog:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
