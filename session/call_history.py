"""Short-lived record of recent tool calls used to suppress repeats."""
from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Mapping

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 30.0
DEFAULT_HISTORY_LIMIT = 20


@dataclass(frozen=True)
class CallHistoryRecord:
    tool_name: str
    serialized_arguments: str
    timestamp: float


def serialize_arguments(arguments: Mapping[str, Any] | None) -> str:
    """Canonical form used to compare two calls' arguments."""

    try:
        return json.dumps(arguments or {}, sort_keys=True, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(arguments)


class CallHistory:
    """Bounded, time-windowed history of accepted tool calls.

    All mutation happens inside synchronous methods so a cancelled turn can
    never observe a half-recorded entry.
    """

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.window_seconds = window_seconds
        self.limit = limit
        self._clock = clock
        self._records: Deque[CallHistoryRecord] = deque(maxlen=limit)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[CallHistoryRecord]:
        return list(self._records)

    def prune(self, now: float | None = None) -> None:
        current = self._clock() if now is None else now
        cutoff = current - self.window_seconds
        while self._records and self._records[0].timestamp < cutoff:
            self._records.popleft()

    def is_duplicate(self, tool_name: str, arguments: Mapping[str, Any] | None) -> bool:
        self.prune()
        serialized = serialize_arguments(arguments)
        return any(
            record.tool_name == tool_name and record.serialized_arguments == serialized
            for record in self._records
        )

    def check_and_record(self, tool_name: str, arguments: Mapping[str, Any] | None) -> bool:
        """Record the call unless it repeats one inside the window.

        Returns ``True`` when the call was accepted.
        """

        now = self._clock()
        self.prune(now)
        serialized = serialize_arguments(arguments)
        for record in self._records:
            if record.tool_name == tool_name and record.serialized_arguments == serialized:
                logger.info("Suppressing duplicate call to %s", tool_name)
                return False
        self._records.append(CallHistoryRecord(tool_name, serialized, now))
        return True

    def clear(self) -> None:
        self._records.clear()


__all__ = [
    "CallHistory",
    "CallHistoryRecord",
    "DEFAULT_HISTORY_LIMIT",
    "DEFAULT_WINDOW_SECONDS",
    "serialize_arguments",
]
