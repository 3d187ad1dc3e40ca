"""Session mode and the approval gate consulted before tools run."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class Mode(Enum):
    """Development modes selectable from the UI layer."""

    NORMAL = "normal"
    AUTO_ACCEPT = "auto-accept"
    PLAN = "plan"

    @classmethod
    def parse(cls, raw: Any, default: Optional["Mode"] = None) -> "Mode":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            candidate = raw.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == candidate:
                    return member
        if default is not None:
            return default
        raise ValueError(f"invalid mode {raw!r}")


class ModeState:
    """Single shared cell holding the current mode.

    Only the UI layer writes it; the approval gate reads it synchronously at
    dispatch time.
    """

    def __init__(self, mode: Mode = Mode.NORMAL) -> None:
        self._mode = mode

    @property
    def mode(self) -> Mode:
        return self._mode

    def set(self, mode: Mode | str) -> Mode:
        self._mode = Mode.parse(mode)
        return self._mode


def needs_approval(mode: Mode) -> bool:
    """Return whether a tool call must be confirmed under *mode*."""

    return mode is not Mode.AUTO_ACCEPT


class ApprovalGate:
    """Decides whether a registry entry must be confirmed before it runs."""

    def __init__(self, mode_state: ModeState) -> None:
        self._mode_state = mode_state

    @property
    def mode(self) -> Mode:
        return self._mode_state.mode

    def requires_approval(self, entry: Any) -> bool:
        if entry is None:
            return False
        if not getattr(entry, "requires_approval", True):
            return False
        if getattr(entry, "auto_approved", False):
            return False
        return needs_approval(self._mode_state.mode)


__all__ = ["ApprovalGate", "Mode", "ModeState", "needs_approval"]
