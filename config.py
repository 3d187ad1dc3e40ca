"""Shared configuration helpers for Anthropic client settings."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_MODEL = "claude-3-7-sonnet-latest"
DEFAULT_MAX_TOKENS = 1024
TOOL_CALLING_CHOICES = ("auto", "native", "fallback")


@dataclass(frozen=True)
class AnthropicConfig:
    """Simple container for Anthropic model configuration."""

    model: str
    max_tokens: int


def _parse_positive_int(raw: Optional[str], fallback: int) -> int:
    """Return a positive integer parsed from *raw*, or *fallback* on failure."""

    if raw is None:
        return fallback
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return fallback
    return value if value > 0 else fallback


def load_anthropic_config(
    default_model: Optional[str] = None,
    default_max_tokens: Optional[int] = None,
) -> AnthropicConfig:
    """Load Anthropic settings from environment variables with safe fallbacks.

    The ``default_*`` arguments come from the session file and sit between the
    environment and the built-in defaults.
    """

    model = (os.getenv("ANTHROPIC_MODEL") or "").strip() or default_model or DEFAULT_MODEL
    max_tokens = _parse_positive_int(
        os.getenv("ANTHROPIC_MAX_TOKENS"), default_max_tokens or DEFAULT_MAX_TOKENS
    )
    return AnthropicConfig(model=model, max_tokens=max_tokens)


def load_tool_calling_preference(default: Optional[str] = None) -> Optional[str]:
    """Return the tool-calling preference from ``INDUBITABLY_TOOL_CALLING``.

    Unknown values are ignored so a typo never disables tools entirely.
    """

    raw = (os.getenv("INDUBITABLY_TOOL_CALLING") or "").strip().lower()
    if raw in TOOL_CALLING_CHOICES:
        return raw
    return default


__all__ = [
    "AnthropicConfig",
    "DEFAULT_MODEL",
    "DEFAULT_MAX_TOKENS",
    "TOOL_CALLING_CHOICES",
    "load_anthropic_config",
    "load_tool_calling_preference",
]
