"""Shared pytest fixtures for the indubitably-code test suite."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Tuple, Union

import pytest

from tests.mocking import MockAnthropic, StubServerFactory


ModuleRef = Union[str, Tuple[ModuleType, str]]


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep user-level config files and env preferences out of every test."""
    monkeypatch.setenv("INDUBITABLY_SESSION_CONFIG", str(tmp_path / "missing-config.toml"))
    monkeypatch.delenv("INDUBITABLY_TOOL_CALLING", raising=False)
    monkeypatch.delenv("ANTHROPIC_MODEL", raising=False)
    monkeypatch.delenv("ANTHROPIC_MAX_TOKENS", raising=False)


@dataclass
class AnthropicMockHandle:
    """Helper that patches modules to return a shared ``MockAnthropic`` instance."""

    client: MockAnthropic
    monkeypatch: Any

    def patch(self, *targets: ModuleRef) -> MockAnthropic:
        """Patch ``Anthropic`` constructors so they return :attr:`client`.

        ``targets`` accepts dotted paths or ``(module, attr_name)`` tuples and
        defaults to the headless runner.
        """
        if not targets:
            targets = ("agent_runner.Anthropic",)

        for target in targets:
            if isinstance(target, str):
                self.monkeypatch.setattr(target, lambda client=self.client: client)
            else:
                module, attr = target
                self.monkeypatch.setattr(module, attr, lambda client=self.client: client)
        return self.client


@pytest.fixture
def anthropic_mock(monkeypatch) -> AnthropicMockHandle:
    client = MockAnthropic()
    return AnthropicMockHandle(client=client, monkeypatch=monkeypatch)


@pytest.fixture
def stub_servers() -> StubServerFactory:
    return StubServerFactory()
