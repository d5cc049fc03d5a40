"""Pytest configuration and fixtures for windowkeeper tests."""

import logging
from pathlib import Path
from typing import Callable, Optional

import pytest

from windowkeeper.context import Message
from windowkeeper.logging import reset_turns


def make_message(
    index: int,
    content: str,
    role: Optional[str] = None,
    type: Optional[str] = None,
) -> Message:
    """Message `msg-<index>` with a timestamp that grows with the index."""
    return Message(
        id=f"msg-{index}",
        role=role or ("user" if index % 2 == 0 else "assistant"),
        content=content,
        timestamp=1_700_000_000.0 + index,
        type=type,
    )


@pytest.fixture
def history_factory() -> Callable[..., list[Message]]:
    """Build a history of `count` messages with identical content.

    Returns:
        Factory taking (count, content).
    """

    def build(count: int, content: str = "x" * 50) -> list[Message]:
        return [make_message(i, content) for i in range(count)]

    return build


@pytest.fixture
def temp_config(tmp_path: Path) -> Path:
    """Create temporary config file.

    Returns:
        Path to config file.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
budget:
  max_context_tokens: 1000
  reserve_for_response: 100
  min_messages_to_keep: 2
assembler:
  stable_cache_ttl: 5.0
maintenance:
  compact_keep_recent: 10
llm:
  model: gpt-4o
  auto_budget: false
logging:
  level: DEBUG
  debug_to_file: false
  use_colors: false
"""
    )
    return config_path


@pytest.fixture
def restore_logging():
    """Put the root logger back the way it was after a test reconfigures it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def fresh_log_turns():
    """Each test starts at turn 0 in chat mode."""
    reset_turns()
    yield
    reset_turns()
