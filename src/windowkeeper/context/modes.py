"""Operating modes and per-mode prompt section resolution."""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)


class OperatingMode(Enum):
    """What the agent is doing this turn."""

    CHAT = "chat"  # Interactive conversation
    HEARTBEAT = "heartbeat"  # Passive monitoring tick
    CRON = "cron"  # Scheduled job execution
    SUBTASK = "subtask"  # Delegated sub-agent task
    VISION = "vision"  # Screen analysis
    TAKE_CONTROL = "take_control"  # Manual desktop control

    @classmethod
    def parse(cls, value: Union[str, "OperatingMode", None]) -> "OperatingMode":
        """Coerce a mode hint, falling back to CHAT for unknown values."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.CHAT
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown operating mode {value!r}, using chat")
            return cls.CHAT


INTERACTIVE_MODES = {OperatingMode.CHAT, OperatingMode.VISION, OperatingMode.TAKE_CONTROL}


@dataclass(frozen=True)
class ModuleTable:
    """Which optional prompt sections are included this turn."""

    capabilities: bool = True
    resourcefulness: bool = True
    tool_instructions: bool = True
    onboarding: bool = True
    cron: bool = True
    index: bool = True
    automation: bool = True
    monitoring: bool = True
    subtasks: bool = True
    background_tasks: bool = True
    health: bool = True
    active_hours: bool = True
    nudges: bool = True
    daily_notes: bool = True

    def to_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def disabled(self) -> list[str]:
        return [name for name, on in self.to_dict().items() if not on]


# Sections each mode switches off; anything not listed stays on
_MODE_OVERRIDES: dict[OperatingMode, dict[str, bool]] = {
    OperatingMode.CHAT: {},
    OperatingMode.HEARTBEAT: {
        "tool_instructions": False,
        "onboarding": False,
        "daily_notes": False,
        "active_hours": True,
    },
    OperatingMode.CRON: {
        "onboarding": False,
        "monitoring": False,
        "daily_notes": False,
    },
    OperatingMode.SUBTASK: {
        "onboarding": False,
        "monitoring": False,
        "health": False,
        "daily_notes": False,
    },
    OperatingMode.VISION: {
        "onboarding": False,
        "tool_instructions": False,
        "cron": False,
        "index": False,
    },
    OperatingMode.TAKE_CONTROL: {
        "onboarding": False,
    },
}

# Detected intents that force a section on regardless of mode
_INTENT_OVERRIDES: dict[str, dict[str, bool]] = {
    "take_control": {"automation": True},
    "automation": {"automation": True},
    "screen_look": {"monitoring": True},
    "screen_help": {"monitoring": True},
    "memory_recall": {"daily_notes": True},
}


def resolve_modules(
    mode: Union[str, OperatingMode, None] = None,
    intent: Optional[str] = None,
) -> ModuleTable:
    """Compute the section inclusion table for a mode and optional intent."""
    resolved = OperatingMode.parse(mode)
    flags = dict(_MODE_OVERRIDES[resolved])
    if intent:
        flags.update(_INTENT_OVERRIDES.get(intent, {}))
    return ModuleTable(**flags)
