"""Configuration loading for windowkeeper."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

import yaml

from .context.window import BudgetConfig


@dataclass
class AssemblerConfig:
    """Tiered prompt assembly configuration."""

    stable_cache_ttl: float = 30.0
    memory_char_budget: int = 14000
    # Warn when the system context exceeds this share of the model window
    warn_ratio: float = 0.25


@dataclass
class MaintenanceConfig:
    """Thresholds for memory flush and history compaction."""

    flush_threshold_tokens: int = 50000
    flush_min_messages: int = 20
    compact_threshold_tokens: int = 80000
    compact_min_messages: int = 40
    compact_keep_recent: int = 20


@dataclass
class LLMConfig:
    """LLM client configuration."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    timeout: float = 60.0  # Request timeout in seconds
    max_retries: int = 3  # Max retries for transient errors
    # Re-derive the window budget from the model's context size
    auto_budget: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    debug_to_file: bool = True  # Write JSON debug logs to ~/.local/share/windowkeeper/logs/
    use_colors: bool = True  # ANSI colors in console output


@dataclass
class Config:
    """Main configuration container."""

    budget: BudgetConfig = field(default_factory=BudgetConfig)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file.

        Args:
            path: Optional path to config file. If not provided, searches
                  XDG config locations.

        Returns:
            Loaded configuration with defaults for missing values.
        """
        config_path: Optional[Path] = None

        if path:
            config_path = Path(path)
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
            user_config = Path(xdg_config) / "windowkeeper" / "config.yaml"

            if user_config.exists():
                config_path = user_config
            else:
                system_config = Path("/etc/windowkeeper/config.yaml")
                if system_config.exists():
                    config_path = system_config

        if config_path and config_path.exists():
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            return cls._from_dict(data)

        return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        return cls(
            budget=BudgetConfig(**data.get("budget", {})),
            assembler=AssemblerConfig(**data.get("assembler", {})),
            maintenance=MaintenanceConfig(**data.get("maintenance", {})),
            llm=LLMConfig(**data.get("llm", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )
