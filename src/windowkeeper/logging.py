"""Two-tier structured logging for windowkeeper.

Provides:
- Console: Minimal output (INFO+), tagged with the operating mode outside chat
- Debug file: JSON Lines, one record per event, stamped with the turn number
  and operating mode so a single turn's window and prompt decisions can be
  pulled back out with `windowkeeper logs --turn N`
"""

import json
import logging
import os
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .context.models import get_model_context_limit
from .context.modes import OperatingMode

# Turn being assembled; 0 until the first turn starts
_current_mode: OperatingMode = OperatingMode.CHAT
_current_turn: int = 0


def begin_turn(mode: OperatingMode) -> int:
    """Start a new turn in `mode`. Returns the turn number stamped on records."""
    global _current_mode, _current_turn
    _current_mode = mode
    _current_turn += 1
    return _current_turn


def set_current_mode(mode: OperatingMode) -> None:
    """Change the mode without starting a new turn (e.g. for maintenance)."""
    global _current_mode
    _current_mode = mode


def get_current_mode() -> OperatingMode:
    return _current_mode


def get_current_turn() -> int:
    return _current_turn


def reset_turns() -> None:
    global _current_mode, _current_turn
    _current_mode = OperatingMode.CHAT
    _current_turn = 0


def _component(record: logging.LogRecord) -> str:
    # "windowkeeper.context.window" -> "window"
    return record.name.split(".")[-1] if "." in record.name else record.name


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON Lines for structured debugging.

    Output format:
    {"ts":"2026-02-04T10:15:32.123","level":"DEBUG","component":"window",
     "turn":7,"mode":"heartbeat","msg":"Context window: 12/40 messages","ctx":{...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "component": _component(record),
            "turn": _current_turn,
            "mode": _current_mode.value,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exc"] = self.formatException(record.exc_info)

        if hasattr(record, "ctx"):
            log_entry["ctx"] = record.ctx

        return json.dumps(log_entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Clean, minimal console formatter for human readability."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"
    LEVELS = {"DEBUG": "DBG", "INFO": "INF", "WARNING": "WRN", "ERROR": "ERR", "CRITICAL": "CRT"}

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level_short = self.LEVELS.get(record.levelname, record.levelname[:3])
        time_str = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        component = _component(record)
        if _current_mode is not OperatingMode.CHAT:
            component = f"{component}/{_current_mode.value}"

        msg = f"{time_str} [{level_short}] {component}: {record.getMessage()}"

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            msg = f"{color}{msg}{self.RESET}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def get_debug_log_path() -> Path:
    """Get the path to the debug log file (XDG compliant)."""
    data_home = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(data_home) / "windowkeeper" / "logs" / "debug.log"


def rotate_debug_log(log_path: Path) -> None:
    """Rotate existing debug log to .1 on startup."""
    if log_path.exists():
        rotated = log_path.with_suffix(".log.1")
        if rotated.exists():
            rotated.unlink()
        log_path.rename(rotated)


def log_session_header(config: Any, logger: logging.Logger) -> None:
    """Record the budget the session starts with, so window decisions in the log can be checked."""
    header: dict[str, Any] = {"session_start": datetime.now().isoformat()}
    llm = getattr(config, "llm", None)
    if llm is not None:
        header["model"] = llm.model
        header["context_limit"] = get_model_context_limit(llm.model)
        header["auto_budget"] = llm.auto_budget
    budget = getattr(config, "budget", None)
    if budget is not None and hasattr(budget, "__dataclass_fields__"):
        header["budget"] = asdict(budget)
    logger.debug("=== windowkeeper session started ===", extra={"ctx": header})


def setup_logging(
    config: Any,
    console_level: str = "INFO",
    debug_to_file: bool = True,
    use_colors: bool = True,
) -> None:
    """Configure two-tier logging system.

    Args:
        config: Config object for the session header
        console_level: Minimum level for console output (default: INFO)
        debug_to_file: Whether to write JSON debug logs to file
        use_colors: Whether to use ANSI colors in console output
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, console_level.upper()))
    console.setFormatter(ConsoleFormatter(use_colors=use_colors))
    root.addHandler(console)

    if debug_to_file:
        log_path = get_debug_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotate_debug_log(log_path)

        file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for lib in ["httpx", "anthropic", "httpcore", "asyncio"]:
        logging.getLogger(lib).setLevel(logging.WARNING)

    log_session_header(config, logging.getLogger("windowkeeper"))


def get_filtered_logs(
    component: Optional[str] = None,
    level: Optional[str] = None,
    lines: int = 100,
    mode: Optional[str] = None,
    turn: Optional[int] = None,
) -> str:
    """Get filtered debug log lines.

    Args:
        component: Filter to specific component (e.g., "window", "assembler")
        level: Filter to specific level (e.g., "ERROR", "WARNING")
        lines: Maximum lines to return
        mode: Filter to one operating mode (e.g., "heartbeat")
        turn: Filter to one turn number

    Returns:
        Filtered log lines as string
    """
    log_path = get_debug_log_path()
    if not log_path.exists():
        return "No debug log found."

    filters = {"component": component, "level": level, "mode": mode, "turn": turn}
    active = {key: value for key, value in filters.items() if value is not None}

    results = []
    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if all(entry.get(key) == value for key, value in active.items()):
                results.append(line)

    return "".join(results[-lines:])
