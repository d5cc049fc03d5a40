"""Command-line entry point for inspecting context windows."""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from .config import Config
from .context import Message, WindowBuilder, get_model_context_limit, resolve_modules
from .context.modes import OperatingMode
from .logging import get_filtered_logs, setup_logging


def load_history(path: str) -> list[Message]:
    """Read a JSON history file: a list of messages or {"messages": [...]}."""
    with open(Path(path), encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("messages", [])
    return [Message.from_dict(item) for item in data]


def cmd_window(args: argparse.Namespace, config: Config) -> int:
    try:
        history = load_history(args.history)
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"Error: cannot read history {args.history}: {e}", file=sys.stderr)
        return 1

    builder = WindowBuilder(replace(config.budget))
    model = args.model or (config.llm.model if config.llm.auto_budget else None)
    if model:
        builder.configure_for_model(model)
    for message_id in args.pin or []:
        builder.pin(message_id)

    window = builder.build_context_window(history, system_prompt_tokens=args.system_tokens)
    print(json.dumps(window.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_modes(args: argparse.Namespace, config: Config) -> int:
    table = resolve_modules(args.mode, args.intent)
    print(json.dumps(table.to_dict(), indent=2))
    return 0


def cmd_limit(args: argparse.Namespace, config: Config) -> int:
    print(get_model_context_limit(args.model))
    return 0


def cmd_logs(args: argparse.Namespace, config: Config) -> int:
    print(
        get_filtered_logs(
            component=args.component,
            level=args.level,
            lines=args.lines,
            mode=args.mode,
            turn=args.turn,
        ),
        end="",
    )
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="windowkeeper",
        description="Inspect token-budgeted context windows and prompt sections",
    )
    parser.add_argument("--config", "-c", type=str, help="Path to configuration file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    window_parser = subparsers.add_parser("window", help="Build a context window from a JSON history")
    window_parser.add_argument("history", help="Path to history JSON file")
    window_parser.add_argument("--model", "-m", help="Size the budget for this model")
    window_parser.add_argument("--pin", action="append", help="Pin a message id (repeatable)")
    window_parser.add_argument(
        "--system-tokens", type=int, default=0, help="Tokens already used by the system prompt"
    )
    window_parser.set_defaults(func=cmd_window)

    modes_parser = subparsers.add_parser("modes", help="Show prompt sections enabled for a mode")
    modes_parser.add_argument("mode", choices=[m.value for m in OperatingMode])
    modes_parser.add_argument("--intent", help="Detected user intent")
    modes_parser.set_defaults(func=cmd_modes)

    limit_parser = subparsers.add_parser("limit", help="Show a model's context window size")
    limit_parser.add_argument("model")
    limit_parser.set_defaults(func=cmd_limit)

    logs_parser = subparsers.add_parser("logs", help="Show filtered debug log lines")
    logs_parser.add_argument("--component", help="Filter by component (e.g. window)")
    logs_parser.add_argument("--level", help="Filter by level (e.g. WARNING)")
    logs_parser.add_argument("--lines", type=int, default=100)
    logs_parser.add_argument(
        "--mode", choices=[m.value for m in OperatingMode], help="Filter by operating mode"
    )
    logs_parser.add_argument("--turn", type=int, help="Filter by turn number")
    logs_parser.set_defaults(func=cmd_logs)

    args = parser.parse_args()
    config = Config.load(args.config)

    if args.debug:
        config.logging.level = "DEBUG"

    # The logs command reads the debug file, so it must not rotate it
    setup_logging(
        config,
        console_level=config.logging.level,
        debug_to_file=config.logging.debug_to_file and args.command != "logs",
        use_colors=config.logging.use_colors,
    )

    sys.exit(args.func(args, config))


if __name__ == "__main__":
    main()
