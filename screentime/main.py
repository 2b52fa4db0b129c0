"""Screen Time Manager application entry point.

Supports two modes:
  - GUI mode (default): launches the system tray application
  - CLI mode: prints today's status, today's stats or the history report

Usage:
    python -m screentime.main                 # GUI mode
    python -m screentime.main --status        # print remaining time and pause state
    python -m screentime.main --stats         # print today's statistics
    python -m screentime.main --history 7     # print the last 7 days
"""

import argparse
import logging

from screentime.core.config import get_default_config_path, load_config
from screentime.reporting.formatter import TextFormatter


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="screentime",
        description="Screen Time Manager - daily computer time quota",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config.json (default: the platform data directory)",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--status",
        action="store_true",
        help="Print remaining time and pause state and exit",
    )
    group.add_argument(
        "--stats",
        action="store_true",
        help="Print today's statistics and exit",
    )
    group.add_argument(
        "--history",
        type=int,
        metavar="DAYS",
        help="Print the last DAYS days of history and exit",
    )
    return parser


def _print_report(app, parsed: argparse.Namespace) -> None:
    """Load today's session without ticking it and print the requested report."""
    app.init_components()
    try:
        processor = app.processor
        if parsed.status:
            print(TextFormatter.format_status(processor.today_stats()))
            availability = processor.pause_availability()
            print(f"Pause: {TextFormatter.pause_menu_label(availability)}")
        elif parsed.stats:
            print(TextFormatter.format_today(processor.today_stats()))
        else:
            print(TextFormatter.format_history(processor.history(parsed.history)), end="")
    finally:
        app.stop()


def main(args: list[str] | None = None) -> None:
    """Entry point for Screen Time Manager.

    When *args* is ``None`` the arguments are read from ``sys.argv``.
    """
    parser = build_parser()
    parsed = parser.parse_args(args)
    if parsed.history is not None and parsed.history < 1:
        parser.error("--history needs a positive number of days")

    config_path = parsed.config or str(get_default_config_path())
    config = load_config(config_path)

    level = getattr(logging, str(config.get("log_level", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # import here to keep the CLI independent of how the tray is set up
    from screentime.ui.app import ScreenTimeApp

    app = ScreenTimeApp(config_path, config=config)
    if parsed.status or parsed.stats or parsed.history is not None:
        _print_report(app, parsed)
    else:
        app.start()


if __name__ == "__main__":
    main()
