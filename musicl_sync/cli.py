"""Command-line interface for the musicl_sync application."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import pprint
from pathlib import Path
from typing import List, Optional

from . import runner
from .config import parse_app_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Keep musicL playlists in sync with their source feeds."
    )
    parser.add_argument(
        "--config",
        default="configs/config.xml",
        help="Path to the main configuration XML file.",
    )

    # Overrides for logging/debugging
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Check feeds on their schedules until stopped.")

    sync_parser = subparsers.add_parser("sync", help="Run one pass and print a summary.")
    sync_parser.add_argument(
        "--feed", metavar="ID", help="Only synchronize the playlist with this id."
    )
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild even when the newest episode has already been seen.",
    )

    subparsers.add_parser("discover", help="List the playlists held in the store.")
    subparsers.add_parser("status", help="Show configured feeds and their cursors.")
    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "sync"

    try:
        app_config = parse_app_config(args.config)

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file
        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(app_config)
        for secret in ("token", "connection_string"):
            if config_dict["store"].get(secret):
                config_dict["store"][secret] = "***MASKED***"
        if config_dict["podping"].get("token"):
            config_dict["podping"]["token"] = "***MASKED***"
        logger.info("Active Configuration:\n%s", pprint.pformat(config_dict))

        if command == "run":
            return runner.serve(app_config)
        if command == "discover":
            output = runner.discover(app_config)
            exit_code = 0
        elif command == "status":
            output = runner.status(app_config)
            exit_code = 0
        else:
            result = runner.execute(
                app_config,
                feed_id=getattr(args, "feed", None),
                force=getattr(args, "force", False),
            )
            output = result.output_text
            exit_code = 1 if result.summary.failed else 0
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1

    print(output)
    return exit_code
