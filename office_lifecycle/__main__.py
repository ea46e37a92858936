"""Command line entry point.

    python -m office_lifecycle serve --port 8080
    python -m office_lifecycle check-config --config config/lifecycle.yaml

``serve`` is the default when no command is given.
"""

import argparse
import json
import os
import sys
from typing import List, Optional

from office_lifecycle import __version__

EXIT_OK = 0
EXIT_CONFIG = 2

COMMANDS = ("serve", "check-config")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/lifecycle.yaml"),
        help="Path to lifecycle.yaml (default: config/lifecycle.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="office-lifecycle",
        description="Registered office subscription lifecycle service",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the HTTP service")
    _add_common_arguments(serve)
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Auto-reload on code changes (development only)",
    )

    check = commands.add_parser("check-config", help="Validate lifecycle.yaml and print the effective settings")
    _add_common_arguments(check)
    return parser


def load_settings(args: argparse.Namespace):
    """Export settings for the app factory and load the config file.

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    from office_lifecycle.config import get_config, reset_config
    from office_lifecycle.logging_config import configure_logging

    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config
    configure_logging(log_level=args.log_level, json_format=args.log_format == "json")

    reset_config()
    return get_config(args.config)


def effective_settings(config) -> dict:
    """Loaded configuration with secrets reduced to whether they are set."""
    settings = config.lifecycle.model_dump(mode="json")
    security = settings["security"]
    security["webhook_secret"] = bool(config.webhook_secret)
    security["cron_secret"] = bool(config.cron_secret)
    return settings


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "office_lifecycle.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        reload=args.reload,
        access_log=False,  # RequestLoggingMiddleware logs requests
        log_config=None,
    )
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    from office_lifecycle.config import ConfigurationError
    from office_lifecycle.logging_config import get_logger

    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0] not in COMMANDS and argv[0] not in ("-h", "--help", "--version")):
        argv.insert(0, "serve")

    args = build_parser().parse_args(argv)

    try:
        config = load_settings(args)
    except ConfigurationError as e:
        get_logger(__name__).error("configuration_invalid", config_path=args.config, error=str(e))
        return EXIT_CONFIG

    if args.command == "check-config":
        print(json.dumps(effective_settings(config), indent=2, sort_keys=True))
        return EXIT_OK
    return serve(args)


if __name__ == "__main__":
    sys.exit(main())
