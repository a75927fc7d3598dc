#!/usr/bin/env python3
"""Command line entry point.

Commands:
    listen    Start the agent proxy server

Usage:
    levered-agent listen --port 3100 --directory ~/src/my-app
    levered-agent listen --detached
    python -m levered_agent.cli listen --claude-path /usr/local/bin/claude
"""

import argparse
import logging
import sys

import uvicorn
from pydantic import ValidationError

from levered_agent import __version__
from levered_agent.config import LOG_LEVELS, Settings, validate_critical_settings
from levered_agent.launcher import is_detached_child, launch_detached
from levered_agent.logging_config import setup_logging

logger = logging.getLogger(__name__)

# argparse dest -> Settings field
LISTEN_OPTIONS = {
    "port": "port",
    "host": "host",
    "claude_path": "claude_path",
    "directory": "working_directory",
    "log_level": "log_level",
    "timeout": "timeout",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="levered-agent",
        description="Levered agent CLI",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser("listen", help="Start the agent proxy server")
    listen.add_argument("-p", "--port", type=int, help="Port to listen on (default: 3100)")
    listen.add_argument("--host", help="Host to bind (default: localhost)")
    listen.add_argument("--claude-path", help="Path to the claude executable (default: claude)")
    listen.add_argument("-d", "--directory", help="Working directory for the agent (default: cwd)")
    listen.add_argument("--log-level", choices=[*LOG_LEVELS, "warn"], help="Log level (default: info)")
    listen.add_argument("--timeout", type=int, help="Per-message timeout in seconds, 0 disables (default: 300)")
    listen.add_argument("--detached", action="store_true", help="Run the server in the background")

    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings with command line options layered over environment and .env."""
    overrides = {
        field: getattr(args, dest)
        for dest, field in LISTEN_OPTIONS.items()
        if getattr(args, dest, None) is not None
    }
    return Settings(**overrides)


def forwarded_args(args: argparse.Namespace) -> list[str]:
    """Rebuild the listen command line for the detached child, minus --detached."""
    cli_args = ["listen"]
    for dest in LISTEN_OPTIONS:
        value = getattr(args, dest, None)
        if value is not None:
            cli_args.extend([f"--{dest.replace('_', '-')}", str(value)])
    return cli_args


def cmd_listen(args: argparse.Namespace) -> int:
    """Start the proxy server, in the foreground or detached."""
    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}", file=sys.stderr)
        return 1

    if args.detached and not is_detached_child():
        print("Starting server in detached mode...")
        print(f"Logs will be written to: {settings.log_file}")
        result = launch_detached(forwarded_args(args), settings.log_file)
        if not result.running:
            print(f"Failed to start server in detached mode (exit code {result.exit_code})", file=sys.stderr)
            return 1
        print("Server started successfully in detached mode!")
        print(f"PID: {result.pid}")
        print(f"View logs with: tail -f {result.log_file}")
        return 0

    detached = is_detached_child()
    setup_logging(
        level=settings.log_level,
        json_logs=settings.json_logs,
        log_file=settings.log_file,
        console=not detached,
    )
    validate_critical_settings(settings)

    # Imported here so logging is configured before the app module loads.
    from levered_agent.main import create_app

    app = create_app(settings)

    base_url = f"http://{settings.host}:{settings.port}"
    logger.info(f"Starting agent proxy at {base_url}")
    if not detached:
        print(f"Agent proxy running at {base_url}")
        print(f"Working directory: {settings.working_directory}")
        print(f"Claude CLI path: {settings.claude_path}")
        print(f"Logs: {settings.log_file}")
        print("\nEndpoints:")
        print(f"  POST {base_url}/chat   - Send a message and receive an SSE stream")
        print(f"  GET  {base_url}/status - Health check")
        print(f"  POST {base_url}/reset  - Reset the conversation")

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


COMMANDS = {
    "listen": cmd_listen,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
