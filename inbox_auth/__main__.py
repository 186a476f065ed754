"""Command-line entry point for inbox-auth.

Usage:
    python -m inbox_auth login     # sign in through the browser
    python -m inbox_auth status    # print authentication status as JSON
    python -m inbox_auth logout    # revoke and forget stored credentials
    python -m inbox_auth token     # print a fresh access token
    python -m inbox_auth keygen    # print a new TOKEN_ENCRYPTION_KEY
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from inbox_auth.context import AppContext, create_app_context
from inbox_auth.utils.encryption import generate_key
from inbox_auth.utils.errors import InboxAuthError


def configure_logging() -> None:
    """Configure logging to stderr so stdout carries only command output.

    Respects LOG_LEVEL env var (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = logging.getLevelNamesMapping().get(log_level_str, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from HTTP and keyring libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("keyring").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inbox-auth",
        description="Google sign-in and credential management for desktop clients.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("login", help="Sign in through the system browser")
    commands.add_parser("status", help="Show authentication status")
    commands.add_parser("logout", help="Revoke and delete stored credentials")
    commands.add_parser("token", help="Print a valid access token")
    commands.add_parser(
        "keygen", help="Print a new TOKEN_ENCRYPTION_KEY for the file vault"
    )
    return parser


async def run_command(command: str, ctx: AppContext) -> None:
    """Execute one CLI command against an initialized context."""
    match command:
        case "login":
            status = await ctx.coordinator.authenticate()
            assert status.user is not None
            print(f"Signed in as {status.user.email}")
        case "status":
            status = await ctx.lifecycle.get_auth_status()
            print(status.model_dump_json(indent=2))
        case "logout":
            await ctx.lifecycle.logout()
            print("Signed out")
        case "token":
            print(await ctx.lifecycle.get_access_token())
        case _:
            raise ValueError(f"Unknown command: {command}")


async def _run(command: str) -> None:
    if command == "keygen":
        # Needs no configuration or stored state
        print(generate_key().hex())
        return
    ctx = await create_app_context()
    await run_command(command, ctx)


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Process exit status: 0 on success, 1 on any inbox-auth error.
    """
    args = build_parser().parse_args(argv)

    # Load .env file if present
    load_dotenv()

    # Configure logging first
    configure_logging()
    logger = logging.getLogger(__name__)

    try:
        asyncio.run(_run(args.command))
    except InboxAuthError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
