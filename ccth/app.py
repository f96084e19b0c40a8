"""ccth application: relay Claude Code hook events into Slack threads."""

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import certifi

# Fix macOS Python SSL cert issue
os.environ.setdefault("SSL_CERT_FILE", certifi.where())

from .config import Config
from .errors import CcthError
from .handlers import process_hook_input, read_stdin
from .slack_queue import SlackMessageQueue, connect_client
from .storage import SessionStore
from .threads import ThreadManager

logger = logging.getLogger(__name__)


def configure_logging(config: Config) -> None:
    """Log to stderr (stdout belongs to the hook caller) and optionally LOG_DIR."""
    log_level = getattr(logging, config.log_level, logging.INFO)
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / f"ccth-{datetime.now():%Y-%m-%d}.log"
        handlers.append(logging.FileHandler(str(log_file)))

    logging.basicConfig(level=log_level, format=log_format, handlers=handlers, force=True)

    # Their DEBUG output (HTTP bodies, connection pools) drowns out ccth logs.
    for noisy in ("slack_sdk", "aiohttp"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.INFO))


def _config_from_args(args: argparse.Namespace) -> Config:
    """Environment config with command-line flags layered on top."""
    config = Config.from_env()
    overrides: dict = {}
    if getattr(args, "channel", None):
        overrides["slack_channel"] = args.channel
    if getattr(args, "token", None):
        overrides["slack_bot_token"] = args.token
    if getattr(args, "debug", False):
        overrides["debug"] = True
        if "LOG_LEVEL" not in os.environ:
            overrides["log_level"] = "DEBUG"
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    if getattr(args, "thread_timeout", None):
        overrides["thread_timeout"] = args.thread_timeout
    if getattr(args, "storage_dir", None):
        overrides["storage_dir"] = Path(args.storage_dir).expanduser()
    return dataclasses.replace(config, **overrides) if overrides else config


async def _run_hook(config: Config) -> None:
    payload = await read_stdin()
    store = SessionStore(config.resolved_storage_dir)

    if config.dry_run:
        logger.info("Running in dry-run mode, no Slack messages will be sent")
        await process_hook_input(payload, config, store)
        return

    queue = SlackMessageQueue(connect=lambda: connect_client(config.slack_bot_token))
    async with ThreadManager(
        store,
        queue,
        config.slack_channel,
        timeout_seconds=config.thread_timeout,
        cleanup_interval=config.cleanup_interval,
    ) as threads:
        await process_hook_input(payload, config, store, threads)


def run_hook(args: argparse.Namespace) -> int:
    """Process one hook event from stdin. Returns the process exit code."""
    try:
        config = _config_from_args(args)
        configure_logging(config)
        config.validate()
        asyncio.run(_run_hook(config))
    except CcthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def cleanup(args: argparse.Namespace) -> int:
    """Run one sweep over the session store now."""
    try:
        config = _config_from_args(args)
    except CcthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    configure_logging(config)
    max_age = args.max_age or config.thread_timeout
    store = SessionStore(config.resolved_storage_dir)
    removed = store.sweep(max_age * 1000)
    print(f"Removed {removed} expired session(s) from {store.root}")
    return 0


def sessions(args: argparse.Namespace) -> int:
    """List the session threads in the store."""
    try:
        config = _config_from_args(args)
    except CcthError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    from .setup import show_sessions
    show_sessions(SessionStore(config.resolved_storage_dir))
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class _CcthParser(argparse.ArgumentParser):
    """ArgumentParser that shows our help instead of argparse's error message."""

    def error(self, message: str) -> None:
        print(f"Error: {message}\n", file=sys.stderr)
        _print_help(file=sys.stderr)
        sys.exit(2)


def _positive_seconds(value: str) -> int:
    try:
        seconds = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected whole seconds, got '{value}'") from None
    if seconds < 1:
        raise argparse.ArgumentTypeError("must be a positive number of seconds")
    return seconds


def _build_parser() -> argparse.ArgumentParser:
    parser = _CcthParser(
        prog="ccth",
        description="ccth: Claude Code hook events, threaded into Slack",
        add_help=False,
    )
    parser.add_argument("-c", "--channel", default=None, help="Slack channel ID or name")
    parser.add_argument("-t", "--token", default=None, help="Slack bot token (xoxb-...)")
    parser.add_argument("-d", "--debug", action="store_true", help="Log raw events and debug output")
    parser.add_argument("--dry-run", action="store_true", help="Format events without posting to Slack")
    parser.add_argument(
        "--thread-timeout", type=_positive_seconds, default=None,
        help="Seconds of inactivity before a session thread expires",
    )
    parser.add_argument("--storage-dir", default=None, help="Where session state is kept")
    parser.add_argument("-h", "--help", action="store_true", dest="show_help")
    sub = parser.add_subparsers(dest="command")

    # ccth cleanup
    cl = sub.add_parser("cleanup", help="Remove expired session threads now")
    cl.add_argument(
        "--max-age", type=_positive_seconds, default=None,
        help="Expire sessions idle longer than this many seconds",
    )

    # ccth sessions
    sub.add_parser("sessions", help="List stored session threads")

    # ccth setup
    sub.add_parser("setup", help="Guided setup wizard")

    # ccth help
    sub.add_parser("help", help="Show this help message")

    return parser


def _print_help(file=None) -> None:
    print("""ccth: Claude Code hook events, threaded into Slack

Usage: ccth [options] < event.json
       ccth <command> [options]

Options:
  -c, --channel CHANNEL      Slack channel (env: SLACK_CHANNEL)
  -t, --token TOKEN          Slack bot token (env: SLACK_BOT_TOKEN)
  -d, --debug                Log raw events and debug output
  --dry-run                  Format events without posting to Slack
  --thread-timeout SECONDS   Session thread inactivity timeout (default 3600)
  --storage-dir DIR          Session state directory (default ~/.ccth)

Commands:
  cleanup [--max-age S]      Remove expired session threads now
  sessions                   List stored session threads
  setup                      Guided setup wizard
  help                       Show this help message

Examples:
  ccth setup                                   Configure token and channel
  echo '{...}' | ccth --dry-run                Preview one hook event
  ccth cleanup --max-age 600                   Drop sessions idle for 10 min""", file=file)


def main() -> None:
    """Sync entrypoint for the console script."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.show_help or args.command == "help":
        _print_help()
        sys.exit(0)
    if args.command == "setup":
        from .setup import setup_command
        setup_command(args)
        sys.exit(0)
    if args.command == "cleanup":
        sys.exit(cleanup(args))
    if args.command == "sessions":
        sys.exit(sessions(args))
    sys.exit(run_hook(args))
