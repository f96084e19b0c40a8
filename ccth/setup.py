"""Guided setup wizard (ccth setup) and session store inspection (ccth sessions)."""

import json
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .config import DEFAULT_THREAD_TIMEOUT, VALID_LOG_LEVELS, default_storage_dir
from .storage import SessionStore

console = Console()

# Hook events Claude Code should pipe into ccth.
HOOK_EVENTS = (
    "UserPromptSubmit",
    "PostToolUse",
    "Notification",
    "Stop",
    "SubagentStop",
    "PreCompact",
)

# Events whose hook entries take a tool matcher.
_MATCHER_EVENTS = {"PostToolUse"}


def _load_existing_env(path: Path) -> dict[str, str]:
    """Parse an existing .env file into a dict. Returns empty dict if missing."""
    if not path.exists():
        return {}
    values: dict[str, str] = {}
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            key, val = line.split("=", 1)
            values[key.strip()] = val.strip()
    return values


def _prompt_with_default(label: str, default: str = "") -> str:
    """Prompt for input, showing and accepting a default value.

    Enter keeps the default. Type '-' to clear it.
    """
    val = Prompt.ask(f"  {label}", default=default, console=console)
    if default and val == "-":
        return ""
    return val


def _prompt_token(label: str, prefix: str, default: str = "") -> str:
    """Prompt for a token, validating the prefix. Re-prompts on bad input."""
    while True:
        if default:
            if len(default) > 12:
                masked = default[:8] + "..." + default[-4:]
            else:
                masked = default[:5] + "..."
            value = console.input(f"  Paste your {label} \\[{masked}] (Enter to keep): ").strip()
            if not value:
                return default
        else:
            value = console.input(f"  Paste your {label}: ").strip()
        if value.startswith(prefix):
            return value
        console.print(f"  [red]Token must start with '{prefix}'. Please try again.[/red]\n")


def hooks_settings(command: str = "ccth") -> dict:
    """The Claude Code ``settings.json`` fragment that runs *command* on each hook."""
    hooks: dict[str, list] = {}
    for event in HOOK_EVENTS:
        entry: dict = {"hooks": [{"type": "command", "command": command}]}
        if event in _MATCHER_EVENTS:
            entry = {"matcher": "*", **entry}
        hooks[event] = [entry]
    return {"hooks": hooks}


def _step_bot_token(default: str = "") -> str:
    """Step 1: Get Bot Token."""
    console.rule("Step 1 of 5: Bot Token")

    if default:
        console.print("\n  Bot token found in config. Press Enter to keep it,")
        console.print("  or paste a new one. To generate a new token:")

    console.print("""
  1. Open https://api.slack.com/apps and pick (or create) your app
  2. Under "OAuth & Permissions", add the chat:write bot scope
  3. Click "Install to Workspace" and approve
  4. Copy the "Bot User OAuth Token" (starts with xoxb-)
""")
    token = _prompt_token("Bot Token", "xoxb-", default)
    console.print("  [green]✓[/green] Saved")
    return token


def _step_channel(default: str = "") -> str:
    """Step 2: Channel every session thread is posted to."""
    console.rule("Step 2 of 5: Channel")
    console.print("\n  Channel ID (e.g. C0123456789) or name the bot has been invited to.")
    while True:
        channel = _prompt_with_default("Channel", default).strip()
        if channel:
            return channel
        console.print("  [red]A channel is required.[/red]\n")


def _step_thread_timeout(default: str = "") -> str:
    """Step 3: Inactivity window before a session gets a fresh thread."""
    console.rule("Step 3 of 5: Thread Timeout")
    console.print("\n  Seconds a session may stay idle before its thread expires.")
    console.print(f"  Default: {DEFAULT_THREAD_TIMEOUT} (one hour).")
    while True:
        val = _prompt_with_default("Thread timeout (seconds)", default or str(DEFAULT_THREAD_TIMEOUT))
        if not val:
            return ""
        try:
            n = int(val)
        except ValueError:
            console.print("  [red]Must be a positive integer.[/red]\n")
            continue
        if n < 1:
            console.print("  [red]Must be a positive integer.[/red]\n")
            continue
        return "" if n == DEFAULT_THREAD_TIMEOUT else str(n)


def _step_storage_dir(default: str = "") -> str:
    """Step 4: Where session state is kept."""
    console.rule("Step 4 of 5: Storage Directory")
    console.print("\n  Session threads, sent-message fingerprints and debug event logs.")
    val = _prompt_with_default("Storage directory", default or str(default_storage_dir()))
    return "" if val == str(default_storage_dir()) else val


def _step_logging(defaults: dict[str, str]) -> tuple[str, str]:
    """Step 5: Configure log directory and log level. Returns (log_dir, log_level)."""
    console.rule("Step 5 of 5: Logging")
    console.print("\n  [bold]Log Directory[/bold]")
    console.print("  Optional. A new log file is created per day; leave empty for stderr only.")
    log_dir = _prompt_with_default("Log directory", defaults.get("LOG_DIR", ""))

    console.print("\n  [bold]Log Level[/bold]")
    console.print("  DEBUG > INFO > WARNING > ERROR (most → least verbose)")
    while True:
        log_level = _prompt_with_default(
            "Log level",
            defaults.get("LOG_LEVEL", "INFO"),
        ).upper()
        if not log_level:
            log_level = "INFO"
        if log_level in VALID_LOG_LEVELS:
            break
        console.print(f"  [red]Invalid level. Choose from: {', '.join(sorted(VALID_LOG_LEVELS))}[/red]\n")
    return log_dir, log_level


def _write_env(path: Path, values: dict[str, str]) -> None:
    """Write the .env file with the given values. It holds the bot token."""
    lines: list[str] = []
    for key, val in values.items():
        lines.append(f"{key}={val}")
    path.write_text("\n".join(lines) + "\n")
    try:
        path.chmod(0o600)
    except OSError:
        pass


def setup_command(args) -> None:
    """Main setup wizard entrypoint."""
    try:
        _run_wizard(args)
    except KeyboardInterrupt:
        console.print("\n  [yellow]Aborted.[/yellow] Completed steps were saved.")
        sys.exit(130)


def _run_wizard(args) -> None:
    """Run the interactive wizard steps.

    Config is saved progressively after each step so that a Ctrl+C
    mid-flow preserves everything completed so far.
    """
    from .config import env_file

    env_path = env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)
    existing = _load_existing_env(env_path)
    env_values: dict[str, str] = dict(existing)

    def _save() -> None:
        _write_env(env_path, env_values)

    def _set_or_clear(key: str, val: str) -> None:
        if val:
            env_values[key] = val
        else:
            env_values.pop(key, None)

    console.print()
    console.print(Panel("[bold]ccth: Setup Wizard[/bold]"))

    env_values["SLACK_BOT_TOKEN"] = _step_bot_token(existing.get("SLACK_BOT_TOKEN", ""))
    _save()

    env_values["SLACK_CHANNEL"] = _step_channel(existing.get("SLACK_CHANNEL", ""))
    _save()

    _set_or_clear("CCTH_THREAD_TIMEOUT", _step_thread_timeout(existing.get("CCTH_THREAD_TIMEOUT", "")))
    _save()

    _set_or_clear("CCTH_STORAGE_DIR", _step_storage_dir(existing.get("CCTH_STORAGE_DIR", "")))
    _save()

    log_dir, log_level = _step_logging(existing)
    _set_or_clear("LOG_DIR", log_dir)
    _set_or_clear("LOG_LEVEL", log_level if log_level != "INFO" else "")
    _save()

    console.rule("Done")
    console.print()
    console.print(Panel(
        f"[green]✓[/green] Config saved to {env_path}\n"
        "[green]✓[/green] Next: add the hooks below to ~/.claude/settings.json\n"
        "[green]✓[/green] Tip: invite the bot to the channel with /invite"
    ))
    console.print()
    console.print_json(json.dumps(hooks_settings()))


def show_sessions(store: SessionStore) -> None:
    """Print every stored session thread, most recently active first."""
    records = store.list_records()
    if not records:
        console.print(f"  [dim]No sessions stored in {store.root}[/dim]")
        return
    table = Table(show_header=True, padding=(0, 2))
    table.add_column("Session", style="bold")
    table.add_column("Channel")
    table.add_column("Thread")
    table.add_column("Last activity")
    for record in records:
        last = datetime.fromtimestamp(record.last_activity / 1000)
        table.add_row(
            record.session_id,
            record.channel,
            record.thread_ts,
            last.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)
