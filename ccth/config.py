"""Configuration loaded from environment variables."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from platformdirs import user_config_dir

from .errors import ConfigError

logger = logging.getLogger(__name__)


def config_dir() -> Path:
    """Return the ccth configuration directory.

    Override with CCTH_CONFIG_DIR env var. Platform defaults:
    - macOS: ~/Library/Application Support/ccth
    - Linux: ~/.config/ccth (or $XDG_CONFIG_HOME/ccth)
    - Windows: %APPDATA%/ccth
    """
    override = os.environ.get("CCTH_CONFIG_DIR")
    if override:
        return Path(override)
    return Path(user_config_dir("ccth", appauthor=False))


def env_file() -> Path:
    """Return the path to the .env configuration file."""
    return config_dir() / ".env"


def default_storage_dir() -> Path:
    """Session state lives in ~/.ccth unless CCTH_STORAGE_DIR says otherwise."""
    return Path.home() / ".ccth"


load_dotenv(env_file())


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}
DEFAULT_THREAD_TIMEOUT = 3600
DEFAULT_CLEANUP_INTERVAL = 300

_TRUTHY = {"1", "true", "yes", "on"}


def _validate_log_level(value: str) -> str:
    level = value.upper()
    if level not in VALID_LOG_LEVELS:
        raise ConfigError(
            f"Invalid LOG_LEVEL '{value}'. "
            f"Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return level


def _positive_int(name: str, raw: str | None, default: int) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from None
    if value < 1:
        raise ConfigError(f"{name} must be a positive integer")
    return value


def _flag(raw: str | None) -> bool:
    return (raw or "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Config:
    slack_channel: str
    slack_bot_token: str = ""

    # Optional
    thread_timeout: int = DEFAULT_THREAD_TIMEOUT
    cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL
    storage_dir: Path | None = None
    debug: bool = False
    dry_run: bool = False
    log_level: str = "INFO"
    log_dir: Path | None = None

    def __repr__(self) -> str:
        """Mask the bot token in repr to prevent accidental leakage."""
        def _mask(val: str) -> str:
            if len(val) <= 8:
                return "***"
            return val[:4] + "..." + val[-4:]

        fields = []
        for f in self.__dataclass_fields__:
            val = getattr(self, f)
            if f == "slack_bot_token":
                val = _mask(val)
            fields.append(f"{f}={val!r}")
        return f"Config({', '.join(fields)})"

    @property
    def resolved_storage_dir(self) -> Path:
        return self.storage_dir or default_storage_dir()

    @property
    def thread_timeout_ms(self) -> int:
        return self.thread_timeout * 1000

    def validate(self) -> None:
        """Check the settings a hook invocation cannot run without."""
        if not self.slack_channel:
            raise ConfigError(
                "Slack channel is required. Set SLACK_CHANNEL or use -c. "
                "Run 'ccth setup' to configure."
            )
        if not self.slack_bot_token and not self.dry_run:
            raise ConfigError(
                "Slack token is required. Set SLACK_BOT_TOKEN or use -t. "
                "Run 'ccth setup' to configure."
            )

    @classmethod
    def from_env(cls) -> "Config":
        storage = os.environ.get("CCTH_STORAGE_DIR")
        log_dir = os.environ.get("LOG_DIR")
        debug = _flag(os.environ.get("CCTH_DEBUG"))

        return cls(
            slack_channel=os.environ.get("SLACK_CHANNEL", ""),
            slack_bot_token=os.environ.get("SLACK_BOT_TOKEN", ""),
            thread_timeout=_positive_int(
                "CCTH_THREAD_TIMEOUT",
                os.environ.get("CCTH_THREAD_TIMEOUT"),
                DEFAULT_THREAD_TIMEOUT,
            ),
            cleanup_interval=_positive_int(
                "CCTH_CLEANUP_INTERVAL",
                os.environ.get("CCTH_CLEANUP_INTERVAL"),
                DEFAULT_CLEANUP_INTERVAL,
            ),
            storage_dir=Path(storage).expanduser() if storage else None,
            debug=debug,
            dry_run=_flag(os.environ.get("CCTH_DRY_RUN")),
            log_level=_validate_log_level(
                os.environ.get("LOG_LEVEL", "DEBUG" if debug else "INFO")
            ),
            log_dir=Path(log_dir).expanduser() if log_dir else None,
        )
