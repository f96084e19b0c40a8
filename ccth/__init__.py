"""ccth: relay Claude Code hook events into per-session Slack threads."""

__version__ = "0.1.0"
