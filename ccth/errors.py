"""Exception types for hook processing.

- CcthError: base for everything the CLI reports as a failed invocation
- InputError: stdin was not a valid hook event (nothing is delivered)
- StorageError: the session store could not be read or written
- TranscriptError: the transcript exists but could not be read
- DeliveryError: Slack rejected or never received a post
- ConfigError: required settings are missing or malformed
"""

from __future__ import annotations

__all__ = [
    "CcthError",
    "ConfigError",
    "DeliveryError",
    "EventValidationError",
    "InputError",
    "StorageError",
    "TranscriptError",
]


class CcthError(Exception):
    """Base exception for ccth failures."""


class ConfigError(CcthError):
    """Raised when configuration is missing or invalid."""


class InputError(CcthError):
    """Raised when the hook payload cannot be decoded."""


class EventValidationError(InputError):
    """Raised when a hook payload does not match any known event schema.

    Attributes:
        errors: One ``{"loc": ..., "msg": ...}`` dict per offending field.
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        if self.errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in e.get('loc', ())) or '<root>'}: {e.get('msg', '')}"
                for e in self.errors
            )
            message = f"{message}: {details}"
        super().__init__(message)


class StorageError(CcthError):
    """Raised when the session store cannot complete a required write."""


class TranscriptError(CcthError):
    """Raised when an existing transcript file cannot be read."""


class DeliveryError(CcthError):
    """Raised when a Slack call fails."""
