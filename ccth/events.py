"""Claude Code hook event models.

Every hook invocation delivers one JSON object on stdin.  The
``hook_event_name`` field selects the schema; everything else must match
that schema exactly (unknown fields are rejected).
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

import pydantic

from .errors import EventValidationError

logger = logging.getLogger(__name__)

# Completion events that trigger a transcript drain.
TERMINAL_EVENTS = frozenset({"Stop", "SubagentStop"})

# Events that are validated but never posted.
SKIPPED_EVENTS = frozenset({"PreToolUse"})


class StrictModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid", strict=True, frozen=True)


class BaseHookEvent(StrictModel):
    """Fields Claude Code sends with every hook event."""

    session_id: str = pydantic.Field(min_length=1)
    transcript_path: str
    cwd: str
    hook_event_name: str


class UserPromptSubmitEvent(BaseHookEvent):
    hook_event_name: Literal["UserPromptSubmit"]
    prompt: str


class PostToolUseEvent(BaseHookEvent):
    hook_event_name: Literal["PostToolUse"]
    tool_name: str
    tool_input: dict[str, Any]
    # Bash returns a string, file tools return objects.
    tool_response: Any = None


class PreToolUseEvent(BaseHookEvent):
    hook_event_name: Literal["PreToolUse"]
    tool_name: str
    tool_input: dict[str, Any]


class StopEvent(BaseHookEvent):
    hook_event_name: Literal["Stop"]
    stop_hook_active: bool | None = None


class SubagentStopEvent(BaseHookEvent):
    hook_event_name: Literal["SubagentStop"]
    stop_hook_active: bool | None = None


class NotificationEvent(BaseHookEvent):
    hook_event_name: Literal["Notification"]
    message: str


class PreCompactEvent(BaseHookEvent):
    hook_event_name: Literal["PreCompact"]
    trigger: Literal["manual", "auto"]
    custom_instructions: str | None = None


HookEvent = Annotated[
    Union[
        UserPromptSubmitEvent,
        PostToolUseEvent,
        PreToolUseEvent,
        StopEvent,
        SubagentStopEvent,
        NotificationEvent,
        PreCompactEvent,
    ],
    pydantic.Field(discriminator="hook_event_name"),
]

_HOOK_EVENT_ADAPTER: pydantic.TypeAdapter[HookEvent] = pydantic.TypeAdapter(HookEvent)


def parse_hook_event(raw: object) -> HookEvent:
    """Validate *raw* against the hook event union.

    Raises :class:`EventValidationError` listing every offending field.
    """
    try:
        return _HOOK_EVENT_ADAPTER.validate_python(raw)
    except pydantic.ValidationError as exc:
        errors = [
            {"loc": tuple(err["loc"]), "msg": err["msg"]}
            for err in exc.errors()
        ]
        logger.debug("Hook event validation failed: %s", errors)
        raise EventValidationError("Invalid hook event", errors) from exc


def parse_hook_input(text: str) -> tuple[dict, HookEvent]:
    """Decode a stdin payload and validate it.

    Returns the raw dict alongside the parsed event so the raw form can be
    captured verbatim in the trace log.
    """
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EventValidationError(f"Failed to parse JSON input: {exc}") from exc
    if not isinstance(raw, dict):
        raise EventValidationError(
            f"Hook input must be a JSON object, got {type(raw).__name__}"
        )
    return raw, parse_hook_event(raw)


def is_terminal(event: BaseHookEvent) -> bool:
    """True for events that end a turn (Stop / SubagentStop)."""
    return event.hook_event_name in TERMINAL_EVENTS
