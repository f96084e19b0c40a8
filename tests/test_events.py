"""Tests for hook event validation."""

import json

import pytest

from ccth.errors import EventValidationError, InputError
from ccth.events import (
    NotificationEvent,
    PostToolUseEvent,
    PreCompactEvent,
    PreToolUseEvent,
    StopEvent,
    SubagentStopEvent,
    UserPromptSubmitEvent,
    is_terminal,
    parse_hook_event,
    parse_hook_input,
)


class TestParseHookEvent:
    def test_user_prompt(self, hook_event):
        event = parse_hook_event(hook_event("UserPromptSubmit", prompt="Fix the bug"))
        assert isinstance(event, UserPromptSubmitEvent)
        assert event.prompt == "Fix the bug"
        assert event.session_id == "sess-1"
        assert event.cwd == "/home/dev/project"

    def test_post_tool_use_string_response(self, hook_event):
        event = parse_hook_event(hook_event(
            "PostToolUse", tool_name="Bash",
            tool_input={"command": "ls"}, tool_response="a\nb",
        ))
        assert isinstance(event, PostToolUseEvent)
        assert event.tool_response == "a\nb"

    def test_post_tool_use_object_response(self, hook_event):
        event = parse_hook_event(hook_event(
            "PostToolUse", tool_name="Write",
            tool_input={"file_path": "/x"}, tool_response={"success": True},
        ))
        assert event.tool_response == {"success": True}

    def test_post_tool_use_without_response(self, hook_event):
        event = parse_hook_event(hook_event(
            "PostToolUse", tool_name="Read", tool_input={"file_path": "/x"},
        ))
        assert event.tool_response is None

    def test_pre_tool_use(self, hook_event):
        event = parse_hook_event(hook_event(
            "PreToolUse", tool_name="Bash", tool_input={"command": "ls"},
        ))
        assert isinstance(event, PreToolUseEvent)

    def test_stop_flag_optional(self, hook_event):
        event = parse_hook_event(hook_event("Stop"))
        assert isinstance(event, StopEvent)
        assert event.stop_hook_active is None

        event = parse_hook_event(hook_event("Stop", stop_hook_active=True))
        assert event.stop_hook_active is True

    def test_subagent_stop(self, hook_event):
        event = parse_hook_event(hook_event("SubagentStop", stop_hook_active=False))
        assert isinstance(event, SubagentStopEvent)

    def test_notification(self, hook_event):
        event = parse_hook_event(hook_event("Notification", message="Claude is waiting"))
        assert isinstance(event, NotificationEvent)
        assert event.message == "Claude is waiting"

    def test_pre_compact(self, hook_event):
        event = parse_hook_event(hook_event("PreCompact", trigger="auto"))
        assert isinstance(event, PreCompactEvent)
        assert event.custom_instructions is None

    def test_pre_compact_rejects_unknown_trigger(self, hook_event):
        with pytest.raises(EventValidationError):
            parse_hook_event(hook_event("PreCompact", trigger="sometimes"))

    def test_unknown_kind_rejected(self, hook_event):
        with pytest.raises(EventValidationError):
            parse_hook_event(hook_event("SessionStart"))

    def test_extra_field_rejected(self, hook_event):
        with pytest.raises(EventValidationError) as exc_info:
            parse_hook_event(hook_event("UserPromptSubmit", prompt="hi", surprise=1))
        locs = [e["loc"] for e in exc_info.value.errors]
        assert any("surprise" in loc for loc in locs)

    def test_missing_kind_field_rejected(self, hook_event):
        with pytest.raises(EventValidationError) as exc_info:
            parse_hook_event(hook_event("UserPromptSubmit"))
        locs = [e["loc"] for e in exc_info.value.errors]
        assert any("prompt" in loc for loc in locs)

    def test_missing_common_field_rejected(self, hook_event):
        raw = hook_event("Stop")
        del raw["session_id"]
        with pytest.raises(EventValidationError):
            parse_hook_event(raw)

    def test_empty_session_id_rejected(self, hook_event):
        with pytest.raises(EventValidationError) as exc_info:
            parse_hook_event(hook_event("Stop", session_id=""))
        assert any("session_id" in e["loc"] for e in exc_info.value.errors)

    @pytest.mark.parametrize("flag", ["yes", 1, "0"])
    def test_stop_flag_not_coerced(self, hook_event, flag):
        with pytest.raises(EventValidationError):
            parse_hook_event(hook_event("Stop", stop_hook_active=flag))

    def test_prompt_must_be_string(self, hook_event):
        with pytest.raises(EventValidationError):
            parse_hook_event(hook_event("UserPromptSubmit", prompt=42))

    def test_every_offending_field_listed(self, hook_event):
        raw = hook_event("PostToolUse")
        del raw["cwd"]
        with pytest.raises(EventValidationError) as exc_info:
            parse_hook_event(raw)
        flat = {part for e in exc_info.value.errors for part in e["loc"]}
        assert {"cwd", "tool_name", "tool_input"} <= flat

    def test_events_are_immutable(self, hook_event):
        event = parse_hook_event(hook_event("Notification", message="x"))
        with pytest.raises(Exception):
            event.message = "y"


class TestParseHookInput:
    def test_returns_raw_and_event(self, hook_event):
        raw = hook_event("UserPromptSubmit", prompt="hello")
        parsed_raw, event = parse_hook_input(json.dumps(raw))
        assert parsed_raw == raw
        assert isinstance(event, UserPromptSubmitEvent)

    def test_malformed_json(self):
        with pytest.raises(InputError, match="Failed to parse JSON input"):
            parse_hook_input("{not json")

    def test_empty_input(self):
        with pytest.raises(InputError):
            parse_hook_input("")

    def test_non_object_payload(self):
        with pytest.raises(EventValidationError, match="JSON object"):
            parse_hook_input("[1, 2, 3]")


class TestIsTerminal:
    @pytest.mark.parametrize("kind,extra,expected", [
        ("Stop", {}, True),
        ("SubagentStop", {}, True),
        ("Notification", {"message": "m"}, False),
        ("UserPromptSubmit", {"prompt": "p"}, False),
    ])
    def test_terminal_kinds(self, hook_event, kind, extra, expected):
        assert is_terminal(parse_hook_event(hook_event(kind, **extra))) is expected
