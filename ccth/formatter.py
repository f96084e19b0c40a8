"""Slack Block Kit rendering for hook events and transcript turns."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from .events import (
    BaseHookEvent,
    NotificationEvent,
    PostToolUseEvent,
    StopEvent,
    SubagentStopEvent,
    UserPromptSubmitEvent,
)
from .transcript import AssistantSummary

logger = logging.getLogger(__name__)

# Per-field truncation limits (characters).
TEXT_LIMIT = 3000
PREVIEW_LIMIT = 500
THINKING_LIMIT = 1500

ELLIPSIS = "..."

# Slack rejects section text longer than this.
SECTION_TEXT_MAX = 3000

# Short preview used in notification fallback text.
_FALLBACK_PREVIEW = 150


@dataclass
class SlackMessage:
    """A ``chat.postMessage`` payload: fallback text plus Block Kit blocks."""

    text: str
    blocks: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"text": self.text, "blocks": self.blocks}


def truncate_text(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def _body(text: str) -> list[dict]:
    """A section for *text*, with any overflow past Slack's limit in a context block."""
    if len(text) <= SECTION_TEXT_MAX:
        return [_section(text)]
    return [_section(text[:SECTION_TEXT_MAX]), _context(text[SECTION_TEXT_MAX:])]


_DIVIDER = {"type": "divider"}


def _clock(now: datetime | None) -> str:
    return (now or datetime.now()).strftime("%H:%M:%S")


def _preview(value: object, limit: int = PREVIEW_LIMIT) -> str:
    """Serialize structured data for a code block preview."""
    if isinstance(value, str):
        rendered = value
    else:
        try:
            rendered = json.dumps(value, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            rendered = repr(value)
    return truncate_text(rendered, limit)


def _markdown_to_mrkdwn(text: str) -> str:
    """Convert the Markdown Claude writes into Slack mrkdwn.

    Code spans and fences are left untouched.  Converts bold, strikethrough,
    links, headers and list bullets; everything else passes through.
    """
    _ZWS = "\u200b"

    placeholders: list[str] = []

    def _protect(m: re.Match) -> str:
        placeholders.append(m.group(0))
        return f"\x00PROTECTED{len(placeholders) - 1}\x00"

    text = re.sub(r"```[\s\S]*?```", _protect, text)
    text = re.sub(r"`[^`\n]+`", _protect, text)

    text = text.replace("&", "&amp;")
    text = re.sub(r"<(?![\x00!@#])", "&lt;", text)
    text = re.sub(r"(?<!^)>", "&gt;", text, flags=re.MULTILINE)

    # [text](url) → <url|text>
    text = re.sub(r"!?\[([^\]]*)\]\(([^)]+)\)", r"<\2|\1>", text)

    text = re.sub(r"\*\*(.+?)\*\*", rf"{_ZWS}*\1*{_ZWS}", text)
    text = re.sub(r"__(.+?)__", rf"{_ZWS}*\1*{_ZWS}", text)
    text = re.sub(r"~~(.+?)~~", rf"{_ZWS}~\1~{_ZWS}", text)

    text = re.sub(r"^(\s*)[-*+](\s+)", r"\1•\2", text, flags=re.MULTILINE)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"*\1*", text, flags=re.MULTILINE)

    text = re.sub(
        r"\x00PROTECTED(\d+)\x00", lambda m: placeholders[int(m.group(1))], text,
    )

    text = re.sub(rf"{_ZWS}{{2,}}", _ZWS, text)
    text = re.sub(rf"^{_ZWS}|{_ZWS}$", "", text, flags=re.MULTILINE)
    return text


# ---------------------------------------------------------------------------
# Hook events
# ---------------------------------------------------------------------------


def format_hook_event(event: BaseHookEvent, now: datetime | None = None) -> SlackMessage:
    """Render one hook event.  PreToolUse never reaches this function."""
    logger.debug("Formatting %s event for Slack", event.hook_event_name)

    if isinstance(event, UserPromptSubmitEvent):
        return format_user_prompt(event, now)
    if isinstance(event, PostToolUseEvent):
        return format_tool_use(event, now)
    if isinstance(event, (StopEvent, SubagentStopEvent)):
        return format_stop(event, now)
    if isinstance(event, NotificationEvent):
        return format_notification(event, now)
    return format_generic(event, now)


def format_user_prompt(event: UserPromptSubmitEvent, now: datetime | None = None) -> SlackMessage:
    body = truncate_text(event.prompt, TEXT_LIMIT) if event.prompt else "_(empty prompt)_"
    return SlackMessage(
        text=f"User: {truncate_text(event.prompt, _FALLBACK_PREVIEW)}",
        blocks=[
            _section(f"👤 *User at {_clock(now)}*"),
            *_body(body),
            _DIVIDER,
        ],
    )


def format_tool_use(event: PostToolUseEvent, now: datetime | None = None) -> SlackMessage:
    blocks = [
        _section(f"🔧 *Tool Use: {event.tool_name} at {_clock(now)}*"),
        _section(f"*Input:*\n```{_preview(event.tool_input)}```"),
    ]
    if event.tool_response is not None:
        blocks.append(_section(f"*Response:*\n```{_preview(event.tool_response)}```"))
    return SlackMessage(text=f"Tool Use: {event.tool_name}", blocks=blocks)


def format_stop(event: StopEvent | SubagentStopEvent, now: datetime | None = None) -> SlackMessage:
    if isinstance(event, SubagentStopEvent):
        header = f"🤖 *Subagent Completed at {_clock(now)}*"
        text = "Subagent completed"
    else:
        header = f"✅ *Session Completed at {_clock(now)}*"
        text = "Session completed"
    blocks = [_section(header)]
    if event.stop_hook_active:
        blocks.append(_context("⚠️ Stop hook is active"))
    return SlackMessage(text=text, blocks=blocks)


def classify_notification(message: str) -> str:
    """Bucket a notification by its wording: permission, idle or generic."""
    lowered = message.lower()
    if "permission" in lowered:
        return "permission"
    if "waiting" in lowered:
        return "idle"
    return "generic"


_NOTIFICATION_HEADERS = {
    "permission": "🔐 *Permission Request",
    "idle": "⏳ *Idle Notification",
    "generic": "🔔 *Notification",
}


def format_notification(event: NotificationEvent, now: datetime | None = None) -> SlackMessage:
    header = _NOTIFICATION_HEADERS[classify_notification(event.message)]
    body = truncate_text(event.message, TEXT_LIMIT) or "_(no message)_"
    return SlackMessage(
        text=event.message or "Notification",
        blocks=[
            _section(f"{header} at {_clock(now)}*"),
            *_body(body),
        ],
    )


def format_generic(event: BaseHookEvent, now: datetime | None = None) -> SlackMessage:
    kind = event.hook_event_name
    return SlackMessage(
        text=f"{kind} event",
        blocks=[_section(f"*{kind}* at {_clock(now)}")],
    )


# ---------------------------------------------------------------------------
# Thread root and transcript turns
# ---------------------------------------------------------------------------


def format_thread_intro(session_id: str, cwd: str, started: datetime | None = None) -> SlackMessage:
    """The top-level message every session thread hangs off."""
    started_at = (started or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return SlackMessage(
        text="New Claude Code session started",
        blocks=[
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "🤖 Claude Code Session", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Session ID:*\n`{session_id}`"},
                    {"type": "mrkdwn", "text": f"*Started:*\n{started_at}"},
                ],
            },
            _context(f"Working directory: `{cwd}`"),
            _DIVIDER,
        ],
    )


def format_assistant_summary(summary: AssistantSummary, now: datetime | None = None) -> SlackMessage:
    """Render one assistant turn taken from the transcript."""
    header = "🤖 *Assistant*"
    if summary.model:
        header += f" ({summary.model})"
    blocks = [_section(header)]

    if summary.thinking:
        blocks.append(_context(f"💭 _{truncate_text(summary.thinking, THINKING_LIMIT)}_"))

    if summary.text.strip():
        blocks.extend(_body(truncate_text(_markdown_to_mrkdwn(summary.text), TEXT_LIMIT)))

    if summary.tool_uses:
        names = ", ".join(f"`{t.name}`" for t in summary.tool_uses)
        blocks.append(_context(f"🔧 Tools: {names}"))

    if summary.token_usage:
        usage = summary.token_usage
        blocks.append(_context(f"Tokens: {usage.input:,} in / {usage.output:,} out"))

    return SlackMessage(
        text=f"🤖 Assistant at {_clock(now)}",
        blocks=blocks,
    )
