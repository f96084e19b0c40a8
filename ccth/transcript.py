"""Reader for Claude Code transcript files (JSONL).

Claude Code appends one JSON object per line to the session transcript.
Only assistant entries matter for delivery; everything else is read and
ignored.  The file is re-parsed on every call: there is no cursor, because
each hook invocation is a new process.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import TranscriptError
from .storage import hash_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolUse:
    name: str
    id: str


@dataclass(frozen=True)
class TokenUsage:
    input: int
    output: int


@dataclass
class AssistantSummary:
    """Flattened view of one assistant turn, ready for formatting."""

    text: str
    tool_uses: list[ToolUse] = field(default_factory=list)
    thinking: str | None = None
    token_usage: TokenUsage | None = None
    model: str | None = None


def _token_count(value: object) -> int:
    # Anything but a plain non-negative integer counts as zero.
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return 0


@dataclass
class TranscriptTurn:
    """One assistant entry from the transcript.

    ``raw`` is the JSON object exactly as read; the fingerprint is computed
    from it so the same entry always hashes the same way.
    """

    raw: dict = field(repr=False)

    @property
    def uuid(self) -> str | None:
        return self.raw.get("uuid")

    @property
    def timestamp(self) -> str | None:
        return self.raw.get("timestamp")

    @property
    def created_at(self) -> datetime | None:
        """Local time the turn was written, parsed from its ISO timestamp."""
        if not isinstance(self.timestamp, str):
            return None
        try:
            parsed = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed.astimezone() if parsed.tzinfo else parsed

    @property
    def _message(self) -> dict:
        message = self.raw.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def content(self) -> list[dict]:
        content = self._message.get("content")
        if not isinstance(content, list):
            return []
        return [c for c in content if isinstance(c, dict)]

    @property
    def text_segments(self) -> list[str]:
        return [
            c["text"] for c in self.content
            if c.get("type") == "text" and isinstance(c.get("text"), str) and c["text"]
        ]

    @property
    def thinking_segments(self) -> list[str]:
        return [
            c["thinking"] for c in self.content
            if c.get("type") == "thinking"
            and isinstance(c.get("thinking"), str) and c["thinking"]
        ]

    @property
    def tool_uses(self) -> list[ToolUse]:
        return [
            ToolUse(name=str(c.get("name", "unknown")), id=str(c["id"]))
            for c in self.content
            if c.get("type") == "tool_use" and "id" in c
        ]

    @property
    def text(self) -> str:
        return "\n".join(self.text_segments)

    @property
    def has_text(self) -> bool:
        """True when at least one text segment has non-whitespace content."""
        return any(s.strip() for s in self.text_segments)

    @property
    def model(self) -> str | None:
        return self._message.get("model")

    @property
    def token_usage(self) -> TokenUsage | None:
        usage = self._message.get("usage")
        if not isinstance(usage, dict):
            return None
        return TokenUsage(
            input=_token_count(usage.get("input_tokens")),
            output=_token_count(usage.get("output_tokens")),
        )

    @property
    def fingerprint(self) -> str:
        return hash_message(self.raw)

    def summary(self) -> AssistantSummary:
        thinking = self.thinking_segments
        return AssistantSummary(
            text=self.text,
            tool_uses=self.tool_uses,
            thinking="\n".join(thinking) if thinking else None,
            token_usage=self.token_usage,
            model=self.model,
        )


class TranscriptReader:
    """Parses a transcript file on demand."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read_entries(self) -> list[dict]:
        """Every JSON object in the transcript, in file order.

        A missing file yields an empty list (the transcript may not exist
        yet on the first event).  Malformed lines are skipped with a warning.
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Transcript file not found: %s", self.path)
            return []
        except (OSError, UnicodeDecodeError) as exc:
            raise TranscriptError(f"Failed to read transcript {self.path}: {exc}") from exc

        entries: list[dict] = []
        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning(
                    "Skipping malformed transcript line %d in %s: %s",
                    lineno, self.path, exc,
                )
                continue
            if isinstance(entry, dict):
                entries.append(entry)
        return entries

    def assistant_turns(self) -> list[TranscriptTurn]:
        return [
            TranscriptTurn(raw=entry)
            for entry in self.read_entries()
            if entry.get("type") == "assistant"
        ]

    def latest_turn(self) -> TranscriptTurn | None:
        turns = self.assistant_turns()
        return turns[-1] if turns else None

    def latest_text(self) -> str | None:
        """Text of the most recent assistant turn, or None if it has none."""
        turn = self.latest_turn()
        if turn is None or not turn.text_segments:
            return None
        return turn.text

    def summaries(self) -> list[AssistantSummary]:
        return [turn.summary() for turn in self.assistant_turns()]

    def latest_summary(self) -> AssistantSummary | None:
        turn = self.latest_turn()
        return turn.summary() if turn else None
