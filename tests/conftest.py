"""Shared fixtures and helpers for ccth tests."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from ccth.config import Config
from ccth.slack_queue import SlackMessageQueue
from ccth.storage import SessionStore


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the developer's real .env and shell settings out of tests."""
    for var in (
        "SLACK_BOT_TOKEN",
        "SLACK_CHANNEL",
        "CCTH_THREAD_TIMEOUT",
        "CCTH_CLEANUP_INTERVAL",
        "CCTH_STORAGE_DIR",
        "CCTH_DEBUG",
        "CCTH_DRY_RUN",
        "LOG_LEVEL",
        "LOG_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CCTH_CONFIG_DIR", str(tmp_path / "config"))


@pytest.fixture
def config(tmp_path):
    return Config(
        slack_channel="C_TEST",
        slack_bot_token="xoxb-test",
        storage_dir=tmp_path / "store",
    )


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "store")


@pytest.fixture
def client():
    """An AsyncWebClient stand-in whose posts get increasing timestamps."""
    mock = AsyncMock()
    counter = iter(range(1, 10_000))

    async def _post(**kwargs):
        return {"ok": True, "ts": f"1700000000.{next(counter):06d}", "channel": kwargs["channel"]}

    mock.chat_postMessage.side_effect = _post
    return mock


@pytest.fixture
def queue(client):
    """A SlackMessageQueue with zero throttle, bound to the mock client."""
    q = SlackMessageQueue(min_interval=0.0)
    q.ensure_client(client)
    return q


@pytest.fixture
def no_sleep():
    """Make asyncio.sleep inside the queue return immediately."""
    with patch("ccth.slack_queue.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


@pytest.fixture
def hook_event():
    """Factory for raw hook event dicts."""

    def _make(kind: str, session_id: str = "sess-1", **fields) -> dict:
        raw = {
            "session_id": session_id,
            "transcript_path": fields.pop("transcript_path", "/tmp/transcript.jsonl"),
            "cwd": fields.pop("cwd", "/home/dev/project"),
            "hook_event_name": kind,
        }
        raw.update(fields)
        return raw

    return _make


@pytest.fixture
def write_transcript(tmp_path):
    """Write JSONL transcript entries and return the file path."""

    def _write(entries: list[dict], name: str = "transcript.jsonl"):
        path = tmp_path / name
        path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")
        return path

    return _write


def assistant_entry(text: str = "", uuid: str = "a-1", **extra) -> dict:
    content = [{"type": "text", "text": text}] if text else []
    content.extend(extra.pop("content", []))
    message = {"role": "assistant", "content": content}
    message.update(extra.pop("message", {}))
    return {
        "type": "assistant",
        "uuid": uuid,
        "timestamp": "2024-01-15T10:30:00.000Z",
        "message": message,
        **extra,
    }


@pytest.fixture
def assistant():
    """Factory for assistant transcript entries."""
    return assistant_entry
