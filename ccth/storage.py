"""Persisted session store: maps Claude session IDs to Slack threads on disk.

Every hook invocation is a fresh process, so the thread for a session has to
survive between runs.  Each session gets its own directory under the storage
root::

    <root>/<sanitized-id>/session.json        thread record
    <root>/<sanitized-id>/events.jsonl        raw hook events (debug only)
    <root>/<sanitized-id>/sent-messages.json  transcript turns already posted

Older releases wrote one flat ``<root>/<sanitized-id>.json`` per session.
Those are migrated into the directory layout the first time they are seen.
"""

import hashlib
import json
import logging
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

SESSION_FILE = "session.json"
EVENTS_FILE = "events.jsonl"
SENT_MESSAGES_FILE = "sent-messages.json"

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_session_id(session_id: str) -> str:
    """Make a session ID safe to use as a single path component.

    An empty ID would name the storage root itself, so it is rejected.
    """
    if not session_id:
        raise StorageError("Session ID must not be empty")
    return _UNSAFE_CHARS_RE.sub("_", session_id)


def now_ms() -> int:
    return int(time.time() * 1000)


def hash_message(content: object) -> str:
    """Stable SHA-256 fingerprint of a transcript entry."""
    payload = json.dumps(
        content, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class SessionRecord:
    """The Slack thread a Claude session posts into."""

    session_id: str
    thread_ts: str
    channel: str
    last_activity: int

    def to_dict(self) -> dict:
        return {
            "threadTs": self.thread_ts,
            "lastActivity": self.last_activity,
            "channel": self.channel,
            "sessionId": self.session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionRecord":
        """Build a record from its JSON form. Raises ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError("session record must be a JSON object")
        try:
            thread_ts = data["threadTs"]
            last_activity = data["lastActivity"]
        except KeyError as exc:
            raise ValueError(f"session record missing {exc.args[0]}") from None
        if not isinstance(thread_ts, str) or not thread_ts:
            raise ValueError("threadTs must be a non-empty string")
        if isinstance(last_activity, bool) or not isinstance(last_activity, (int, float)):
            raise ValueError("lastActivity must be a number")
        return cls(
            session_id=str(data.get("sessionId", "")),
            thread_ts=thread_ts,
            channel=str(data.get("channel", "")),
            last_activity=int(last_activity),
        )

    def touch(self, timestamp: int | None = None) -> None:
        self.last_activity = timestamp if timestamp is not None else now_ms()


def _write_json_atomic(path: Path, data: object) -> None:
    """Replace *path* in one step so readers never see a partial file."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    try:
        tmp.chmod(0o600)
    except OSError:
        pass  # Windows or restricted filesystem
    tmp.replace(path)


def _mtime_ms(directory: Path) -> int:
    """Latest modification time of *directory* or any file directly in it."""
    mtimes = [directory.stat().st_mtime]
    mtimes.extend(p.stat().st_mtime for p in directory.iterdir())
    return int(max(mtimes) * 1000)


class SessionStore:
    """File-backed store of session records, raw events and sent fingerprints.

    Writes are whole-file replaces.  There is no cross-process locking:
    concurrent writers for the same session resolve as last-writer-wins.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    # -- paths --------------------------------------------------------------

    def session_dir(self, session_id: str) -> Path:
        return self.root / sanitize_session_id(session_id)

    def _record_path(self, session_id: str) -> Path:
        return self.session_dir(session_id) / SESSION_FILE

    def _legacy_path(self, session_id: str) -> Path:
        return self.root / f"{sanitize_session_id(session_id)}.json"

    def _ensure_dir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create storage directory {path}: {exc}") from exc

    # -- session records ----------------------------------------------------

    def load(self, session_id: str) -> SessionRecord | None:
        """Return the stored record, or None if the session has none.

        Corrupt records are logged and treated as missing.  A legacy flat
        file is migrated into the session directory on the way.
        """
        path = self._record_path(session_id)
        if not path.exists():
            legacy = self._legacy_path(session_id)
            if legacy.is_file():
                return self._migrate_file(legacy)
            logger.debug("No stored thread for session %s", session_id)
            return None
        try:
            record = SessionRecord.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError) as exc:
            # json.JSONDecodeError is a ValueError
            logger.error("Failed to load session data from %s: %s", path, exc)
            return None
        if not record.session_id:
            record.session_id = session_id
        logger.debug("Loaded session %s (thread %s)", session_id, record.thread_ts)
        return record

    def save(self, record: SessionRecord) -> None:
        """Persist *record*, creating the session directory if needed."""
        session_dir = self.session_dir(record.session_id)
        self._ensure_dir(session_dir)
        path = session_dir / SESSION_FILE
        try:
            _write_json_atomic(path, record.to_dict())
        except OSError as exc:
            raise StorageError(f"Failed to save session data to {path}: {exc}") from exc
        logger.debug("Saved session %s to %s", record.session_id, path)

    def delete(self, session_id: str) -> None:
        """Remove everything stored for *session_id*. Missing is fine."""
        self._remove_session_dir(self.session_dir(session_id))
        legacy = self._legacy_path(session_id)
        try:
            legacy.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.error("Failed to delete legacy session file %s", legacy, exc_info=True)

    def _remove_session_dir(self, session_dir: Path) -> bool:
        try:
            shutil.rmtree(session_dir)
        except FileNotFoundError:
            return False
        except OSError:
            logger.error("Failed to delete session directory %s", session_dir, exc_info=True)
            return False
        logger.debug("Deleted session directory %s", session_dir)
        return True

    def list_records(self) -> list[SessionRecord]:
        """Every readable session record, most recently active first."""
        if not self.root.is_dir():
            return []
        records: list[SessionRecord] = []
        for entry in sorted(self.root.iterdir()):
            path = entry / SESSION_FILE
            if not path.is_file():
                continue
            try:
                records.append(SessionRecord.from_dict(json.loads(path.read_text())))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable session record %s: %s", path, exc)
        records.sort(key=lambda r: r.last_activity, reverse=True)
        return records

    # -- raw event log ------------------------------------------------------

    def append_event(self, session_id: str, event: dict) -> None:
        """Append one raw hook event to the session's JSONL log."""
        session_dir = self.session_dir(session_id)
        self._ensure_dir(session_dir)
        path = session_dir / EVENTS_FILE
        line = json.dumps({"receivedAt": now_ms(), "event": event}, ensure_ascii=False)
        try:
            with path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:
            raise StorageError(f"Failed to append event to {path}: {exc}") from exc
        logger.debug("Appended raw event for session %s", session_id)

    # -- sent-message fingerprints ------------------------------------------

    def load_sent_hashes(self, session_id: str) -> set[str]:
        """Fingerprints of transcript turns already posted for the session."""
        path = self.session_dir(session_id) / SENT_MESSAGES_FILE
        try:
            entries = json.loads(path.read_text())
        except FileNotFoundError:
            return set()
        except (OSError, ValueError):
            logger.error("Failed to load sent messages from %s", path, exc_info=True)
            return set()
        if not isinstance(entries, list):
            logger.error("Ignoring malformed sent messages file %s", path)
            return set()
        return {
            e["messageHash"]
            for e in entries
            if isinstance(e, dict) and isinstance(e.get("messageHash"), str)
        }

    def has_been_sent(self, session_id: str, message_hash: str) -> bool:
        return message_hash in self.load_sent_hashes(session_id)

    def mark_as_sent(self, session_id: str, message_hash: str) -> None:
        """Record that the turn with *message_hash* has been posted."""
        hashes = self.load_sent_hashes(session_id)
        if message_hash in hashes:
            return
        hashes.add(message_hash)
        session_dir = self.session_dir(session_id)
        self._ensure_dir(session_dir)
        path = session_dir / SENT_MESSAGES_FILE
        timestamp = now_ms()
        entries = [
            {"messageHash": h, "timestamp": timestamp} for h in sorted(hashes)
        ]
        try:
            _write_json_atomic(path, entries)
        except OSError as exc:
            raise StorageError(f"Failed to save sent messages to {path}: {exc}") from exc

    # -- maintenance ----------------------------------------------------------

    def _migrate_file(self, legacy: Path) -> SessionRecord | None:
        """Move one flat legacy record into its session directory."""
        try:
            record = SessionRecord.from_dict(json.loads(legacy.read_text()))
        except (OSError, ValueError) as exc:
            logger.error("Failed to read legacy session file %s: %s", legacy, exc)
            return None
        if not record.session_id:
            record.session_id = legacy.stem
        # Keep the directory name the legacy file already used.
        target_dir = self.root / legacy.stem
        target = target_dir / SESSION_FILE
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            # A record already in the new layout is newer than the flat file.
            if not target.exists():
                _write_json_atomic(target, record.to_dict())
            legacy.unlink()
        except OSError as exc:
            logger.error("Failed to migrate legacy session file %s: %s", legacy, exc)
            return None
        logger.info("Migrated legacy session file %s", legacy.name)
        return record

    def migrate_legacy(self) -> int:
        """Migrate every flat legacy record. Returns the number migrated."""
        if not self.root.is_dir():
            return 0
        migrated = 0
        for legacy in sorted(self.root.glob("*.json")):
            if not legacy.is_file():
                continue
            if self._migrate_file(legacy) is not None:
                migrated += 1
        return migrated

    def sweep(self, max_age_ms: int, now: int | None = None) -> int:
        """Delete sessions idle for longer than *max_age_ms*. Returns count removed.

        Unreadable session directories are logged and left alone.
        """
        if not self.root.is_dir():
            return 0
        try:
            self.migrate_legacy()
        except OSError:
            logger.error("Legacy migration failed during sweep", exc_info=True)

        cutoff = (now if now is not None else now_ms()) - max_age_ms
        removed = 0
        try:
            entries = sorted(self.root.iterdir())
        except OSError:
            logger.error("Failed to list storage directory %s", self.root, exc_info=True)
            return 0

        for entry in entries:
            if not entry.is_dir():
                continue
            path = entry / SESSION_FILE
            try:
                last_activity = SessionRecord.from_dict(json.loads(path.read_text())).last_activity
            except FileNotFoundError:
                # Trace logs and sent fingerprints without a thread record.
                try:
                    last_activity = _mtime_ms(entry)
                except OSError as exc:
                    logger.warning("Skipping unreadable session %s during cleanup: %s", entry.name, exc)
                    continue
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable session %s during cleanup: %s", entry.name, exc)
                continue
            if last_activity < cutoff:
                if self._remove_session_dir(entry):
                    removed += 1
                    logger.debug(
                        "Cleaned up stale session %s (idle %ds)",
                        entry.name, (cutoff + max_age_ms - last_activity) // 1000,
                    )
        if removed:
            logger.info("Cleaned up %d expired sessions", removed)
        return removed
