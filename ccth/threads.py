"""Thread resolution: one Slack thread per Claude session.

The session store is the only memory shared between hook invocations.
Looking up a known session bumps its last-activity time; an unknown session
gets a fresh thread root posted to the channel.
"""

import asyncio
import logging
from datetime import datetime

from .config import DEFAULT_CLEANUP_INTERVAL, DEFAULT_THREAD_TIMEOUT
from .errors import DeliveryError
from .formatter import format_thread_intro
from .slack_queue import SlackMessageQueue
from .storage import SessionRecord, SessionStore, now_ms

logger = logging.getLogger(__name__)


async def get_or_create_thread(
    session_id: str,
    cwd: str,
    *,
    store: SessionStore,
    queue: SlackMessageQueue,
    channel: str,
) -> str:
    """Return the thread ts for *session_id*, creating the thread if needed.

    Two processes racing on a brand-new session can both create a thread;
    whichever saves last owns the session from then on.
    """
    existing = store.load(session_id)
    if existing is not None:
        existing.touch()
        store.save(existing)
        logger.debug(
            "Using existing thread %s for session %s", existing.thread_ts, session_id,
        )
        return existing.thread_ts

    intro = format_thread_intro(session_id, cwd, started=datetime.now())
    try:
        result = await queue.post_message(channel, intro.text, blocks=intro.blocks)
    except DeliveryError as exc:
        raise DeliveryError(f"Failed to create thread: {exc}") from exc

    record = SessionRecord(
        session_id=session_id,
        thread_ts=result.ts,
        channel=channel,
        last_activity=now_ms(),
    )
    store.save(record)
    logger.info("Created thread %s for session %s", result.ts, session_id)
    return result.ts


class ThreadManager:
    """Owns thread lookups for a process and sweeps stale sessions.

    On :meth:`start` it sweeps once, then again every *cleanup_interval*
    seconds until :meth:`close`.  Sweep failures are logged and never
    propagate to the caller.
    """

    def __init__(
        self,
        store: SessionStore,
        queue: SlackMessageQueue,
        channel: str,
        timeout_seconds: int = DEFAULT_THREAD_TIMEOUT,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
    ) -> None:
        self.store = store
        self.queue = queue
        self.channel = channel
        self.timeout_ms = timeout_seconds * 1000
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task | None = None

    async def get_or_create_thread(self, session_id: str, cwd: str) -> str:
        return await get_or_create_thread(
            session_id, cwd, store=self.store, queue=self.queue, channel=self.channel,
        )

    def sweep(self) -> int:
        """Run one cleanup pass now. Returns the number of sessions removed."""
        try:
            return self.store.sweep(self.timeout_ms)
        except Exception:
            logger.warning("Session cleanup failed", exc_info=True)
            return 0

    def start(self) -> None:
        if self._cleanup_task is None:
            self.sweep()
            self._cleanup_task = asyncio.ensure_future(self._periodic_cleanup())

    async def _periodic_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.sweep()

    async def close(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "ThreadManager":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
