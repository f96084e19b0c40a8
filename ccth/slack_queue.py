"""Throttled Slack message poster.

Slack's ``chat.postMessage`` allows roughly 1 message per second per channel
with short burst tolerance.  A Stop event can post several transcript turns
back to back, so every post goes through a per-channel throttle.
"""

import asyncio
import logging
from dataclasses import dataclass
from time import monotonic
from typing import Awaitable, Callable

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from .errors import DeliveryError

logger = logging.getLogger(__name__)

# Default minimum seconds between chat_postMessage calls per channel.
DEFAULT_MIN_INTERVAL = 1.0


@dataclass(frozen=True)
class PostResult:
    """Result of a queued message post."""

    ts: str
    channel: str
    thread_ts: str | None


async def connect_client(token: str) -> AsyncWebClient:
    """Build a Slack client and verify the token with ``auth.test``."""
    client = AsyncWebClient(token=token)
    try:
        auth = await client.auth_test()
    except (SlackApiError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise DeliveryError(f"Failed to initialize Slack client: {exc}") from exc
    logger.info(
        "Slack client initialized (team=%s, user=%s)",
        auth.get("team"), auth.get("user"),
    )
    return client


class SlackMessageQueue:
    """Per-channel throttle for ``chat.postMessage`` calls.

    Usage::

        queue = SlackMessageQueue(connect=lambda: connect_client(token))
        root = await queue.post_message(channel, "New session")
        await queue.post_message(channel, "hello", thread_ts=root.ts)

    Each ``post_message`` call blocks until the message is actually posted,
    which preserves ordering within a single coroutine.  Concurrent callers
    serialize via an internal lock.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        connect: Callable[[], Awaitable[AsyncWebClient]] | None = None,
    ) -> None:
        self._client: AsyncWebClient | None = None
        self._connect = connect
        self._min_interval = min_interval
        self._last_post_time: dict[str, float] = {}  # channel → monotonic time
        self._lock = asyncio.Lock()

    def ensure_client(self, client: AsyncWebClient) -> None:
        """Bind the Slack client (idempotent)."""
        if self._client is None:
            self._client = client

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def _bind_lazily(self) -> None:
        """Connect on first use when built with a *connect* factory."""
        if self._client is None and self._connect is not None:
            self.ensure_client(await self._connect())

    async def post_message(
        self,
        channel: str,
        text: str,
        *,
        thread_ts: str | None = None,
        blocks: list[dict] | None = None,
    ) -> PostResult:
        """Post a message, throttling to respect Slack's rate limit.

        Without *thread_ts* the message starts a new top-level message
        (a thread root).  If *blocks* is provided, *text* serves as the
        notification/accessibility fallback.

        Raises :class:`DeliveryError` when Slack rejects the post.
        """
        await self._bind_lazily()
        if self._client is None:
            raise RuntimeError("SlackMessageQueue: client not bound, call ensure_client() first")

        async with self._lock:
            await self._throttle(channel)
            try:
                result = await self._post_with_retry(
                    channel, text, thread_ts=thread_ts, blocks=blocks,
                )
            except SlackApiError as exc:
                error = exc.response.get("error") if hasattr(exc.response, "get") else None
                raise DeliveryError(
                    f"Slack rejected message to {channel}: {error or exc}"
                ) from exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise DeliveryError(f"Failed to reach Slack: {exc}") from exc
            finally:
                self._last_post_time[channel] = monotonic()
            return result

    async def _throttle(self, channel: str) -> None:
        """Sleep if needed to maintain minimum interval for this channel."""
        last = self._last_post_time.get(channel)
        if last is None:
            return
        elapsed = monotonic() - last
        if elapsed < self._min_interval:
            delay = self._min_interval - elapsed
            logger.debug("Throttling channel %s for %.2fs", channel, delay)
            await asyncio.sleep(delay)

    async def _post_with_retry(
        self,
        channel: str,
        text: str,
        *,
        thread_ts: str | None = None,
        blocks: list[dict] | None = None,
    ) -> PostResult:
        """Post message, retrying once on HTTP 429."""
        kwargs: dict = dict(channel=channel, text=text)
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        if blocks:
            kwargs["blocks"] = blocks
        try:
            resp = await self._client.chat_postMessage(**kwargs)
        except SlackApiError as exc:
            if exc.response.status_code != 429:
                raise
            retry_after = float(exc.response.headers.get("Retry-After", 1))
            logger.warning(
                "Slack rate limited (429) on channel %s, retrying after %.1fs",
                channel, retry_after,
            )
            await asyncio.sleep(retry_after)
            resp = await self._client.chat_postMessage(**kwargs)
        ts = resp.get("ts")
        if not ts:
            raise DeliveryError(f"Slack returned no message timestamp for {channel}")
        return PostResult(ts=ts, channel=resp.get("channel") or channel, thread_ts=thread_ts)
