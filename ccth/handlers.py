"""Delivery pipeline: one hook event in, Slack thread messages out.

Each invocation walks the stages of :class:`PipelineStage` in order.  Any
:class:`~ccth.errors.CcthError` escaping :func:`process_hook_input` aborts the
run; the caller maps that to a non-zero exit.
"""

import asyncio
import enum
import json
import logging
import sys
from typing import IO

from .config import Config
from .errors import CcthError, DeliveryError, InputError, StorageError, TranscriptError
from .events import SKIPPED_EVENTS, BaseHookEvent, is_terminal, parse_hook_input
from .formatter import format_assistant_summary, format_hook_event
from .slack_queue import SlackMessageQueue
from .storage import SessionStore
from .threads import ThreadManager
from .transcript import TranscriptReader

logger = logging.getLogger(__name__)


class PipelineStage(enum.Enum):
    AWAITING_INPUT = "awaiting_input"
    VALIDATING = "validating"
    THREAD_RESOLUTION = "thread_resolution"
    PRIMARY_DELIVERY = "primary_delivery"
    TRANSCRIPT_DRAIN = "transcript_drain"
    DONE = "done"


async def read_stdin(stream: IO[str] | None = None) -> str:
    """Read the whole hook payload without blocking the event loop."""
    stream = stream or sys.stdin
    try:
        return await asyncio.to_thread(stream.read)
    except UnicodeDecodeError as exc:
        raise InputError(f"Hook input is not valid UTF-8: {exc}") from exc


async def process_hook_input(
    payload: str,
    config: Config,
    store: SessionStore,
    threads: ThreadManager | None = None,
) -> PipelineStage:
    """Run one hook event through the pipeline.

    *threads* may be omitted only in dry-run mode.  Returns
    :attr:`PipelineStage.DONE`; failures raise.
    """
    stage = PipelineStage.VALIDATING
    try:
        raw, event = parse_hook_input(payload)
    except InputError as exc:
        logger.error("Rejected hook input: %s", exc)
        raise
    logger.info(
        "Received %s event for session %s", event.hook_event_name, event.session_id,
    )

    if config.debug:
        try:
            store.append_event(event.session_id, raw)
        except StorageError as exc:
            logger.warning("Failed to capture raw event: %s", exc)

    if event.hook_event_name in SKIPPED_EVENTS:
        logger.debug("Skipping %s event", event.hook_event_name)
        return PipelineStage.DONE

    message = format_hook_event(event)

    if config.dry_run:
        logger.info(
            "Dry run mode - would send to Slack: %s",
            json.dumps(message.to_dict(), ensure_ascii=False),
        )
        return PipelineStage.DONE

    if threads is None:
        raise DeliveryError("Slack client not initialized")

    try:
        stage = PipelineStage.THREAD_RESOLUTION
        thread_ts = await threads.get_or_create_thread(event.session_id, event.cwd)

        stage = PipelineStage.PRIMARY_DELIVERY
        await threads.queue.post_message(
            threads.channel, message.text, thread_ts=thread_ts, blocks=message.blocks,
        )
        logger.info("Sent %s event to thread %s", event.hook_event_name, thread_ts)

        if is_terminal(event) and event.transcript_path:
            stage = PipelineStage.TRANSCRIPT_DRAIN
            await send_unsent_assistant_messages(
                event, thread_ts,
                store=store, queue=threads.queue, channel=threads.channel,
            )
    except CcthError as exc:
        logger.error(
            "Aborted %s event for session %s during %s: %s",
            event.hook_event_name, event.session_id, stage.value, exc,
        )
        raise

    return PipelineStage.DONE


async def send_unsent_assistant_messages(
    event: BaseHookEvent,
    thread_ts: str,
    *,
    store: SessionStore,
    queue: SlackMessageQueue,
    channel: str,
) -> int:
    """Post every assistant turn not yet delivered to the session thread.

    Turns are posted in transcript order and fingerprinted right after each
    successful post, so a re-run only picks up what is new.  A failure on one
    turn is logged and the remaining turns are still attempted.  Returns the
    number of turns posted.
    """
    reader = TranscriptReader(event.transcript_path)
    try:
        turns = reader.assistant_turns()
    except TranscriptError as exc:
        logger.error("Skipping transcript for session %s: %s", event.session_id, exc)
        return 0

    sent = store.load_sent_hashes(event.session_id)
    posted = 0
    for turn in turns:
        fingerprint = turn.fingerprint
        if fingerprint in sent:
            continue
        if not turn.has_text:
            continue

        try:
            message = format_assistant_summary(turn.summary(), now=turn.created_at)
            await queue.post_message(
                channel, message.text, thread_ts=thread_ts, blocks=message.blocks,
            )
            store.mark_as_sent(event.session_id, fingerprint)
        except CcthError as exc:
            logger.error(
                "Failed to deliver assistant turn %s for session %s: %s",
                turn.uuid or fingerprint[:12], event.session_id, exc,
            )
            continue
        except Exception:
            logger.exception(
                "Unexpected error rendering assistant turn %s for session %s",
                turn.uuid or fingerprint[:12], event.session_id,
            )
            continue
        sent.add(fingerprint)
        posted += 1

    if posted:
        logger.info("Sent %d assistant message(s) for session %s", posted, event.session_id)
    return posted
