"""Bucket watch: bridge one backend notification subscription into one SSE stream.

Each session owns its subscription. A daemon thread blocks on the subscription and
hands record sets to the event loop through an asyncio.Queue; the response generator
waits on that queue and polls the client-disconnect signal between items. Whatever
ends the session (disconnect, backend error, generator close), the subscription is
closed in the generator's finally block, which also unblocks the pump thread.
"""
import asyncio
import json
import logging
import threading
from typing import AsyncIterator, Awaitable, Callable

from starlette.concurrency import run_in_threadpool

from app.core.metrics import WATCH_SESSIONS_ACTIVE, record_watch_frame
from app.services.storage.base import OBJECT_CREATED, OBJECT_REMOVED, StorageBackend, StorageError, Subscription

logger = logging.getLogger(__name__)

WATCH_EVENT_TYPES = (OBJECT_CREATED, OBJECT_REMOVED)
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # nginx: do not buffer the stream
    "X-Accel-Buffering": "no",
}
CONNECTED_FRAME = ": connection established\n\n"


class _Failed:
    def __init__(self, reason: str) -> None:
        self.reason = reason


_ENDED = object()


def data_frame(records: list[dict]) -> str:
    return f"data: {json.dumps(records)}\n\n"


def error_frame(message: str) -> str:
    # One data line per message line; a bare newline would end the frame early
    lines = str(message).splitlines() or [""]
    return "event: error\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


class WatchSession:
    """One /watch client: subscribe, forward each notification as a frame, tear down."""

    def __init__(
        self,
        storage: StorageBackend,
        is_disconnected: Callable[[], Awaitable[bool]],
        poll_interval: float = 1.0,
    ) -> None:
        self.storage = storage
        self.is_disconnected = is_disconnected
        self.poll_interval = poll_interval

    @staticmethod
    def _pump(subscription: Subscription, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        def hand_off(item: object) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Event loop already gone; session is over
                pass

        try:
            for records in subscription:
                hand_off(records)
        except StorageError as e:
            hand_off(_Failed(str(e)))
        except Exception as e:
            logger.exception("Unexpected error reading bucket notifications")
            hand_off(_Failed(f"notification stream failed: {type(e).__name__}"))
        finally:
            hand_off(_ENDED)

    async def frames(self) -> AsyncIterator[str]:
        try:
            subscription = await run_in_threadpool(self.storage.subscribe, WATCH_EVENT_TYPES)
        except StorageError as e:
            logger.error("Could not subscribe to bucket %r notifications: %s", self.storage.bucket, e)
            yield CONNECTED_FRAME
            record_watch_frame("error")
            yield error_frame(str(e))
            return

        WATCH_SESSIONS_ACTIVE.inc()
        queue: asyncio.Queue = asyncio.Queue()
        pump = threading.Thread(
            target=self._pump,
            args=(subscription, asyncio.get_running_loop(), queue),
            name="watch-pump",
            daemon=True,
        )
        try:
            pump.start()
            logger.info("SSE connection established. Watching bucket %r for events...", self.storage.bucket)
            yield CONNECTED_FRAME
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    if await self.is_disconnected():
                        logger.info("SSE client disconnected.")
                        return
                    continue
                if item is _ENDED:
                    logger.info("Bucket notification stream closed.")
                    return
                if isinstance(item, _Failed):
                    logger.error("Error in bucket notification: %s", item.reason)
                    if await self.is_disconnected():
                        return
                    record_watch_frame("error")
                    yield error_frame(item.reason)
                    return
                if await self.is_disconnected():
                    logger.info("SSE client disconnected.")
                    return
                record_watch_frame("data")
                yield data_frame(item)
        finally:
            subscription.close()
            WATCH_SESSIONS_ACTIVE.dec()
