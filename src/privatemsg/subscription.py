"""Polling subscription for new messages."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .models import NewMessageEvent

logger = logging.getLogger(__name__)

# Conversation id -> number of messages already seen
Cursor = Dict[str, int]

PollFunction = Callable[[Optional[Cursor]], Awaitable[Tuple[List[NewMessageEvent], Cursor]]]
MessageCallback = Callable[[NewMessageEvent], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """
    Delivers new messages to a callback by polling at a fixed interval.

    A failed poll leaves the cursor unchanged, so the same messages are
    picked up on the next tick. A callback that raises is reported and the
    remaining events of the batch are still delivered.
    """

    def __init__(
        self,
        poll: PollFunction,
        callback: MessageCallback,
        interval: float,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._poll = poll
        self._callback = callback
        self.interval = interval
        self._on_error = on_error
        self._cursor: Optional[Cursor] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def cursor(self) -> Optional[Cursor]:
        """Snapshot of the last cursor seen."""
        return dict(self._cursor) if self._cursor is not None else None

    async def start(self, cursor: Optional[Cursor] = None) -> None:
        """
        Start polling in the background.

        Without a cursor, the current ledger state is taken as the starting
        point so only messages arriving afterwards are delivered.
        """
        if self.is_active:
            logger.warning("Subscription is already running")
            return

        if cursor is None:
            _, cursor = await self._poll(None)
        self._cursor = dict(cursor)
        self._task = asyncio.create_task(self._loop())
        logger.debug("Subscription started, polling every %.1fs", self.interval)

    def unsubscribe(self) -> None:
        """Stop polling. Safe to call more than once."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def cancel(self) -> None:
        """Stop polling and wait for the background task to finish."""
        task = self._task
        self.unsubscribe()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug("Subscription stopped")

    async def poll_once(self) -> int:
        """Run a single poll and deliver its events. Returns the number delivered."""
        events, self._cursor = await self._poll(self._cursor)

        for event in events:
            try:
                result = self._callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Message callback failed for %s: %s", event.conversation_id, e)
                self._report(e)

        return len(events)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Subscription poll failed: %s", e, exc_info=True)
                self._report(e)

    def _report(self, error: Exception) -> None:
        if self._on_error is not None:
            self._on_error(error)
