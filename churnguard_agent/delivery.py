"""Delivery queue for tracked events.

Delivers each accepted event at least once while bounding concurrent
outbound requests. Every entry follows a small state machine:

    PENDING -> IN_FLIGHT -> DELIVERED
                         -> RETRYING -> PENDING -> IN_FLIGHT ...
                         -> DROPPED (after `retry_attempts` attempts)

All bookkeeping runs on the event loop that called `start()`. Send
coroutines report back on that loop and timers are loop timers, so there is
a single writer and no locking.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from itertools import chain
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from churnguard_agent.envelope import Event

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


class DeliveryState(str, Enum):
    PENDING = 'pending'
    IN_FLIGHT = 'in_flight'
    RETRYING = 'retrying'
    DELIVERED = 'delivered'
    DROPPED = 'dropped'


@dataclass(eq=False)
class DeliveryEntry:
    """One event owned by the queue.

    Attributes:
        event: Envelope to deliver (replaced, never mutated, on retag)
        attempt_count: Attempts started so far
        next_eligible_time: Loop time after which a retrying entry may be sent again
        state: Current DeliveryState
    """

    event: Event
    attempt_count: int = 0
    next_eligible_time: float = 0.0
    state: DeliveryState = DeliveryState.PENDING


class DeliveryQueue:
    """Bounded-concurrency delivery with exponential backoff.

    Usage:
        queue = DeliveryQueue(send, max_concurrency=10, retry_attempts=3, retry_delay=1.0)
        queue.enqueue(event)       # buffered until start()
        queue.start()              # flushes the buffer in order
        await queue.wait_idle()
        queue.close()
    """

    def __init__(
        self,
        send: Callable[[Event], Awaitable[None]],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        """Initialize the queue.

        Args:
            send: Coroutine function delivering one event; raises on failure
            max_concurrency: Maximum concurrent in-flight attempts
            retry_attempts: Total attempts per event before it is dropped
            retry_delay: Base delay in seconds; attempt k waits retry_delay * 2**k
        """
        if max_concurrency < 1:
            raise ValueError('max_concurrency must be at least 1')
        if retry_attempts < 1:
            raise ValueError('retry_attempts must be at least 1')

        self._send = send
        self.max_concurrency = max_concurrency
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._started = False
        self._closed = False

        # Buffered before start(), kept in arrival order
        self._pending: List[DeliveryEntry] = []
        # Ready to send, waiting for a free slot
        self._waiting: Deque[DeliveryEntry] = deque()
        # Waiting out a backoff; they hold no slot
        self._retrying: Dict[DeliveryEntry, asyncio.TimerHandle] = {}
        self._in_flight: Set[asyncio.Task] = set()

        self._current_user_id: Optional[str] = None
        self._idle = asyncio.Event()
        self._idle.set()

        self.delivered_count = 0
        self.dropped_count = 0
        self.failed_attempts = 0
        self.max_in_flight_observed = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    @property
    def retrying_count(self) -> int:
        return len(self._retrying)

    def backoff_delay(self, attempt_index: int) -> float:
        """Delay before retrying after the zero-based `attempt_index` failed."""
        return self.retry_delay * (2 ** attempt_index)

    def enqueue(self, event: Event) -> Optional[DeliveryEntry]:
        """Accept an event for delivery. Returns None once the queue is closed."""
        if self._closed:
            logger.debug('Queue closed, discarding %s event', event.event_type)
            return None

        entry = DeliveryEntry(event=event)
        if not self._started:
            self._pending.append(entry)
        else:
            self._waiting.append(entry)
            self._drain()
        self._update_idle()
        return entry

    def start(self) -> None:
        """Bind to the running loop and flush events buffered before start.

        Raises:
            RuntimeError: If called without a running event loop
        """
        if self._started:
            return
        self._loop = asyncio.get_running_loop()
        self._started = True

        pending, self._pending = self._pending, []
        self._waiting.extend(pending)
        if pending:
            logger.debug('Flushing %d events queued before start', len(pending))
        self._drain()
        self._update_idle()

    def retag(self, user_id: str) -> int:
        """Attribute every not-yet-delivered event to `user_id`.

        Entries that are in flight right now are retagged if they come back
        for a retry; one whose send succeeds is stored under the id it was
        sent with. So identify() covers every event delivered after it
        returns, not a send that had already started.

        Returns:
            Number of entries rewritten immediately
        """
        self._current_user_id = user_id
        count = 0
        for entry in chain(self._pending, self._waiting, self._retrying):
            if entry.event.user_id != user_id:
                entry.event = entry.event.with_user(user_id)
                count += 1
        return count

    async def wait_idle(self) -> None:
        """Wait until nothing is buffered, waiting, retrying or in flight."""
        await self._idle.wait()

    def close(self) -> None:
        """Abandon buffered entries and backoff timers silently.

        In-flight sends run to completion but are not retried.
        """
        if self._closed:
            return
        self._closed = True
        for handle in self._retrying.values():
            handle.cancel()
        abandoned = len(self._pending) + len(self._waiting) + len(self._retrying)
        self._retrying.clear()
        self._pending.clear()
        self._waiting.clear()
        if abandoned:
            logger.debug('Abandoned %d undelivered events on close', abandoned)
        self._update_idle()

    def _drain(self) -> None:
        if self._closed or not self._started:
            return
        while self._waiting and len(self._in_flight) < self.max_concurrency:
            self._dispatch(self._waiting.popleft())

    def _dispatch(self, entry: DeliveryEntry) -> None:
        entry.state = DeliveryState.IN_FLIGHT
        entry.attempt_count += 1
        task = self._loop.create_task(self._attempt(entry))
        self._in_flight.add(task)
        self.max_in_flight_observed = max(self.max_in_flight_observed, len(self._in_flight))

    async def _attempt(self, entry: DeliveryEntry) -> None:
        error: Optional[BaseException] = None
        try:
            await self._send(entry.event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            self._in_flight.discard(asyncio.current_task())

        if error is None:
            self._on_delivered(entry)
        else:
            self._on_failed(entry, error)
        self._drain()
        self._update_idle()

    def _on_delivered(self, entry: DeliveryEntry) -> None:
        entry.state = DeliveryState.DELIVERED
        self.delivered_count += 1
        logger.debug('Event sent successfully: %s', entry.event.event_type)

    def _on_failed(self, entry: DeliveryEntry, error: BaseException) -> None:
        self.failed_attempts += 1
        if self._closed or entry.attempt_count >= self.retry_attempts:
            entry.state = DeliveryState.DROPPED
            self.dropped_count += 1
            logger.debug(
                'Dropping %s event after %d attempts: %s',
                entry.event.event_type,
                entry.attempt_count,
                error,
            )
            return

        if self._current_user_id and entry.event.user_id != self._current_user_id:
            entry.event = entry.event.with_user(self._current_user_id)

        delay = self.backoff_delay(entry.attempt_count - 1)
        entry.state = DeliveryState.RETRYING
        entry.next_eligible_time = self._loop.time() + delay
        self._retrying[entry] = self._loop.call_later(delay, self._on_backoff_elapsed, entry)
        logger.debug(
            'Error sending %s event (attempt %d/%d), retrying in %.2fs: %s',
            entry.event.event_type,
            entry.attempt_count,
            self.retry_attempts,
            delay,
            error,
        )

    def _on_backoff_elapsed(self, entry: DeliveryEntry) -> None:
        if self._retrying.pop(entry, None) is None:
            return
        entry.state = DeliveryState.PENDING
        self._waiting.append(entry)
        self._drain()
        self._update_idle()

    def _update_idle(self) -> None:
        busy = self._pending or self._waiting or self._retrying or self._in_flight
        if busy:
            self._idle.clear()
        else:
            self._idle.set()
