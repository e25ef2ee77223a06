"""Unit tests for the agent delivery queue: concurrency bound, retries and retagging."""

import asyncio

import pytest

from churnguard_agent.delivery import DeliveryQueue, DeliveryState
from churnguard_agent.transport import DeliveryError


class RecordingSender:
    """send() stand-in. Fails the first `failures` attempts of each event (or always)."""

    def __init__(self, failures=0, always_fail=False, latency=0.0, gate=None):
        self.failures = failures
        self.always_fail = always_fail
        self.latency = latency
        self.gate = gate
        self.sent = []
        self.attempt_times = []
        self.attempts_by_event = {}
        self.concurrent = 0
        self.peak = 0

    async def __call__(self, event):
        self.concurrent += 1
        self.peak = max(self.peak, self.concurrent)
        self.sent.append(event)
        self.attempt_times.append(asyncio.get_running_loop().time())
        attempt = self.attempts_by_event.get(event.event_id, 0) + 1
        self.attempts_by_event[event.event_id] = attempt
        try:
            if self.gate is not None and attempt == 1:
                await self.gate.wait()
            if self.latency:
                await asyncio.sleep(self.latency)
            if self.always_fail or attempt <= self.failures:
                raise DeliveryError('HTTP error 503', status_code=503)
        finally:
            self.concurrent -= 1


async def settle(queue, timeout=5.0):
    await asyncio.wait_for(queue.wait_idle(), timeout)


def test_rejects_invalid_limits():
    with pytest.raises(ValueError):
        DeliveryQueue(RecordingSender(), max_concurrency=0)
    with pytest.raises(ValueError):
        DeliveryQueue(RecordingSender(), retry_attempts=0)


def test_start_requires_running_loop():
    with pytest.raises(RuntimeError):
        DeliveryQueue(RecordingSender()).start()


def test_backoff_doubles_per_attempt():
    queue = DeliveryQueue(RecordingSender(), retry_delay=1.0)

    assert [queue.backoff_delay(k) for k in range(4)] == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_events_before_start_are_buffered_then_flushed_in_order(event_factory):
    sender = RecordingSender()
    queue = DeliveryQueue(sender, max_concurrency=1)
    for i in range(5):
        queue.enqueue(event_factory(i))

    assert queue.pending_count == 5
    assert sender.sent == []

    queue.start()
    await settle(queue)

    assert [e.event_id for e in sender.sent] == [f'evt-{i}' for i in range(5)]
    assert queue.delivered_count == 5
    assert queue.pending_count == 0


@pytest.mark.asyncio
async def test_enqueue_after_start_sends_immediately(event_factory):
    sender = RecordingSender()
    queue = DeliveryQueue(sender)
    queue.start()

    entry = queue.enqueue(event_factory(1))
    await settle(queue)

    assert entry.state == DeliveryState.DELIVERED
    assert entry.attempt_count == 1


@pytest.mark.asyncio
async def test_concurrency_bound_and_drop_accounting_under_total_failure(event_factory):
    sender = RecordingSender(always_fail=True, latency=0.005)
    queue = DeliveryQueue(sender, max_concurrency=10, retry_attempts=3, retry_delay=0.001)
    entries = [queue.enqueue(event_factory(i)) for i in range(50)]

    queue.start()
    await settle(queue)

    assert sender.peak == 10
    assert queue.max_in_flight_observed == 10
    assert len(sender.sent) == 150
    assert queue.failed_attempts == 150
    assert queue.dropped_count == 50
    assert queue.delivered_count == 0
    assert all(e.state == DeliveryState.DROPPED and e.attempt_count == 3 for e in entries)


@pytest.mark.asyncio
async def test_retry_then_success(event_factory):
    sender = RecordingSender(failures=2)
    queue = DeliveryQueue(sender, retry_attempts=3, retry_delay=0.001)
    queue.start()

    entry = queue.enqueue(event_factory(1))
    await settle(queue)

    assert entry.state == DeliveryState.DELIVERED
    assert entry.attempt_count == 3
    assert queue.failed_attempts == 2
    assert queue.dropped_count == 0
    assert queue.delivered_count == 1


@pytest.mark.asyncio
async def test_backoff_waits_between_attempts(event_factory):
    sender = RecordingSender(always_fail=True)
    queue = DeliveryQueue(sender, retry_attempts=3, retry_delay=0.02)
    queue.start()

    queue.enqueue(event_factory(1))
    await settle(queue)

    first, second, third = sender.attempt_times
    assert second - first >= 0.018
    assert third - second >= 0.038


@pytest.mark.asyncio
async def test_entries_in_backoff_do_not_hold_a_slot(event_factory):
    # One slot: while the first event backs off for a long time the second is delivered
    sender = RecordingSender(failures=1)
    queue = DeliveryQueue(sender, max_concurrency=1, retry_attempts=2, retry_delay=0.2)
    queue.start()

    first = queue.enqueue(event_factory(1))
    second = queue.enqueue(event_factory(2))
    await asyncio.sleep(0.05)

    assert first.state == DeliveryState.RETRYING
    assert second.state == DeliveryState.RETRYING
    assert second.attempt_count == 1
    await settle(queue)
    assert first.state == DeliveryState.DELIVERED
    assert second.state == DeliveryState.DELIVERED


@pytest.mark.asyncio
async def test_retag_rewrites_waiting_entries(event_factory):
    gate = asyncio.Event()
    sender = RecordingSender(gate=gate)
    queue = DeliveryQueue(sender, max_concurrency=1)
    for i in range(3):
        queue.enqueue(event_factory(i, user_id='anon_abc'))
    queue.start()
    await asyncio.sleep(0)

    assert queue.in_flight_count == 1
    assert queue.retag('customer-1') == 2

    gate.set()
    await settle(queue)

    assert [e.user_id for e in sender.sent] == ['anon_abc', 'customer-1', 'customer-1']


@pytest.mark.asyncio
async def test_retag_before_start_rewrites_buffered_entries(event_factory):
    sender = RecordingSender()
    queue = DeliveryQueue(sender)
    queue.enqueue(event_factory(1, user_id='anon_abc'))
    queue.enqueue(event_factory(2, user_id='anon_abc'))

    assert queue.retag('customer-1') == 2

    queue.start()
    await settle(queue)
    assert {e.user_id for e in sender.sent} == {'customer-1'}


@pytest.mark.asyncio
async def test_in_flight_entry_is_retagged_when_it_comes_back_for_retry(event_factory):
    gate = asyncio.Event()
    sender = RecordingSender(failures=1, gate=gate)
    queue = DeliveryQueue(sender, max_concurrency=1, retry_attempts=2, retry_delay=0.001)
    queue.start()
    queue.enqueue(event_factory(1, user_id='anon_abc'))
    await asyncio.sleep(0)

    assert queue.retag('customer-1') == 0

    gate.set()
    await settle(queue)

    assert [e.user_id for e in sender.sent] == ['anon_abc', 'customer-1']
    assert queue.delivered_count == 1


@pytest.mark.asyncio
async def test_close_abandons_entries_in_backoff(event_factory):
    sender = RecordingSender(always_fail=True)
    queue = DeliveryQueue(sender, retry_attempts=3, retry_delay=10.0)
    queue.start()
    queue.enqueue(event_factory(1))
    for _ in range(20):
        if queue.retrying_count:
            break
        await asyncio.sleep(0.005)

    assert queue.retrying_count == 1

    queue.close()
    await settle(queue, timeout=1.0)

    assert queue.retrying_count == 0
    assert len(sender.sent) == 1
    assert queue.enqueue(event_factory(2)) is None


@pytest.mark.asyncio
async def test_close_lets_in_flight_send_finish_without_retry(event_factory):
    gate = asyncio.Event()
    sender = RecordingSender(always_fail=True, gate=gate)
    queue = DeliveryQueue(sender, retry_attempts=3, retry_delay=0.001)
    queue.start()
    entry = queue.enqueue(event_factory(1))
    await asyncio.sleep(0)

    queue.close()
    gate.set()
    await settle(queue)

    assert entry.state == DeliveryState.DROPPED
    assert len(sender.sent) == 1
