# tests/test_dispatcher.py
import asyncio
import time

import pytest

from app.services.dispatcher import (
    DispatchMessage,
    DurableDispatcher,
    DurableQueueConsumer,
    InProcessDispatcher,
    RetryPolicy,
)


class FlakyRunner:
    """Fails the first ``failures`` runs, then succeeds"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = []

    async def __call__(self, message: DispatchMessage):
        self.attempts.append(message.attempt)
        if len(self.attempts) <= self.failures:
            raise ConnectionError("generation gateway unreachable")


class GiveUpRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, message, error):
        self.calls.append((message.batch_job_id, str(error)))


NO_WAIT = RetryPolicy(max_attempts=3, backoff_base_seconds=0, backoff_max_seconds=0)


def test_retry_policy_exponential_backoff_with_cap():
    policy = RetryPolicy(max_attempts=5, backoff_base_seconds=5, backoff_max_seconds=30)
    assert [policy.delay_for(n) for n in range(1, 6)] == [5, 10, 20, 30, 30]


@pytest.mark.asyncio
async def test_in_process_runs_job():
    runner, give_up = FlakyRunner(), GiveUpRecorder()
    dispatcher = InProcessDispatcher(runner, give_up, retry=NO_WAIT)

    key = await dispatcher.enqueue("job-1", "user-1")
    await dispatcher.join()

    assert key == "batch-job-1"
    assert runner.attempts == [1]
    stats = await dispatcher.stats()
    assert stats.backend == "inprocess"
    assert stats.completed == 1
    assert stats.active == 0


@pytest.mark.asyncio
async def test_in_process_retries_then_succeeds():
    runner, give_up = FlakyRunner(failures=2), GiveUpRecorder()
    dispatcher = InProcessDispatcher(runner, give_up, retry=NO_WAIT)

    await dispatcher.enqueue("job-1", "user-1")
    await dispatcher.join()

    assert runner.attempts == [1, 2, 3]
    assert give_up.calls == []


@pytest.mark.asyncio
async def test_in_process_gives_up_after_max_attempts():
    runner, give_up = FlakyRunner(failures=10), GiveUpRecorder()
    dispatcher = InProcessDispatcher(runner, give_up, retry=NO_WAIT)

    await dispatcher.enqueue("job-1", "user-1")
    await dispatcher.join()

    assert runner.attempts == [1, 2, 3]
    assert give_up.calls == [("job-1", "generation gateway unreachable")]
    assert (await dispatcher.stats()).failed == 1


@pytest.mark.asyncio
async def test_durable_enqueue_is_idempotent(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)

    await dispatcher.enqueue("job-1", "user-1", "marketplace-ready")
    await dispatcher.enqueue("job-1", "user-1", "marketplace-ready")

    stats = await dispatcher.stats()
    assert stats.backend == "durable"
    assert stats.waiting == 1


@pytest.mark.asyncio
async def test_durable_claim_is_exclusive(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    await dispatcher.enqueue("job-1", "user-1", "marketplace-ready")

    message = await dispatcher.claim_next()
    assert message.batch_job_id == "job-1"
    assert message.preset_id == "marketplace-ready"
    assert message.attempt == 1

    assert await dispatcher.claim_next() is None
    assert (await dispatcher.stats()).active == 1


@pytest.mark.asyncio
async def test_durable_consumer_runs_and_completes(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    runner, give_up = FlakyRunner(), GiveUpRecorder()
    consumer = DurableQueueConsumer(dispatcher, runner, give_up, poll_interval=0)
    await dispatcher.enqueue("job-1", "user-1")

    assert await consumer.run_once() is True
    assert await consumer.run_once() is False

    stats = await dispatcher.stats()
    assert stats.completed == 1
    assert stats.waiting == 0


@pytest.mark.asyncio
async def test_durable_consumer_retries_then_gives_up(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    runner, give_up = FlakyRunner(failures=10), GiveUpRecorder()
    consumer = DurableQueueConsumer(dispatcher, runner, give_up, poll_interval=0)
    await dispatcher.enqueue("job-1", "user-1")

    while await consumer.run_once():
        pass

    assert runner.attempts == [1, 2, 3]
    assert give_up.calls == [("job-1", "generation gateway unreachable")]
    stats = await dispatcher.stats()
    assert stats.failed == 1
    assert stats.waiting == 0


@pytest.mark.asyncio
async def test_durable_backoff_delays_next_attempt(store):
    dispatcher = DurableDispatcher(store, retry=RetryPolicy(max_attempts=3, backoff_base_seconds=60))
    await dispatcher.enqueue("job-1", "user-1")

    message = await dispatcher.claim_next()
    assert await dispatcher.mark_attempt_failed(message, RuntimeError("boom")) is True

    # rescheduled, but not available yet
    assert await dispatcher.claim_next() is None
    assert (await dispatcher.stats()).waiting == 1


@pytest.mark.asyncio
async def test_durable_recovers_stale_claims(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    await dispatcher.enqueue("job-1", "user-1")
    first = await dispatcher.claim_next()

    # the worker holding the claim died
    async with store.transaction() as db:
        await db.execute("UPDATE dispatch_queue SET claimed_at = ?", (time.time() - 3600,))

    assert await dispatcher.recover_stale(60) == 1
    redelivered = await dispatcher.claim_next()
    assert redelivered.batch_job_id == first.batch_job_id
    assert redelivered.attempt == 2


class BlockingRunner:
    """Runs until released, like a long batch still generating"""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.attempts = []

    async def __call__(self, message: DispatchMessage):
        self.attempts.append(message.attempt)
        self.started.set()
        await self.release.wait()


@pytest.mark.asyncio
async def test_running_job_is_not_reclaimed_by_second_worker(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    await dispatcher.enqueue("job-1", "user-1")
    runner = BlockingRunner()
    other_runner = FlakyRunner()
    first = DurableQueueConsumer(dispatcher, runner, GiveUpRecorder(), poll_interval=0, heartbeat_interval=0.01)
    second = DurableQueueConsumer(dispatcher, other_runner, GiveUpRecorder(), poll_interval=0)

    running = asyncio.create_task(first.run_once())
    await asyncio.wait_for(runner.started.wait(), timeout=5)

    # the job has been running for longer than the stale threshold
    async with store.transaction() as db:
        await db.execute("UPDATE dispatch_queue SET claimed_at = ?", (time.time() - 3600,))
    await asyncio.sleep(0.1)

    assert await dispatcher.recover_stale(60) == 0
    assert await second.run_once() is False
    assert other_runner.attempts == []

    runner.release.set()
    assert await asyncio.wait_for(running, timeout=5) is True
    assert runner.attempts == [1]
    stats = await dispatcher.stats()
    assert (stats.active, stats.completed) == (0, 1)


@pytest.mark.asyncio
async def test_heartbeat_only_touches_active_claims(store):
    dispatcher = DurableDispatcher(store, retry=NO_WAIT)
    await dispatcher.enqueue("job-1", "user-1")
    message = await dispatcher.claim_next()

    assert await dispatcher.heartbeat(message) is True
    await dispatcher.mark_completed(message)
    assert await dispatcher.heartbeat(message) is False
