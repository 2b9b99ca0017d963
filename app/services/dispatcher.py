"""Decouples "a batch job exists" from "a batch job runs".

Two implementations, picked by ``DISPATCHER_BACKEND``:

* ``InProcessDispatcher`` runs the worker as an asyncio task inside the API
  process. Only safe for a single-instance deployment: queued work is lost
  if the process dies and nothing stops two instances from racing.
* ``DurableDispatcher`` writes the job to the ``dispatch_queue`` table; one
  or more worker processes (``scripts/start_batch_worker.py``) claim rows
  with a conditional update and run them. Redelivery after a crash is
  at-least-once; the item state machine tolerates duplicates.

Both retry a failing run with exponential backoff up to a fixed number of
attempts, after which the job is surfaced as failed-to-start.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol

from app.core.config import settings
from app.core.logging import get_logger
from app.models.batch import QueueStats
from app.services.store import StudioStore, utcnow

logger = get_logger(__name__)

QUEUE_NAME = "studio:batch-generation"

DISPATCH_WAITING = "waiting"
DISPATCH_ACTIVE = "active"
DISPATCH_COMPLETED = "completed"
DISPATCH_FAILED = "failed"


@dataclass
class DispatchMessage:
    batch_job_id: str
    user_id: str
    preset_id: Optional[str] = None
    attempt: int = 1

    @property
    def key(self) -> str:
        return f"batch-{self.batch_job_id}"


# Runs one batch job; raises only on infrastructure failures
JobRunner = Callable[[DispatchMessage], Awaitable[None]]
# Called once a job exhausted its attempts
GiveUpHandler = Callable[[DispatchMessage, Exception], Awaitable[None]]


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.DISPATCH_MAX_ATTEMPTS,
            backoff_base_seconds=settings.DISPATCH_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.DISPATCH_BACKOFF_MAX_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after failed attempt number ``attempt`` (1-based)"""
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** (attempt - 1)))


class Dispatcher(Protocol):
    backend: str

    async def enqueue(self, batch_job_id: str, user_id: str, preset_id: Optional[str] = None) -> str: ...

    async def stats(self) -> QueueStats: ...

    async def close(self) -> None: ...


class InProcessDispatcher:
    """Runs each batch job as a task on the current event loop"""
    backend = "inprocess"

    def __init__(self, runner: JobRunner, on_give_up: GiveUpHandler, retry: Optional[RetryPolicy] = None):
        self.runner = runner
        self.on_give_up = on_give_up
        self.retry = retry or RetryPolicy.from_settings()
        # Keep references to background tasks to prevent garbage collection
        self._tasks: Dict[str, asyncio.Task] = {}
        self._completed = 0
        self._failed = 0

    async def enqueue(self, batch_job_id: str, user_id: str, preset_id: Optional[str] = None) -> str:
        message = DispatchMessage(batch_job_id=batch_job_id, user_id=user_id, preset_id=preset_id)
        if message.key in self._tasks:
            logger.info(f"[BATCH_QUEUE] {message.key} already scheduled")
            return message.key

        task = asyncio.create_task(self._run(message))
        self._tasks[message.key] = task
        task.add_done_callback(lambda _: self._tasks.pop(message.key, None))
        logger.info(f"[BATCH_QUEUE] Scheduled {message.key} in process")
        return message.key

    async def _run(self, message: DispatchMessage) -> None:
        while True:
            try:
                await self.runner(message)
                self._completed += 1
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if message.attempt >= self.retry.max_attempts:
                    logger.error(f"[BATCH_QUEUE] {message.key} failed after {message.attempt} attempts: {e}")
                    self._failed += 1
                    await self.on_give_up(message, e)
                    return
                delay = self.retry.delay_for(message.attempt)
                logger.warning(f"[BATCH_QUEUE] {message.key} attempt {message.attempt} failed: {e}; "
                               f"retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                message.attempt += 1

    async def join(self) -> None:
        """Wait for every scheduled job to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def stats(self) -> QueueStats:
        return QueueStats(
            backend=self.backend,
            waiting=0,
            active=len(self._tasks),
            completed=self._completed,
            failed=self._failed,
        )

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class DurableDispatcher:
    """Queue persisted in the ``dispatch_queue`` table"""
    backend = "durable"

    def __init__(self, store: StudioStore, retry: Optional[RetryPolicy] = None):
        self.store = store
        self.retry = retry or RetryPolicy.from_settings()

    async def enqueue(self, batch_job_id: str, user_id: str, preset_id: Optional[str] = None) -> str:
        message = DispatchMessage(batch_job_id=batch_job_id, user_id=user_id, preset_id=preset_id)
        now = utcnow().isoformat()
        async with self.store.transaction() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO dispatch_queue (id, batch_job_id, user_id, preset_id, status, "
                "attempts, max_attempts, available_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?)",
                (message.key, batch_job_id, user_id, preset_id, DISPATCH_WAITING,
                 self.retry.max_attempts, time.time(), now, now),
            )
        if cursor.rowcount == 0:
            logger.info(f"[BATCH_QUEUE] {message.key} already enqueued")
        else:
            logger.info(f"[BATCH_QUEUE] Enqueued {message.key}")
        return message.key

    async def claim_next(self) -> Optional[DispatchMessage]:
        """Atomically take the oldest available waiting job"""
        now = time.time()
        async with self.store.transaction() as db:
            async with db.execute(
                "SELECT * FROM dispatch_queue WHERE status = ? AND available_at <= ? "
                "ORDER BY available_at, created_at LIMIT 1",
                (DISPATCH_WAITING, now),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            cursor = await db.execute(
                "UPDATE dispatch_queue SET status = ?, attempts = attempts + 1, claimed_at = ?, "
                "updated_at = ? WHERE id = ? AND status = ?",
                (DISPATCH_ACTIVE, now, utcnow().isoformat(), row["id"], DISPATCH_WAITING),
            )
            if cursor.rowcount != 1:
                return None

        return DispatchMessage(
            batch_job_id=row["batch_job_id"],
            user_id=row["user_id"],
            preset_id=row["preset_id"],
            attempt=row["attempts"] + 1,
        )

    async def mark_completed(self, message: DispatchMessage) -> None:
        async with self.store.transaction() as db:
            await db.execute(
                "UPDATE dispatch_queue SET status = ?, last_error = NULL, updated_at = ? WHERE id = ?",
                (DISPATCH_COMPLETED, utcnow().isoformat(), message.key),
            )

    async def mark_attempt_failed(self, message: DispatchMessage, error: Exception) -> bool:
        """
        Record a failed run

        Returns:
            True if the job was rescheduled, False if it exhausted its attempts
        """
        retry = message.attempt < self.retry.max_attempts
        status = DISPATCH_WAITING if retry else DISPATCH_FAILED
        available_at = time.time() + self.retry.delay_for(message.attempt) if retry else time.time()
        async with self.store.transaction() as db:
            await db.execute(
                "UPDATE dispatch_queue SET status = ?, available_at = ?, last_error = ?, updated_at = ? "
                "WHERE id = ?",
                (status, available_at, str(error), utcnow().isoformat(), message.key),
            )
        return retry

    async def heartbeat(self, message: DispatchMessage) -> bool:
        """Refresh the claim on a job that is still running"""
        async with self.store.transaction() as db:
            cursor = await db.execute(
                "UPDATE dispatch_queue SET claimed_at = ?, updated_at = ? WHERE id = ? AND status = ?",
                (time.time(), utcnow().isoformat(), message.key, DISPATCH_ACTIVE),
            )
            return cursor.rowcount == 1

    async def recover_stale(self, stale_after_seconds: float) -> int:
        """Return jobs claimed by a worker that died back to the waiting state

        A live worker refreshes ``claimed_at`` through :meth:`heartbeat`, so
        only claims older than ``stale_after_seconds`` without a heartbeat
        are recovered.
        """
        cutoff = time.time() - stale_after_seconds
        async with self.store.transaction() as db:
            cursor = await db.execute(
                "UPDATE dispatch_queue SET status = ?, available_at = ?, updated_at = ? "
                "WHERE status = ? AND claimed_at < ?",
                (DISPATCH_WAITING, time.time(), utcnow().isoformat(), DISPATCH_ACTIVE, cutoff),
            )
            recovered = cursor.rowcount
        if recovered:
            logger.warning(f"[BATCH_QUEUE] Recovered {recovered} stale jobs")
        return recovered

    async def stats(self) -> QueueStats:
        counts = {DISPATCH_WAITING: 0, DISPATCH_ACTIVE: 0, DISPATCH_COMPLETED: 0, DISPATCH_FAILED: 0}
        async with self.store.db.execute(
            "SELECT status, COUNT(*) AS n FROM dispatch_queue GROUP BY status"
        ) as cursor:
            for row in await cursor.fetchall():
                counts[row["status"]] = row["n"]
        return QueueStats(
            backend=self.backend,
            waiting=counts[DISPATCH_WAITING],
            active=counts[DISPATCH_ACTIVE],
            completed=counts[DISPATCH_COMPLETED],
            failed=counts[DISPATCH_FAILED],
        )

    async def close(self) -> None:
        return None


class DurableQueueConsumer:
    """Worker-side loop that drains a DurableDispatcher"""

    def __init__(
        self,
        dispatcher: DurableDispatcher,
        runner: JobRunner,
        on_give_up: GiveUpHandler,
        poll_interval: Optional[float] = None,
        stale_after_seconds: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.dispatcher = dispatcher
        self.runner = runner
        self.on_give_up = on_give_up
        self.poll_interval = poll_interval if poll_interval is not None else settings.WORKER_POLL_INTERVAL_SECONDS
        self.stale_after_seconds = (
            stale_after_seconds if stale_after_seconds is not None else settings.WORKER_STALE_AFTER_SECONDS
        )
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None else settings.WORKER_HEARTBEAT_SECONDS
        )
        self._stopping = asyncio.Event()

    async def run_once(self) -> bool:
        """Claim and run a single job. Returns False if the queue was empty."""
        message = await self.dispatcher.claim_next()
        if message is None:
            return False

        logger.info(f"[BATCH_WORKER] Claimed {message.key} (attempt {message.attempt})")
        try:
            await self._run_with_heartbeat(message)
        except Exception as e:
            logger.error(f"[BATCH_WORKER] {message.key} attempt {message.attempt} failed: {e}")
            if not await self.dispatcher.mark_attempt_failed(message, e):
                await self.on_give_up(message, e)
        else:
            await self.dispatcher.mark_completed(message)
            logger.info(f"[BATCH_WORKER] Job {message.key} completed")
        return True

    async def _run_with_heartbeat(self, message: DispatchMessage) -> None:
        task = asyncio.create_task(self.runner(message))
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.heartbeat_interval)
                if done:
                    break
                await self.dispatcher.heartbeat(message)
        finally:
            if not task.done():
                task.cancel()
        await task

    async def run_forever(self) -> None:
        await self.dispatcher.recover_stale(self.stale_after_seconds)
        logger.info(f"[BATCH_WORKER] Worker started on {QUEUE_NAME}")
        while not self._stopping.is_set():
            if await self.run_once():
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("[BATCH_WORKER] Worker stopped")

    def stop(self) -> None:
        self._stopping.set()
