# scripts/start_batch_worker.py
"""
Standalone batch worker for the durable dispatcher

Claims batch jobs from the dispatch_queue table and runs them until
interrupted. Run as many as the generation backend's rate limit allows.

Usage:
    DISPATCHER_BACKEND=durable python scripts/start_batch_worker.py
    python scripts/start_batch_worker.py --poll-interval 0.5
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.services.batch_service import BatchService
from app.services.credits import CreditLedger
from app.services.dispatcher import DurableDispatcher, DurableQueueConsumer
from app.services.generation import HttpCaptionWriter, HttpImageGenerator
from app.services.store import StudioStore
from app.services.worker import BatchWorker

logger = get_logger("batch_worker")


async def run_worker(poll_interval: float) -> None:
    store = StudioStore(str(settings.database_path))
    await store.connect()

    ledger = CreditLedger(store)
    dispatcher = DurableDispatcher(store)
    service = BatchService(store, ledger, dispatcher=dispatcher)
    generator = HttpImageGenerator(
        settings.GENERATION_API_URL,
        settings.GENERATION_API_KEY,
        timeout=settings.GENERATION_TIMEOUT_SECONDS,
    )
    caption_writer = (
        HttpCaptionWriter(settings.CAPTION_API_URL, settings.GENERATION_API_KEY)
        if settings.CAPTION_API_URL else None
    )
    worker = BatchWorker(store, service, ledger, generator, caption_writer)
    consumer = DurableQueueConsumer(dispatcher, worker.run, worker.give_up, poll_interval=poll_interval)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, consumer.stop)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    try:
        await consumer.run_forever()
    finally:
        await generator.close()
        if caption_writer is not None:
            await caption_writer.close()
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Run the durable batch worker")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=settings.WORKER_POLL_INTERVAL_SECONDS,
        help="Seconds to wait when the queue is empty"
    )
    args = parser.parse_args()

    setup_logging("worker.log")
    logger.info(f"Batch worker using database {settings.DATABASE_PATH}")

    try:
        asyncio.run(run_worker(args.poll_interval))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
