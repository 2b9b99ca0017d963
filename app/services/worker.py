# app/services/worker.py
import asyncio
from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.models.batch import (
    BatchItem,
    INSUFFICIENT_CREDITS_MESSAGE,
    ITEM_STATUS_PROCESSING,
    ITEM_STATUS_QUEUED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)
from app.models.style import StyleConfiguration, style_adapter
from app.services.batch_service import BatchService
from app.services.credits import CreditLedger
from app.services.dispatcher import DispatchMessage
from app.services.generation import (
    CaptionWriter,
    GenerationError,
    ImageGenerator,
    build_generation_request,
)
from app.services.presets import moodboard_note
from app.services.store import StudioStore

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = "Interrupted before completion"


class BatchWorker:
    """Drives the items of one batch job through debit, generation and persistence"""

    def __init__(
        self,
        store: StudioStore,
        service: BatchService,
        ledger: CreditLedger,
        generator: ImageGenerator,
        caption_writer: Optional[CaptionWriter] = None,
        pacing_seconds: Optional[float] = None,
        generation_timeout: Optional[float] = None,
    ):
        self.store = store
        self.service = service
        self.ledger = ledger
        self.generator = generator
        self.caption_writer = caption_writer
        self.pacing_seconds = pacing_seconds if pacing_seconds is not None else settings.ITEM_PACING_SECONDS
        self.generation_timeout = (
            generation_timeout if generation_timeout is not None else settings.GENERATION_TIMEOUT_SECONDS
        )

    async def run(self, message: DispatchMessage) -> None:
        """Dispatcher entry point"""
        await self.process_batch_job(
            message.batch_job_id,
            message.user_id,
            message.preset_id,
            resume=message.attempt > 1,
        )

    async def give_up(self, message: DispatchMessage, error: Exception) -> None:
        """Surface a job whose dispatch attempts are exhausted"""
        if not await self.service.mark_failed_to_start(message.batch_job_id):
            await self.service.abort_job(message.batch_job_id, f"dispatch failed: {error}")

    async def process_batch_job(
        self,
        batch_job_id: str,
        user_id: str,
        preset_id: Optional[str] = None,
        resume: bool = False,
    ) -> None:
        """
        Process every queued item of a batch job, in submission order

        Item failures are recorded and the loop moves on; only running out of
        credits stops the batch early. Exceptions escaping this method are
        infrastructure failures and are retried by the dispatcher.

        Args:
            batch_job_id: Job to process
            user_id: Owner, charged for each item
            preset_id: Preset the job was created from, for its moodboard note
            resume: Redelivery of a job a previous worker started
        """
        job = await self.store.get_batch_job(batch_job_id)
        if job is None:
            logger.error(f"[Batch-{batch_job_id}] Batch job not found")
            return

        if job.status == JOB_STATUS_PENDING:
            if not await self.service.start_job(batch_job_id):
                logger.info(f"[Batch-{batch_job_id}] No longer pending, skipping")
                return
        elif job.status == JOB_STATUS_PROCESSING and resume:
            logger.warning(f"[Batch-{batch_job_id}] Resuming after an interrupted run")
        else:
            logger.info(f"[Batch-{batch_job_id}] Status is {job.status}, nothing to do")
            return

        style: StyleConfiguration = style_adapter.validate_python(job.style_settings)
        note = moodboard_note(preset_id or job.preset_id)
        brand = await self.store.get_default_brand(user_id)

        items = await self.store.get_batch_items(batch_job_id)
        if resume:
            for item in items:
                if item.status == ITEM_STATUS_PROCESSING:
                    await self.service.fail_item(item, INTERRUPTED_MESSAGE)

        pending = [item for item in items if item.status == ITEM_STATUS_QUEUED]
        logger.info(f"[Batch-{batch_job_id}] Processing {len(pending)} generations")

        for index, item in enumerate(pending):
            current = await self.store.get_batch_job(batch_job_id)
            if current is None or current.status != JOB_STATUS_PROCESSING:
                logger.info(f"[Batch-{batch_job_id}] Job is {current.status if current else 'gone'}, stopping")
                break

            should_continue = await self._process_item(item, user_id, style, note, brand)
            if not should_continue:
                await self.service.abort_job(batch_job_id, INSUFFICIENT_CREDITS_MESSAGE)
                break

            # Rate limit: wait between generations
            if index < len(pending) - 1 and self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)

        await self.service.evaluate_completion(batch_job_id)
        logger.info(f"[Batch-{batch_job_id}] Worker finished")

    async def _process_item(
        self,
        item: BatchItem,
        user_id: str,
        style: StyleConfiguration,
        note: Optional[str],
        brand: Optional[dict],
    ) -> bool:
        """Run one item. Returns False when the batch must stop (credits exhausted)."""
        batch_tag = f"[Batch-{item.batch_job_id}]"

        if not await self.service.mark_item_processing(item):
            logger.info(f"{batch_tag} Item {item.id} already handled, skipping")
            return True

        try:
            product = await self.store.get_product(item.product_id)
            if product is None:
                await self.service.fail_item(item, "Product not found")
                return True

            debit = await self.ledger.debit(
                user_id,
                item.credits_cost,
                ref_id=item.id,
                reason="batch_generation",
                description=f"Batch generation (Job: {item.batch_job_id})",
            )
            if not debit.success:
                await self.service.fail_item(item, INSUFFICIENT_CREDITS_MESSAGE)
                logger.warning(f"{batch_tag} Insufficient credits, stopping batch")
                return False

            request = build_generation_request(product, style, user_id, moodboard_note=note, brand=brand)
            try:
                result = await asyncio.wait_for(self.generator.generate(request), timeout=self.generation_timeout)
            except asyncio.TimeoutError:
                raise GenerationError(f"Generation timed out after {self.generation_timeout:.0f}s")

            caption = await self._write_caption(item, product, brand, result.output_url)
            await self.service.complete_item(item, result.output_url, caption)
            logger.info(f"{batch_tag} Generation completed: {item.id}")

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"{batch_tag} Generation failed for item {item.id}: {message}")
            await self.service.fail_item(item, message)

        return True

    async def _write_caption(
        self,
        item: BatchItem,
        product: dict,
        brand: Optional[dict],
        output_url: str,
    ) -> Optional[str]:
        """Caption in the brand voice; failures never fail the item"""
        if self.caption_writer is None or not brand or not brand.get("voice"):
            return None
        try:
            return await self.caption_writer.write_caption(product, brand["voice"], output_url)
        except Exception as e:
            logger.warning(f"[Batch-{item.batch_job_id}] Caption generation failed for item {item.id}: {e}")
            return None
