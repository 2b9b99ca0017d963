# app/services/batch_service.py
from typing import List, Optional

from app.core.config import settings
from app.core.exceptions import (
    BatchJobNotFound,
    DispatchError,
    InsufficientCredits,
    InvalidBatchRequest,
    UnauthorizedOrNotFound,
)
from app.core.logging import get_logger
from app.models.batch import (
    BatchItem,
    BatchJob,
    BatchJobSummary,
    BatchProgress,
    CANCELLED_MESSAGE,
    ITEM_STATUS_QUEUED,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PARTIAL,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)
from app.models.style import StyleConfiguration
from app.services.credits import CreditLedger
from app.services.store import StudioStore, new_id, utcnow

logger = get_logger(__name__)


def final_status(success_count: int, failed_count: int) -> str:
    """Terminal status of a fully processed batch"""
    if success_count == 0:
        return JOB_STATUS_FAILED
    if failed_count == 0:
        return JOB_STATUS_COMPLETED
    return JOB_STATUS_PARTIAL


class BatchService:
    """Batch job lifecycle: creation, item transitions, completion, progress, cancellation"""

    def __init__(
        self,
        store: StudioStore,
        ledger: CreditLedger,
        dispatcher=None,
        per_item_cost: Optional[int] = None,
        max_batch_size: Optional[int] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.per_item_cost = per_item_cost if per_item_cost is not None else settings.PER_ITEM_COST
        self.max_batch_size = max_batch_size if max_batch_size is not None else settings.MAX_BATCH_SIZE

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_batch_job(
        self,
        user_id: str,
        product_ids: List[str],
        style: StyleConfiguration,
        preset_id: Optional[str] = None,
    ) -> BatchJob:
        """
        Validate, persist and dispatch a new batch job

        Nothing is persisted unless every check passes. Credits are only
        checked here; each item is debited when the worker reaches it.

        Raises:
            InvalidBatchRequest: Empty, oversized or duplicated product list
            UnauthorizedOrNotFound: A product is unknown or not owned by the user
            InsufficientCredits: Balance below the batch estimate
            DispatchError: The job could not be handed to the dispatcher
        """
        if not product_ids:
            raise InvalidBatchRequest("productIds array is required")
        if len(product_ids) > self.max_batch_size:
            raise InvalidBatchRequest(f"Maximum {self.max_batch_size} products per batch")
        if len(set(product_ids)) != len(product_ids):
            raise InvalidBatchRequest("productIds must not contain duplicates")

        owned = await self.store.owned_product_ids(user_id, product_ids)
        if len(owned) != len(product_ids):
            missing = [pid for pid in product_ids if pid not in owned]
            logger.warning(f"User {user_id} submitted unowned or unknown products: {missing}")
            raise UnauthorizedOrNotFound()

        needed = len(product_ids) * self.per_item_cost
        available = await self.ledger.get_balance(user_id)
        if available < needed:
            raise InsufficientCredits(needed=needed, available=available)

        now = utcnow()
        job = BatchJob(
            id=new_id(),
            user_id=user_id,
            product_ids=list(product_ids),
            style_settings=style.model_dump(by_alias=True, exclude_none=True),
            preset_id=preset_id,
            status=JOB_STATUS_PENDING,
            total_products=len(product_ids),
            estimated_credits=needed,
            created_at=now,
        )
        items = [
            BatchItem(
                id=new_id(),
                batch_job_id=job.id,
                product_id=product_id,
                position=position,
                status=ITEM_STATUS_QUEUED,
                credits_cost=self.per_item_cost,
                created_at=now,
            )
            for position, product_id in enumerate(product_ids)
        ]
        await self.store.insert_batch_job(job, items)
        logger.info(f"[Batch-{job.id}] Created for user {user_id}: {job.total_products} products, "
                    f"estimated {job.estimated_credits} credits")

        if self.dispatcher is not None:
            try:
                await self.dispatcher.enqueue(job.id, user_id, preset_id)
            except Exception as e:
                logger.error(f"[Batch-{job.id}] Dispatch failed: {e}")
                await self.mark_failed_to_start(job.id)
                raise DispatchError(f"Failed to schedule batch job: {e}")

        if preset_id:
            await self.store.increment_preset_usage(preset_id)

        return job

    # ------------------------------------------------------------------
    # Item state machine
    # ------------------------------------------------------------------

    async def start_job(self, batch_job_id: str) -> bool:
        """pending -> processing"""
        started = await self.store.start_batch_job(batch_job_id)
        if started:
            logger.info(f"[Batch-{batch_job_id}] Processing started")
        return started

    async def mark_item_processing(self, item: BatchItem) -> bool:
        """queued -> processing; False if the item already left queued"""
        return await self.store.mark_item_processing(item.id)

    async def complete_item(self, item: BatchItem, output_url: str, caption: Optional[str] = None) -> bool:
        """processing -> completed, then evaluate batch completion"""
        applied = await self.store.complete_item(item, output_url, caption)
        if not applied:
            logger.warning(f"[Batch-{item.batch_job_id}] Ignored completion of item {item.id}: not processing")
            return False
        await self.evaluate_completion(item.batch_job_id)
        return True

    async def fail_item(self, item: BatchItem, error_message: str) -> bool:
        """queued|processing -> failed, then evaluate batch completion"""
        applied = await self.store.fail_item(item, error_message)
        if not applied:
            logger.warning(f"[Batch-{item.batch_job_id}] Ignored failure of item {item.id}: already terminal")
            return False
        await self.evaluate_completion(item.batch_job_id)
        return True

    async def evaluate_completion(self, batch_job_id: str) -> Optional[str]:
        """
        Finalize the job once every item is processed

        Safe to call any number of times: the job only leaves ``processing``
        once and ``completed_at`` is never re-stamped.

        Returns:
            The status the job was moved to, or None if nothing changed
        """
        job = await self.store.get_batch_job(batch_job_id)
        if job is None or job.status != JOB_STATUS_PROCESSING:
            return None
        if job.processed_count < job.total_products:
            return None

        status = final_status(job.success_count, job.failed_count)
        if await self.store.finalize_batch_job(job, status):
            logger.info(f"[Batch-{batch_job_id}] Complete: {job.success_count}/{job.total_products} "
                        f"successful, status={status}")
            return status
        return None

    async def abort_job(self, batch_job_id: str, reason: str) -> Optional[str]:
        """Finalize a processing job early, leaving its unstarted items queued"""
        job = await self.store.get_batch_job(batch_job_id)
        if job is None or job.status != JOB_STATUS_PROCESSING:
            return None

        status = final_status(job.success_count, job.failed_count)
        if await self.store.finalize_batch_job(job, status):
            logger.warning(f"[Batch-{batch_job_id}] Aborted ({reason}) after {job.processed_count}/"
                           f"{job.total_products} items, status={status}")
            return status
        return None

    async def mark_failed_to_start(self, batch_job_id: str) -> bool:
        """pending -> failed when the job could never be dispatched"""
        job = await self.store.get_batch_job(batch_job_id)
        if job is None or job.status != JOB_STATUS_PENDING:
            return False
        marked = await self.store.finalize_batch_job(job, JOB_STATUS_FAILED, from_statuses=(JOB_STATUS_PENDING,))
        if marked:
            logger.error(f"[Batch-{batch_job_id}] Failed to start, operator attention required")
        return marked

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def get_job(self, batch_job_id: str, user_id: Optional[str] = None) -> BatchJob:
        job = await self.store.get_batch_job(batch_job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            raise BatchJobNotFound(batch_job_id)
        return job

    async def get_progress(self, batch_job_id: str, user_id: Optional[str] = None) -> BatchProgress:
        """Current counters plus per-item statuses, read straight from the store"""
        job = await self.get_job(batch_job_id, user_id)
        generations = await self.store.get_item_statuses(batch_job_id)
        percent = int(job.processed_count * 100 / job.total_products) if job.total_products else 0

        return BatchProgress(
            id=job.id,
            status=job.status,
            total_products=job.total_products,
            processed_count=job.processed_count,
            success_count=job.success_count,
            failed_count=job.failed_count,
            estimated_credits=job.estimated_credits,
            used_credits=job.used_credits,
            percent=percent,
            created_at=job.created_at,
            completed_at=job.completed_at,
            generations=generations,
        )

    async def list_jobs(self, user_id: str, limit: int = 20, offset: int = 0) -> List[BatchJobSummary]:
        """The user's batch jobs, newest first"""
        jobs = await self.store.list_batch_jobs(user_id, limit=limit, offset=offset)
        return [
            BatchJobSummary.model_validate(job.model_dump(include=set(BatchJobSummary.model_fields)))
            for job in jobs
        ]

    async def count_jobs(self, user_id: str) -> int:
        return await self.store.count_batch_jobs(user_id)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, batch_job_id: str, user_id: Optional[str] = None) -> bool:
        """
        Best-effort stop of a batch job

        Queued items fail with "Cancelled by user"; items already being
        generated are left to finish. The job is forced to ``failed`` even
        if some items succeeded. A ``partial`` job stopped by credit
        exhaustion can still be cancelled to drop its leftover queued items.

        Returns:
            False if the job is already completed or failed
        """
        await self.get_job(batch_job_id, user_id)

        cancelled = await self.store.cancel_batch_job(
            batch_job_id, CANCELLED_MESSAGE, (JOB_STATUS_COMPLETED, JOB_STATUS_FAILED)
        )
        if cancelled is None:
            logger.info(f"[Batch-{batch_job_id}] Cancel refused: already finished")
            return False

        logger.info(f"[Batch-{batch_job_id}] Cancelled, {cancelled} queued items dropped")
        return True
