# app/api/v1/endpoints/batch.py
from fastapi import APIRouter, Depends, Query, status
from app.api.deps import get_batch_service, get_current_active_user, get_dispatcher, get_style_resolver
from app.models.auth import User
from app.models.batch import (
    BatchCreateRequest,
    BatchCreateResponse,
    BatchListResponse,
    BatchProgress,
    CancelResponse,
    QueueStats,
)
from app.services.batch_service import BatchService
from app.services.presets import StyleResolver
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("", response_model=BatchCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_batch(
    body: BatchCreateRequest,
    current_user: User = Depends(get_current_active_user),
    resolver: StyleResolver = Depends(get_style_resolver),
    service: BatchService = Depends(get_batch_service),
):
    """
    Create a batch job applying one style to several products

    **Authentication Required:** Include Bearer token in Authorization header

    **Body:**
    - `productIds`: 1 to 20 product ids, processed in this order
    - `styleSettings`: explicit style configuration
    - `presetId`: preset to apply; wins over `styleSettings` when both are sent

    **Errors:** 400 invalid input, 402 insufficient credits, 404 unknown product or preset

    **Example using curl:**
    ```bash
    curl -X POST "http://localhost:8000/api/v1/batch" \\
      -H "Authorization: Bearer YOUR_TOKEN" \\
      -H "Content-Type: application/json" \\
      -d '{"productIds": ["p1", "p2"], "presetId": "marketplace-ready"}'
    ```
    """
    logger.info(
        f"User {current_user.username} creating batch: {len(body.product_ids)} products, "
        f"preset={body.preset_id}"
    )

    style, preset = resolver.resolve(body.style_settings, body.preset_id)
    job = await service.create_batch_job(
        current_user.id,
        body.product_ids,
        style,
        preset_id=preset.id if preset else None,
    )

    return BatchCreateResponse(
        batch_job_id=job.id,
        status=job.status,
        total_products=job.total_products,
        estimated_credits=job.estimated_credits,
    )


@router.get("", response_model=BatchListResponse)
async def list_batches(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_active_user),
    service: BatchService = Depends(get_batch_service),
):
    """List the caller's batch jobs, newest first"""
    jobs = await service.list_jobs(current_user.id, limit=limit, offset=offset)
    total = await service.count_jobs(current_user.id)
    return BatchListResponse(batch_jobs=jobs, total=total, limit=limit, offset=offset)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(
    current_user: User = Depends(get_current_active_user),
    dispatcher=Depends(get_dispatcher),
):
    """Dispatcher backend and its waiting/active/completed/failed counts"""
    return await dispatcher.stats()


@router.get("/{batch_job_id}", response_model=BatchProgress)
async def get_batch(
    batch_job_id: str,
    current_user: User = Depends(get_current_active_user),
    service: BatchService = Depends(get_batch_service),
):
    """
    Poll a batch job

    Returns job counters, a completion percentage and the status of every
    generation, including per-item error messages.
    """
    return await service.get_progress(batch_job_id, current_user.id)


@router.post("/{batch_job_id}/cancel", response_model=CancelResponse)
async def cancel_batch(
    batch_job_id: str,
    current_user: User = Depends(get_current_active_user),
    service: BatchService = Depends(get_batch_service),
):
    """
    Best-effort cancel

    Generations not yet started are dropped; ones already running finish.
    `success` is false if the job had already finished.
    """
    logger.info(f"User {current_user.username} cancelling batch {batch_job_id}")
    success = await service.cancel(batch_job_id, current_user.id)
    return CancelResponse(success=success)
