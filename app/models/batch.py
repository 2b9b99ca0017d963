# app/models/batch.py
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


BatchStatus = Literal["pending", "processing", "completed", "failed", "partial"]
ItemStatus = Literal["queued", "processing", "completed", "failed"]

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"
JOB_STATUS_PARTIAL = "partial"

ITEM_STATUS_QUEUED = "queued"
ITEM_STATUS_PROCESSING = "processing"
ITEM_STATUS_COMPLETED = "completed"
ITEM_STATUS_FAILED = "failed"

CANCELLED_MESSAGE = "Cancelled by user"
INSUFFICIENT_CREDITS_MESSAGE = "Insufficient credits"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the web client"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchJob(CamelModel):
    """One user-initiated bulk request"""
    id: str
    user_id: str
    product_ids: List[str]
    style_settings: Dict[str, Any] = Field(description="Resolved style configuration")
    preset_id: Optional[str] = None
    status: BatchStatus
    total_products: int
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    estimated_credits: int
    used_credits: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BatchItem(CamelModel):
    """One product's unit of work within a batch job"""
    id: str
    batch_job_id: str
    product_id: str
    position: int
    status: ItemStatus
    output_url: Optional[str] = None
    caption: Optional[str] = None
    error_message: Optional[str] = None
    credits_cost: int
    created_at: datetime
    completed_at: Optional[datetime] = None


class BatchItemStatus(CamelModel):
    """Per-item view returned to polling clients"""
    id: str
    product_id: str
    product_name: Optional[str] = None
    product_thumbnail: Optional[str] = None
    status: ItemStatus
    output_url: Optional[str] = None
    caption: Optional[str] = None
    error_message: Optional[str] = None


class BatchProgress(CamelModel):
    """Job counters plus per-item statuses"""
    id: str
    status: BatchStatus
    total_products: int
    processed_count: int
    success_count: int
    failed_count: int
    estimated_credits: int
    used_credits: int
    percent: int = Field(description="Processed share of the batch, 0-100")
    created_at: datetime
    completed_at: Optional[datetime] = None
    generations: List[BatchItemStatus]


class BatchJobSummary(CamelModel):
    """Dashboard row for a batch job, without per-item detail"""
    id: str
    status: BatchStatus
    preset_id: Optional[str] = None
    total_products: int
    processed_count: int
    success_count: int
    failed_count: int
    used_credits: int
    created_at: datetime
    completed_at: Optional[datetime] = None


class BatchCreateRequest(CamelModel):
    """Body of POST /batch"""
    product_ids: List[str] = Field(description="Products to generate, in order")
    style_settings: Optional[Dict[str, Any]] = Field(None, description="Explicit style configuration")
    preset_id: Optional[str] = Field(None, description="Preset to apply instead of explicit settings")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "productIds": ["p1", "p2", "p3"],
                    "styleSettings": {
                        "presentation": "product_only",
                        "sceneType": "solid_color",
                        "solidColor": "#FFFFFF"
                    }
                }
            ]
        }
    )


class BatchCreateResponse(CamelModel):
    batch_job_id: str
    status: BatchStatus
    total_products: int
    estimated_credits: int
    message: str = "Batch job created. Poll /api/v1/batch/{id} for status."


class BatchListResponse(CamelModel):
    batch_jobs: List[BatchJobSummary]
    total: int
    limit: int
    offset: int


class CancelResponse(CamelModel):
    success: bool


class QueueStats(CamelModel):
    backend: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
