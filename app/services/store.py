"""SQLite-backed persistence for the batch engine.

Holds batch jobs and their items together with the records owned by the
engine's collaborators (users and their credit balance, brands, products,
credit debits, the durable dispatch queue). Every counter and status change
is a single SQL statement (``x = x + 1`` increments, status guards in the
``WHERE`` clause) so concurrent writers never lose updates.
"""
import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Set

import aiosqlite

from app.core.logging import get_logger
from app.models.batch import (
    BatchItem,
    BatchItemStatus,
    BatchJob,
    ITEM_STATUS_FAILED,
    ITEM_STATUS_PROCESSING,
    ITEM_STATUS_QUEUED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
)

logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    credit_units INTEGER NOT NULL DEFAULT 0 CHECK (credit_units >= 0),
    disabled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS brands (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    name TEXT NOT NULL,
    is_default INTEGER NOT NULL DEFAULT 0,
    voice TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS products (
    id TEXT PRIMARY KEY,
    user_id TEXT REFERENCES users(id),
    brand_id TEXT REFERENCES brands(id),
    name TEXT,
    image_url TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS credit_debits (
    ref_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    units INTEGER NOT NULL,
    reason TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS batch_jobs (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    product_ids TEXT NOT NULL,
    style_settings TEXT NOT NULL,
    preset_id TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    total_products INTEGER NOT NULL,
    processed_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    estimated_credits INTEGER NOT NULL,
    used_credits INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_batch_jobs_user_created
ON batch_jobs (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS batch_items (
    id TEXT PRIMARY KEY,
    batch_job_id TEXT NOT NULL REFERENCES batch_jobs(id) ON DELETE CASCADE,
    product_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued',
    output_url TEXT,
    caption TEXT,
    error_message TEXT,
    credits_cost INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_batch_items_job_position
ON batch_items (batch_job_id, position);

CREATE TABLE IF NOT EXISTS preset_usage (
    preset_id TEXT PRIMARY KEY,
    usage_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS dispatch_queue (
    id TEXT PRIMARY KEY,
    batch_job_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    preset_id TEXT,
    status TEXT NOT NULL DEFAULT 'waiting',
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL,
    available_at REAL NOT NULL,
    claimed_at REAL,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_dispatch_queue_status_available
ON dispatch_queue (status, available_at);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class StudioStore:
    """Async SQLite storage shared by the API process and batch workers."""

    def __init__(self, db_path: str):
        """Initialize the store with its database path.

        Args:
            db_path: Path to the SQLite file, or ``:memory:``. The parent
                     directory is created on connect.
        """
        self.db_path = db_path
        self.db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the connection, enable WAL and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(self.db_path, timeout=30)
        self.db.row_factory = aiosqlite.Row

        await self.db.execute("PRAGMA journal_mode=WAL")
        await self.db.execute("PRAGMA foreign_keys=ON")
        await self.db.executescript(SCHEMA)
        await self.db.commit()
        logger.info(f"Store connected: {self.db_path}")

    async def close(self) -> None:
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Store connection closed")

    def _conn(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a group of writes as one unit, committed on success."""
        db = self._conn()
        async with self._write_lock:
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            else:
                await db.commit()

    async def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        async with self._conn().execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, query: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        async with self._conn().execute(query, params) as cursor:
            return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Users, brands, products
    # ------------------------------------------------------------------

    async def create_user(
        self,
        username: str,
        password_hash: str,
        credit_units: int = 0,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        user_id = user_id or new_id()
        async with self.transaction() as db:
            await db.execute(
                "INSERT INTO users (id, username, password_hash, credit_units, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (user_id, username, password_hash, credit_units, utcnow().isoformat()),
            )
        logger.info(f"Created user {username} ({user_id})")
        return await self.get_user(user_id)

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return dict(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone("SELECT * FROM users WHERE username = ?", (username,))
        return dict(row) if row else None

    async def create_brand(
        self,
        user_id: str,
        name: str,
        is_default: bool = False,
        voice: Optional[str] = None,
        brand_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        brand_id = brand_id or new_id()
        async with self.transaction() as db:
            if is_default:
                await db.execute("UPDATE brands SET is_default = 0 WHERE user_id = ?", (user_id,))
            await db.execute(
                "INSERT INTO brands (id, user_id, name, is_default, voice, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (brand_id, user_id, name, int(is_default), voice, utcnow().isoformat()),
            )
        row = await self._fetchone("SELECT * FROM brands WHERE id = ?", (brand_id,))
        return dict(row)

    async def get_default_brand(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone(
            "SELECT * FROM brands WHERE user_id = ? AND is_default = 1 LIMIT 1", (user_id,)
        )
        return dict(row) if row else None

    async def create_product(
        self,
        image_url: str,
        name: Optional[str] = None,
        user_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        product_id = product_id or new_id()
        async with self.transaction() as db:
            await db.execute(
                "INSERT INTO products (id, user_id, brand_id, name, image_url, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (product_id, user_id, brand_id, name, image_url, utcnow().isoformat()),
            )
        return await self.get_product(product_id)

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        row = await self._fetchone("SELECT * FROM products WHERE id = ?", (product_id,))
        return dict(row) if row else None

    async def owned_product_ids(self, user_id: str, product_ids: Iterable[str]) -> Set[str]:
        """Return the subset of ``product_ids`` owned by the user, directly or via a brand."""
        ids = list(product_ids)
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        rows = await self._fetchall(
            f"""
            SELECT p.id FROM products p
            LEFT JOIN brands b ON b.id = p.brand_id
            WHERE p.id IN ({placeholders})
              AND (p.user_id = ? OR b.user_id = ?)
            """,
            (*ids, user_id, user_id),
        )
        return {row["id"] for row in rows}

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    async def increment_preset_usage(self, preset_id: str) -> None:
        async with self.transaction() as db:
            await db.execute(
                "INSERT INTO preset_usage (preset_id, usage_count) VALUES (?, 1) "
                "ON CONFLICT(preset_id) DO UPDATE SET usage_count = usage_count + 1",
                (preset_id,),
            )

    async def get_preset_usage(self, preset_id: str) -> int:
        row = await self._fetchone(
            "SELECT usage_count FROM preset_usage WHERE preset_id = ?", (preset_id,)
        )
        return row["usage_count"] if row else 0

    # ------------------------------------------------------------------
    # Batch jobs
    # ------------------------------------------------------------------

    async def insert_batch_job(self, job: BatchJob, items: List[BatchItem]) -> None:
        """Persist a job and all of its items atomically."""
        async with self.transaction() as db:
            await db.execute(
                """
                INSERT INTO batch_jobs (
                    id, user_id, product_ids, style_settings, preset_id, status,
                    total_products, processed_count, success_count, failed_count,
                    estimated_credits, used_credits, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, 0, ?, 0, ?)
                """,
                (
                    job.id,
                    job.user_id,
                    json.dumps(job.product_ids),
                    json.dumps(job.style_settings),
                    job.preset_id,
                    job.status,
                    job.total_products,
                    job.estimated_credits,
                    job.created_at.isoformat(),
                ),
            )
            await db.executemany(
                """
                INSERT INTO batch_items (
                    id, batch_job_id, product_id, position, status, credits_cost, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        item.batch_job_id,
                        item.product_id,
                        item.position,
                        item.status,
                        item.credits_cost,
                        item.created_at.isoformat(),
                    )
                    for item in items
                ],
            )

    async def get_batch_job(self, batch_job_id: str) -> Optional[BatchJob]:
        row = await self._fetchone("SELECT * FROM batch_jobs WHERE id = ?", (batch_job_id,))
        return self._row_to_job(row) if row else None

    async def list_batch_jobs(self, user_id: str, limit: int = 20, offset: int = 0) -> List[BatchJob]:
        rows = await self._fetchall(
            "SELECT * FROM batch_jobs WHERE user_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        return [self._row_to_job(row) for row in rows]

    async def count_batch_jobs(self, user_id: str) -> int:
        row = await self._fetchone("SELECT COUNT(*) FROM batch_jobs WHERE user_id = ?", (user_id,))
        return row[0] if row else 0

    async def get_batch_items(self, batch_job_id: str) -> List[BatchItem]:
        rows = await self._fetchall(
            "SELECT * FROM batch_items WHERE batch_job_id = ? ORDER BY position",
            (batch_job_id,),
        )
        return [self._row_to_item(row) for row in rows]

    async def get_item_statuses(self, batch_job_id: str) -> List[BatchItemStatus]:
        rows = await self._fetchall(
            """
            SELECT i.id, i.product_id, i.status, i.output_url, i.caption, i.error_message,
                   p.name AS product_name, p.image_url AS product_thumbnail
            FROM batch_items i
            LEFT JOIN products p ON p.id = i.product_id
            WHERE i.batch_job_id = ?
            ORDER BY i.position
            """,
            (batch_job_id,),
        )
        return [BatchItemStatus.model_validate(dict(row)) for row in rows]

    async def start_batch_job(self, batch_job_id: str) -> bool:
        """pending -> processing. Returns False if the job was not pending."""
        async with self.transaction() as db:
            cursor = await db.execute(
                "UPDATE batch_jobs SET status = ?, started_at = ? WHERE id = ? AND status = ?",
                (JOB_STATUS_PROCESSING, utcnow().isoformat(), batch_job_id, JOB_STATUS_PENDING),
            )
            return cursor.rowcount == 1

    async def mark_item_processing(self, item_id: str) -> bool:
        async with self.transaction() as db:
            cursor = await db.execute(
                "UPDATE batch_items SET status = ? WHERE id = ? AND status = ?",
                (ITEM_STATUS_PROCESSING, item_id, ITEM_STATUS_QUEUED),
            )
            return cursor.rowcount == 1

    async def complete_item(self, item: BatchItem, output_url: str, caption: Optional[str]) -> bool:
        """processing -> completed, bumping the job's success counters in the same transaction."""
        async with self.transaction() as db:
            cursor = await db.execute(
                "UPDATE batch_items SET status = 'completed', output_url = ?, caption = ?, "
                "error_message = NULL, completed_at = ? WHERE id = ? AND status = ?",
                (output_url, caption, utcnow().isoformat(), item.id, ITEM_STATUS_PROCESSING),
            )
            if cursor.rowcount != 1:
                return False
            await db.execute(
                "UPDATE batch_jobs SET processed_count = processed_count + 1, "
                "success_count = success_count + 1, used_credits = used_credits + ? "
                "WHERE id = ?",
                (item.credits_cost, item.batch_job_id),
            )
            return True

    async def fail_item(self, item: BatchItem, error_message: str) -> bool:
        """queued|processing -> failed, bumping the job's failure counters in the same transaction."""
        async with self.transaction() as db:
            cursor = await db.execute(
                "UPDATE batch_items SET status = 'failed', output_url = NULL, error_message = ?, "
                "completed_at = ? WHERE id = ? AND status IN (?, ?)",
                (error_message, utcnow().isoformat(), item.id, ITEM_STATUS_QUEUED, ITEM_STATUS_PROCESSING),
            )
            if cursor.rowcount != 1:
                return False
            await db.execute(
                "UPDATE batch_jobs SET processed_count = processed_count + 1, "
                "failed_count = failed_count + 1 WHERE id = ?",
                (item.batch_job_id,),
            )
            return True

    async def finalize_batch_job(
        self,
        job: BatchJob,
        final_status: str,
        from_statuses: Sequence[str] = (JOB_STATUS_PROCESSING,),
    ) -> bool:
        """Move a job to a terminal status once.

        The update only applies while the job is still in one of
        ``from_statuses`` with the counters it was evaluated against, so two
        concurrent evaluations can never both finalize it.
        """
        placeholders = ",".join("?" for _ in from_statuses)
        async with self.transaction() as db:
            cursor = await db.execute(
                f"UPDATE batch_jobs SET status = ?, completed_at = ? "
                f"WHERE id = ? AND status IN ({placeholders}) "
                f"AND processed_count = ? AND success_count = ? AND failed_count = ?",
                (
                    final_status,
                    utcnow().isoformat(),
                    job.id,
                    *from_statuses,
                    job.processed_count,
                    job.success_count,
                    job.failed_count,
                ),
            )
            return cursor.rowcount == 1

    async def cancel_batch_job(self, batch_job_id: str, message: str, refused_statuses: Sequence[str]) -> Optional[int]:
        """Fail every queued item and force the job to failed.

        Returns the number of items cancelled, or None when the job is in
        one of ``refused_statuses``.
        """
        placeholders = ",".join("?" for _ in refused_statuses)
        now = utcnow().isoformat()
        async with self.transaction() as db:
            cursor = await db.execute(
                f"UPDATE batch_jobs SET status = ?, completed_at = ? "
                f"WHERE id = ? AND status NOT IN ({placeholders})",
                (JOB_STATUS_FAILED, now, batch_job_id, *refused_statuses),
            )
            if cursor.rowcount != 1:
                return None
            cursor = await db.execute(
                "UPDATE batch_items SET status = ?, error_message = ?, completed_at = ? "
                "WHERE batch_job_id = ? AND status = ?",
                (ITEM_STATUS_FAILED, message, now, batch_job_id, ITEM_STATUS_QUEUED),
            )
            cancelled = cursor.rowcount
            await db.execute(
                "UPDATE batch_jobs SET processed_count = processed_count + ?, "
                "failed_count = failed_count + ? WHERE id = ?",
                (cancelled, cancelled, batch_job_id),
            )
            return cancelled

    def _row_to_job(self, row: aiosqlite.Row) -> BatchJob:
        data = dict(row)
        data["product_ids"] = json.loads(data["product_ids"])
        data["style_settings"] = json.loads(data["style_settings"])
        return BatchJob.model_validate(data)

    def _row_to_item(self, row: aiosqlite.Row) -> BatchItem:
        return BatchItem.model_validate(dict(row))

