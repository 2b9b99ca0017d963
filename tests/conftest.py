"""Shared pytest fixtures for the batch engine tests."""

import asyncio
import os
import tempfile
from typing import Dict, List, Optional

# Settings are read at import time: point logs somewhere disposable first
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="studio-logs-"))

import pytest
import pytest_asyncio

from app.models.batch import QueueStats
from app.models.style import style_adapter
from app.services.batch_service import BatchService
from app.services.credits import CreditLedger
from app.services.generation import GenerationError, GenerationRequest, GenerationResult
from app.services.store import StudioStore
from app.services.worker import BatchWorker


class FakeGenerator:
    """In-memory image generator.

    ``fail_products`` makes the listed products raise GenerationError,
    ``delay`` slows every call down.
    """

    def __init__(self, fail_products: Optional[List[str]] = None, delay: float = 0.0):
        self.fail_products = set(fail_products or [])
        self.delay = delay
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if request.product_id in self.fail_products:
            raise GenerationError("Generation failed - no output")
        return GenerationResult(output_url=f"https://cdn.example.com/{request.product_id}.png")


class FakeCaptionWriter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Dict] = []

    async def write_caption(self, product, voice, output_url):
        self.calls.append({"product": product["id"], "voice": voice, "output_url": output_url})
        if self.fail:
            raise GenerationError("caption backend down")
        return f"{product.get('name')} - {voice}"


class RecordingDispatcher:
    """Dispatcher that only records what it was asked to run"""
    backend = "recording"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.enqueued: List[str] = []

    async def enqueue(self, batch_job_id, user_id, preset_id=None):
        if self.fail:
            raise ConnectionError("queue unavailable")
        self.enqueued.append(batch_job_id)
        return f"batch-{batch_job_id}"

    async def stats(self):
        return QueueStats(backend=self.backend, waiting=len(self.enqueued))

    async def close(self):
        return None


WHITE_BACKGROUND = {"presentation": "product_only", "sceneType": "solid_color", "solidColor": "#FFFFFF"}


async def seed_user(store: StudioStore, credits: int = 10, products: int = 3, voice: Optional[str] = None):
    """Create a user with a default brand and ``products`` products; returns (user, product ids)"""
    user = await store.create_user(f"user-{os.urandom(4).hex()}", "not-a-real-hash", credit_units=credits)
    brand = await store.create_brand(user["id"], "Brand", is_default=True, voice=voice)
    product_ids = []
    for i in range(products):
        product = await store.create_product(
            f"https://cdn.example.com/src/{i}.jpg", name=f"Product {i}", brand_id=brand["id"]
        )
        product_ids.append(product["id"])
    return user, product_ids


@pytest.fixture
def white_style():
    return style_adapter.validate_python(WHITE_BACKGROUND)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = StudioStore(str(tmp_path / "studio.db"))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def ledger(store):
    return CreditLedger(store)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(store, ledger, dispatcher):
    return BatchService(store, ledger, dispatcher=dispatcher, per_item_cost=1, max_batch_size=20)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def worker(store, service, ledger, generator):
    return BatchWorker(store, service, ledger, generator, pacing_seconds=0, generation_timeout=5)
