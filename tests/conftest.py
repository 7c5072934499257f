"""
Shared test fixtures and fakes.

This module provides:
- In-memory image factories (Pillow)
- A scripted fetcher with per-location bytes, errors and delays
- Recording notifier and a job store that fails terminal writes on demand
- A `make_runner` factory wiring them into a JobRunner
"""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import Any, Dict, List, Optional, Union

import pytest
from PIL import Image

from image_batch_service.config import Settings
from image_batch_service.errors import FetchError, FetchErrorKind, StoreError, StoreErrorKind
from image_batch_service.ids import SequentialIdGenerator
from image_batch_service.job_store import InMemoryJobStore
from image_batch_service.runner import JobRunner
from image_batch_service.storage import LocalDirectorySink
from image_batch_service.transformer import ImageTransformer, TransformOptions


def make_image_bytes(size=(64, 48), color=(200, 40, 40), fmt: str = "PNG", mode: str = "RGB") -> bytes:
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    image = Image.new(mode, size, color)
    buf = BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


class FakeFetcher:
    """Serves scripted bytes or errors per location, optionally after a delay."""

    def __init__(
        self,
        responses: Dict[str, Union[bytes, Exception]],
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.responses = responses
        self.delays = delays or {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, ref: str) -> bytes:
        self.calls.append(ref)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(ref, 0))
            response = self.responses.get(ref)
            if response is None:
                raise FetchError(FetchErrorKind.UNREACHABLE, f"no route to {ref}")
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            self.in_flight -= 1


class RecordingNotifier:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.payloads: List[Dict[str, Any]] = []
        self.error = error

    async def notify(self, payload: Dict[str, Any]) -> bool:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return True


class FlakyJobStore(InMemoryJobStore):
    """Fails the first `failures` terminal writes with WRITE_FAILURE."""

    def __init__(self, failures: int = 0) -> None:
        super().__init__()
        self.failures = failures
        self.update_calls = 0

    def update_terminal(self, job_id, status, products):
        self.update_calls += 1
        if self.update_calls <= self.failures:
            raise StoreError(StoreErrorKind.WRITE_FAILURE, job_id, "disk full")
        return super().update_terminal(job_id, status, products)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        job_store_backend="memory",
        storage_backend="local",
        local_output_dir=tmp_path / "out",
        product_concurrency=2,
        image_concurrency=2,
        store_write_attempts=3,
        store_retry_backoff_seconds=0,
        webhook_url=None,
    )


@pytest.fixture
def transformer(tmp_path) -> ImageTransformer:
    return ImageTransformer(TransformOptions(), sink=LocalDirectorySink(tmp_path / "out"))


@pytest.fixture
def make_runner(settings, transformer):
    def _make(fetcher, store=None, notifier=None) -> JobRunner:
        return JobRunner(
            settings,
            store=store or InMemoryJobStore(),
            fetcher=fetcher,
            transformer=transformer,
            notifier=notifier or RecordingNotifier(),
            id_generator=SequentialIdGenerator("job"),
            sleep=no_sleep,
        )

    return _make
