"""
Job lifecycle orchestration.

`JobRunner` takes a batch of ingestion rows from creation to a terminal
state:

    create (Processing) -> process products -> one terminal write -> webhook

Products run concurrently up to `product_concurrency`, and the images of
each product up to `image_concurrency`. Nothing is written to the store
between creation and the terminal update, so an interrupted run leaves the
job in Processing with no `completedAt`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from . import config
from .errors import NotifyError, StoreError, StoreErrorKind
from .fetcher import ImageFetcher
from .ids import IdGenerator, new_request_id
from .job_store import JobStore, build_job_store
from .models import Job, JobStatus, Product
from .notifier import Sleep, WebhookNotifier
from .processor import ProductProcessor
from .storage import build_sink
from .transformer import ImageTransformer

logger = logging.getLogger(__name__)

# Failures an unchanged retry can clear
RETRYABLE_STORE_ERRORS = {StoreErrorKind.READ_FAILURE, StoreErrorKind.WRITE_FAILURE}

Row = Union[Product, Mapping[str, Any]]


def decide_terminal_status(products: Sequence[Product]) -> JobStatus:
    """
    Completed once every product has been attempted, even with some
    sentinel outputs. Failed only when there were images and not a single
    one could be fetched.
    """
    codes = [code for p in products for code in p.imageErrors]
    total = sum(len(p.inputImageRefs) for p in products)
    if total and len(codes) == total and all(code and code.startswith("fetch.") for code in codes):
        return JobStatus.FAILED
    return JobStatus.COMPLETED


class JobRunner:
    def __init__(
        self,
        settings: config.Settings,
        store: JobStore,
        fetcher: ImageFetcher,
        transformer: ImageTransformer,
        notifier: WebhookNotifier,
        id_generator: IdGenerator = new_request_id,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.processor = ProductProcessor(fetcher, transformer)
        self.notifier = notifier
        self.id_generator = id_generator
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "JobRunner":
        settings = settings or config.get_settings()
        return cls(
            settings,
            store=build_job_store(settings),
            fetcher=ImageFetcher(
                timeout=settings.fetch_timeout_seconds,
                connect_timeout=settings.fetch_connect_timeout_seconds,
                local_root=settings.local_input_dir,
            ),
            transformer=ImageTransformer(config.transform_options(settings), sink=build_sink(settings)),
            notifier=WebhookNotifier.from_settings(settings),
        )

    def build_products(self, rows: Iterable[Row]) -> List[Product]:
        return [
            row.model_copy(deep=True) if isinstance(row, Product) else Product.from_row(row, self.settings.image_field)
            for row in rows
        ]

    async def submit(self, rows: Iterable[Row]) -> str:
        """
        Create a job for `rows` and process it in the background.

        The job record exists (status Processing) by the time the id is returned.
        """
        job_id = self.id_generator()
        products = self.build_products(rows)
        await self._create(job_id, products)
        task = asyncio.create_task(self._process(job_id, products), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return job_id

    async def run(self, job_id: str, rows: Iterable[Row]) -> JobStatus:
        """Create the job and drive it to a terminal status in the foreground."""
        products = self.build_products(rows)
        await self._create(job_id, products)
        return await self._process(job_id, products)

    async def wait_idle(self) -> None:
        """Wait for every background job started by `submit`."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel background jobs; interrupted jobs stay in Processing."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    def get_status(self, job_id: str) -> Dict[str, Any]:
        """Status query payload; raises `StoreError` NOT_FOUND for unknown ids."""
        job = self.store.get(job_id)
        payload = job.payload()
        return {"status": payload["status"], "products": payload["products"]}

    async def _create(self, job_id: str, products: List[Product]) -> Job:
        job = await asyncio.to_thread(self.store.create, job_id, products)
        logger.info("job %s created with %d product(s)", job_id, len(products))
        return job

    async def _process(self, job_id: str, products: List[Product]) -> JobStatus:
        semaphore = asyncio.Semaphore(self.settings.product_concurrency)

        async def _one(product: Product) -> Product:
            async with semaphore:
                return await self.processor.process(product, self.settings.image_concurrency)

        try:
            processed = list(await asyncio.gather(*(_one(p) for p in products)))
        except asyncio.CancelledError:
            logger.warning("job %s cancelled; left in Processing", job_id)
            raise
        except Exception:
            logger.critical("job %s aborted by an unexpected error; left in Processing", job_id, exc_info=True)
            raise

        status = decide_terminal_status(processed)
        failed_images = sum(p.failed_count for p in processed)
        logger.info(
            "job %s finished processing: status=%s products=%d failed_images=%d",
            job_id,
            status.value,
            len(processed),
            failed_images,
        )

        job = await self._write_terminal(job_id, status, processed)
        if job is None:
            return JobStatus.FAILED

        await self._notify(job.payload())
        return job.status

    async def _write_terminal(self, job_id: str, status: JobStatus, products: List[Product]) -> Optional[Job]:
        attempts = self.settings.store_write_attempts
        delay = self.settings.store_retry_backoff_seconds
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(self.store.update_terminal, job_id, status, products)
            except StoreError as exc:
                if exc.kind not in RETRYABLE_STORE_ERRORS:
                    logger.critical("job %s terminal update refused: %s", job_id, exc.code)
                    return None
                if attempt == attempts:
                    break
                logger.warning(
                    "job %s terminal update attempt %d/%d failed: %s",
                    job_id,
                    attempt,
                    attempts,
                    exc.message,
                )
            await self._sleep(delay)
            delay *= 2
        logger.critical(
            "job %s could not be finalized after %d attempt(s); it stays in Processing",
            job_id,
            attempts,
        )
        return None

    async def _notify(self, payload: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify(payload)
        except NotifyError as exc:
            logger.error("job %s completion notification failed: %s", payload.get("requestId"), exc.code)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background %s ended with an error: %r", task.get_name(), exc)
