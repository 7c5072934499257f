"""
Job persistence.

The store is the only durable owner of job state. Backends implement three
operations: `create` (status Processing), `update_terminal` (one write
carrying the final status and products) and `get`. Terminal jobs are
immutable; `get` always hands back an independent copy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import Dict, List, Optional, Sequence

from . import config
from .errors import StoreError, StoreErrorKind
from .models import Job, JobStatus, Product

logger = logging.getLogger(__name__)


class JobStore(ABC):
    @abstractmethod
    def create(self, job_id: str, products: Sequence[Product]) -> Job:
        ...

    @abstractmethod
    def update_terminal(self, job_id: str, status: JobStatus, products: Sequence[Product]) -> Job:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Job:
        ...


def _terminal_copy(job: Job, status: JobStatus, products: Sequence[Product]) -> Job:
    if not status.is_terminal:
        raise ValueError(f"update_terminal needs a terminal status, got {status.value}")
    if job.status.is_terminal:
        raise StoreError(StoreErrorKind.TERMINAL, job.requestId, f"Job {job.requestId} is already {job.status.value}")
    incomplete = [i for i, p in enumerate(products) if not p.is_complete]
    if incomplete:
        raise ValueError(f"products {incomplete} have not had every image attempted")
    return job.model_copy(
        update={
            "status": status,
            "products": [p.model_copy(deep=True) for p in products],
            "completedAt": datetime.now(timezone.utc),
        },
        deep=True,
    )


class InMemoryJobStore(JobStore):
    """Process-local store; jobs live as long as the process."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job_id: str, products: Sequence[Product]) -> Job:
        job = Job(requestId=job_id, products=[p.model_copy(deep=True) for p in products])
        with self._lock:
            if job_id in self._jobs:
                raise StoreError(StoreErrorKind.DUPLICATE_ID, job_id)
            self._jobs[job_id] = job
        return job.model_copy(deep=True)

    def update_terminal(self, job_id: str, status: JobStatus, products: Sequence[Product]) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise StoreError(StoreErrorKind.NOT_FOUND, job_id)
            updated = _terminal_copy(job, status, products)
            self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise StoreError(StoreErrorKind.NOT_FOUND, job_id)
            return job.model_copy(deep=True)


class JsonFileJobStore(JobStore):
    """
    All jobs in a single JSON document on disk.

    Each mutation rewrites the document through a temporary file and
    `os.replace`, so a reader never sees a half-written job.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_jobs(self, job_id: str) -> List[Job]:
        try:
            content = self.path.read_text() if self.path.exists() else "[]"
        except OSError as exc:
            raise StoreError(StoreErrorKind.READ_FAILURE, job_id, f"Could not read {self.path}: {exc}") from exc
        if not content.strip():
            content = "[]"
        try:
            return [Job.model_validate(x) for x in json.loads(content)]
        except (ValueError, TypeError) as exc:
            # JSONDecodeError and pydantic's ValidationError are both ValueErrors
            raise StoreError(StoreErrorKind.READ_FAILURE, job_id, f"{self.path} is not a valid job document: {exc}") from exc

    def _write_jobs(self, jobs: List[Job], job_id: str) -> None:
        document = json.dumps([j.model_dump(mode="json") for j in jobs], indent=2)
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".jobs-", suffix=".json")
            with os.fdopen(fd, "w") as fh:
                fh.write(document)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StoreError(StoreErrorKind.WRITE_FAILURE, job_id, f"Could not write {self.path}: {exc}") from exc

    def create(self, job_id: str, products: Sequence[Product]) -> Job:
        job = Job(requestId=job_id, products=list(products))
        with self._lock:
            jobs = self._read_jobs(job_id)
            if any(j.requestId == job_id for j in jobs):
                raise StoreError(StoreErrorKind.DUPLICATE_ID, job_id)
            jobs.append(job)
            self._write_jobs(jobs, job_id)
        return job.model_copy(deep=True)

    def update_terminal(self, job_id: str, status: JobStatus, products: Sequence[Product]) -> Job:
        with self._lock:
            jobs = self._read_jobs(job_id)
            for i, job in enumerate(jobs):
                if job.requestId == job_id:
                    jobs[i] = _terminal_copy(job, status, products)
                    self._write_jobs(jobs, job_id)
                    return jobs[i]
        raise StoreError(StoreErrorKind.NOT_FOUND, job_id)

    def get(self, job_id: str) -> Job:
        with self._lock:
            jobs = self._read_jobs(job_id)
        job = next((j for j in jobs if j.requestId == job_id), None)
        if job is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, job_id)
        return job


def build_job_store(settings: Optional[config.Settings] = None) -> JobStore:
    settings = settings or config.get_settings()
    if settings.job_store_backend == "memory":
        return InMemoryJobStore()
    logger.info("job store: %s", settings.job_store_path)
    return JsonFileJobStore(settings.job_store_path)
