"""
FastAPI layer exposing batch submission and status queries.

Endpoints:
 - GET /health
 - POST /upload        (multipart CSV file)
 - POST /jobs          (JSON rows)
 - GET /status/{request_id}
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from pydantic import BaseModel

from . import config
from .errors import StoreError, StoreErrorKind
from .ingest import parse_csv_rows
from .runner import JobRunner

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


class SubmitJobRequest(BaseModel):
    products: List[Dict[str, Any]]


class SubmitJobResponse(BaseModel):
    requestId: str


class StatusResponse(BaseModel):
    status: str
    products: List[Dict[str, Any]]


def create_app(runner: Optional[JobRunner] = None) -> FastAPI:
    runner = runner or JobRunner.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await runner.shutdown()

    app = FastAPI(title="Batch Image Compression Service", version="0.1.0", lifespan=lifespan)
    app.state.runner = runner

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/upload", response_model=SubmitJobResponse)
    async def upload(file: UploadFile = File(...)):
        content = await file.read()
        try:
            rows = parse_csv_rows(content)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
        return await _submit(rows)

    @app.post("/jobs", response_model=SubmitJobResponse)
    async def submit_job(body: SubmitJobRequest):
        return await _submit(body.products)

    @app.get("/status/{request_id}", response_model=StatusResponse)
    def status(request_id: str):
        try:
            return runner.get_status(request_id)
        except StoreError as exc:
            if exc.kind is StoreErrorKind.NOT_FOUND:
                raise HTTPException(status_code=404, detail="Request not found") from exc
            logger.exception("Status lookup failed for %s: %s", request_id, exc)
            raise HTTPException(status_code=500, detail="Job store unavailable") from exc

    async def _submit(rows: List[Dict[str, Any]]) -> SubmitJobResponse:
        try:
            request_id = await runner.submit(rows)
        except StoreError as exc:
            logger.exception("Failed to create job: %s", exc)
            raise HTTPException(status_code=500, detail="Could not create job") from exc
        logger.info("accepted job %s with %d row(s)", request_id, len(rows))
        return SubmitJobResponse(requestId=request_id)

    return app


app = create_app()
