"""
Output sinks for transformed images.

Each `put` stores one encoded image under a fresh, collision-free name and
returns the location string recorded in the product's output list.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import urljoin
import uuid

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from . import config
from .errors import SinkError

logger = logging.getLogger(__name__)


class ImageSink(Protocol):
    def put(self, data: bytes, *, extension: str, content_type: str) -> str:
        ...


def unique_name(extension: str) -> str:
    return f"output-{uuid.uuid4().hex}.{extension.lstrip('.')}"


class LocalDirectorySink:
    """Write outputs under a directory and return their paths."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def put(self, data: bytes, *, extension: str, content_type: str) -> str:
        path = self.root / unique_name(extension)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise SinkError(f"Could not write {path}: {exc}") from exc
        logger.debug("stored %s (%d bytes)", path, len(data))
        return str(path)


class S3Sink:
    """Upload outputs to an S3-compatible bucket (AWS, R2, MinIO)."""

    def __init__(self, settings: config.Settings, client=None) -> None:
        self.settings = settings
        # Fails at startup rather than on the first upload
        self.client = client if client is not None else self._build_client()

    def _build_client(self):
        required = [
            self.settings.s3_endpoint,
            self.settings.s3_access_key_id,
            self.settings.s3_secret_access_key,
            self.settings.s3_bucket_name,
        ]
        if any(v is None for v in required):
            raise RuntimeError("S3 configuration is incomplete; check env vars.")
        session = boto3.session.Session()
        return session.client(
            service_name="s3",
            aws_access_key_id=self.settings.s3_access_key_id,
            aws_secret_access_key=self.settings.s3_secret_access_key,
            endpoint_url=self.settings.s3_endpoint,
            config=BotoConfig(signature_version="s3v4"),
        )

    def _build_public_url(self, key: str) -> str:
        if self.settings.s3_public_base_url:
            return urljoin(self.settings.s3_public_base_url.rstrip("/") + "/", key)
        # Without a public base URL hand out a presigned GET instead
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.settings.s3_bucket_name, "Key": key},
            ExpiresIn=3600,
        )

    def put(self, data: bytes, *, extension: str, content_type: str) -> str:
        prefix = self.settings.s3_key_prefix.strip("/")
        name = unique_name(extension)
        key = f"{prefix}/{name}" if prefix else name
        try:
            self.client.put_object(
                Bucket=self.settings.s3_bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.debug("uploaded s3://%s/%s (%d bytes)", self.settings.s3_bucket_name, key, len(data))
            return self._build_public_url(key)
        except (BotoCoreError, ClientError) as exc:
            raise SinkError(f"Upload of {key} failed: {exc}") from exc


def build_sink(settings: Optional[config.Settings] = None) -> ImageSink:
    settings = settings or config.get_settings()
    if settings.storage_backend == "s3":
        return S3Sink(settings)
    return LocalDirectorySink(settings.local_output_dir)
