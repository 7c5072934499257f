"""
Configuration loader for the batch image service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings

from .transformer import TransformOptions

SUPPORTED_OUTPUT_FORMATS = {"JPEG", "PNG", "WEBP"}


class Settings(BaseSettings):
    # Fetching
    fetch_timeout_seconds: float = Field(15.0, env="FETCH_TIMEOUT_SECONDS")
    fetch_connect_timeout_seconds: float = Field(5.0, env="FETCH_CONNECT_TIMEOUT_SECONDS")
    # Unset means bare paths and file:// refs are refused
    local_input_dir: Optional[Path] = Field(None, env="LOCAL_INPUT_DIR")

    # Transformation
    output_format: str = Field("JPEG", env="OUTPUT_FORMAT")
    output_quality: int = Field(50, env="OUTPUT_QUALITY")
    max_dimension: Optional[int] = Field(None, env="MAX_DIMENSION")

    # Concurrency: products per job, images per product
    product_concurrency: int = Field(4, env="PRODUCT_CONCURRENCY")
    image_concurrency: int = Field(4, env="IMAGE_CONCURRENCY")

    # Ingestion column holding the comma-delimited image locations
    image_field: str = Field("Input Image Urls", env="IMAGE_FIELD")

    # Output sink: local directory or S3-compatible bucket
    storage_backend: str = Field("local", env="STORAGE_BACKEND")
    local_output_dir: Path = Field(Path("uploads"), env="LOCAL_OUTPUT_DIR")
    s3_endpoint: Optional[str] = Field(None, env="S3_ENDPOINT")
    s3_access_key_id: Optional[str] = Field(None, env="S3_ACCESS_KEY_ID")
    s3_secret_access_key: Optional[str] = Field(None, env="S3_SECRET_ACCESS_KEY")
    s3_bucket_name: Optional[str] = Field(None, env="S3_BUCKET_NAME")
    s3_public_base_url: Optional[str] = Field(None, env="S3_PUBLIC_BASE_URL")
    s3_key_prefix: str = Field("outputs", env="S3_KEY_PREFIX")

    # Job store
    job_store_backend: str = Field("json", env="JOB_STORE_BACKEND")
    job_store_path: Path = Field(Path("data/jobs.json"), env="JOB_STORE_PATH")
    store_write_attempts: int = Field(3, env="STORE_WRITE_ATTEMPTS")
    store_retry_backoff_seconds: float = Field(0.5, env="STORE_RETRY_BACKOFF_SECONDS")

    # Completion webhook
    webhook_url: Optional[str] = Field(None, env="WEBHOOK_URL")
    webhook_timeout_seconds: float = Field(10.0, env="WEBHOOK_TIMEOUT_SECONDS")
    webhook_max_attempts: int = Field(3, env="WEBHOOK_MAX_ATTEMPTS")
    webhook_backoff_seconds: float = Field(1.0, env="WEBHOOK_BACKOFF_SECONDS")
    webhook_max_backoff_seconds: float = Field(20.0, env="WEBHOOK_MAX_BACKOFF_SECONDS")

    log_level: str = Field("INFO", env="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator("output_format")
    def validate_output_format(cls, v: str) -> str:  # noqa: B902
        v = v.upper()
        if v == "JPG":
            v = "JPEG"
        if v not in SUPPORTED_OUTPUT_FORMATS:
            raise ValueError("OUTPUT_FORMAT must be one of JPEG|PNG|WEBP")
        return v

    @validator("output_quality")
    def validate_output_quality(cls, v: int) -> int:  # noqa: B902
        if not 0 <= v <= 100:
            raise ValueError("OUTPUT_QUALITY must be between 0 and 100")
        return v

    @validator("product_concurrency", "image_concurrency", "store_write_attempts", "webhook_max_attempts")
    def validate_positive(cls, v: int) -> int:  # noqa: B902
        if v < 1:
            raise ValueError("concurrency limits and attempt counts must be >= 1")
        return v

    @validator("storage_backend")
    def validate_storage_backend(cls, v: str) -> str:  # noqa: B902
        if v not in {"local", "s3"}:
            raise ValueError("STORAGE_BACKEND must be one of local|s3")
        return v

    @validator("job_store_backend")
    def validate_job_store_backend(cls, v: str) -> str:  # noqa: B902
        if v not in {"memory", "json"}:
            raise ValueError("JOB_STORE_BACKEND must be one of memory|json")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def transform_options(settings: Optional[Settings] = None) -> TransformOptions:
    """Translate settings into the encoder options used for every image."""
    settings = settings or get_settings()
    return TransformOptions(
        format=settings.output_format,
        quality=settings.output_quality,
        max_dimension=settings.max_dimension,
    )
