"""Job and product records persisted by the job store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


def split_image_refs(value: Any) -> List[str]:
    """Split a comma-delimited location list, dropping blank entries."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = str(value).split(",")
    return [p.strip() for p in parts if p and p.strip()]


class Product(BaseModel):
    """
    One ingestion row plus the image fields owned by the pipeline.

    Row columns are kept verbatim as extra fields so the stored record is the
    ingestion row with `inputImageRefs`/`outputImageRefs` added. A `None`
    entry in `outputImageRefs` is the sentinel for an image that could not be
    produced; `imageErrors` holds the matching error code.
    """

    model_config = ConfigDict(extra="allow")

    inputImageRefs: List[str] = Field(default_factory=list)
    outputImageRefs: List[Optional[str]] = Field(default_factory=list)
    imageErrors: List[Optional[str]] = Field(default_factory=list)
    hasPartialFailure: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any], image_field: str = "Input Image Urls") -> "Product":
        data: Dict[str, Any] = dict(row)
        data["inputImageRefs"] = split_image_refs(row.get(image_field))
        data["outputImageRefs"] = []
        data["imageErrors"] = []
        data["hasPartialFailure"] = False
        return cls.model_validate(data)

    @property
    def is_complete(self) -> bool:
        return len(self.outputImageRefs) == len(self.inputImageRefs)

    @property
    def failed_count(self) -> int:
        return sum(1 for ref in self.outputImageRefs if ref is None)


class Job(BaseModel):
    requestId: str
    status: JobStatus = JobStatus.PROCESSING
    products: List[Product] = Field(default_factory=list)
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completedAt: Optional[datetime] = None

    def payload(self) -> Dict[str, Any]:
        """Terminal payload shared by the status query and the webhook."""
        return {
            "requestId": self.requestId,
            "status": self.status.value,
            "products": [p.model_dump(mode="json") for p in self.products],
        }
