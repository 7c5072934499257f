"""
Error taxonomy for the batch image service.

Every failure the pipeline knows how to classify is an `ImageBatchError`
carrying a `kind`. Per-image families (fetch, transform, sink) are recovered
locally by the product processor; store and notify errors are handled by the
job runner.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FetchErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    BAD_STATUS = "bad_status"


class TransformErrorKind(str, Enum):
    UNSUPPORTED = "unsupported"
    CORRUPT = "corrupt"


class SinkErrorKind(str, Enum):
    WRITE_FAILURE = "write_failure"


class StoreErrorKind(str, Enum):
    DUPLICATE_ID = "duplicate_id"
    NOT_FOUND = "not_found"
    READ_FAILURE = "read_failure"
    WRITE_FAILURE = "write_failure"
    TERMINAL = "terminal"


class NotifyErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    REJECTED_BY_RECEIVER = "rejected_by_receiver"


class ImageBatchError(Exception):
    """Base class for classified pipeline failures."""

    family = "error"

    def __init__(self, kind: Enum, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    @property
    def code(self) -> str:
        return f"{self.family}.{self.kind.value}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}: {self.message})"


class FetchError(ImageBatchError):
    family = "fetch"

    def __init__(self, kind: FetchErrorKind, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(kind, message)
        self.status_code = status_code


class TransformError(ImageBatchError):
    family = "transform"


class SinkError(ImageBatchError):
    family = "sink"

    def __init__(self, message: str = "") -> None:
        super().__init__(SinkErrorKind.WRITE_FAILURE, message)


class StoreError(ImageBatchError):
    family = "store"

    def __init__(self, kind: StoreErrorKind, job_id: str, message: str = "") -> None:
        super().__init__(kind, message or f"{kind.value}: {job_id}")
        self.job_id = job_id


class NotifyError(ImageBatchError):
    family = "notify"

    def __init__(self, kind: NotifyErrorKind, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(kind, message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.kind is not NotifyErrorKind.REJECTED_BY_RECEIVER:
            return True
        return self.status_code is not None and (self.status_code == 429 or self.status_code >= 500)


# Errors isolated to a single image slot
IMAGE_ERRORS = (FetchError, TransformError, SinkError)
