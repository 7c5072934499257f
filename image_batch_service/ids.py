"""Request id generation."""

from __future__ import annotations

import itertools
import uuid
from typing import Callable

IdGenerator = Callable[[], str]


def new_request_id() -> str:
    """Opaque 24 hex character token."""
    return uuid.uuid4().hex[:24]


class SequentialIdGenerator:
    """Deterministic ids (`<prefix>-0001`, `<prefix>-0002`, ...) for tests and replays."""

    def __init__(self, prefix: str = "job") -> None:
        self.prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self.prefix}-{next(self._counter):04d}"
