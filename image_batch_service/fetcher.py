"""
Image fetching.

Retrieves raw bytes for one image location. HTTP(S) locations go through a
`requests` session and are streamed against a total deadline. `file://` URLs
and bare paths are read from disk, but only beneath a configured input root;
without one, local locations are refused. No retries happen here: the caller
decides what a failed fetch means.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import time
from typing import Callable, Optional, Union
from urllib.parse import unquote, urlparse

import requests

from .errors import FetchError, FetchErrorKind

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ImageFetcher:
    """
    `timeout` bounds the whole HTTP body transfer, measured from the moment
    the request is sent. `connect_timeout` bounds the TCP connect alone.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        connect_timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        local_root: Optional[Union[str, Path]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.session = session or requests.Session()
        self.local_root = Path(local_root) if local_root is not None else None
        self.clock = clock

    async def fetch(self, ref: str) -> bytes:
        """Return the bytes behind `ref` or raise `FetchError`."""
        return await asyncio.to_thread(self.fetch_sync, ref)

    def fetch_sync(self, ref: str) -> bytes:
        ref = ref.strip()
        scheme = urlparse(ref).scheme.lower()
        if scheme in {"http", "https"}:
            return self._fetch_http(ref)
        if scheme == "file":
            return self._read_local(unquote(urlparse(ref).path))
        if scheme and len(scheme) > 1:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"Unsupported location scheme: {ref}")
        return self._read_local(ref)

    def _fetch_http(self, url: str) -> bytes:
        deadline = self.clock() + self.timeout
        try:
            resp = self.session.get(url, timeout=(self.connect_timeout, self.timeout), stream=True)
        except requests.Timeout as exc:
            raise FetchError(FetchErrorKind.TIMEOUT, f"Timed out fetching {url}") from exc
        except requests.RequestException as exc:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"Could not reach {url}: {exc}") from exc

        try:
            if resp.status_code >= 400:
                raise FetchError(
                    FetchErrorKind.BAD_STATUS,
                    f"{url} answered {resp.status_code}",
                    status_code=resp.status_code,
                )
            body = self._read_body(resp, url, deadline)
        finally:
            resp.close()
        logger.debug("fetched %s (%d bytes)", url, len(body))
        return body

    def _read_body(self, resp: requests.Response, url: str, deadline: float) -> bytes:
        chunks = []
        try:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if self.clock() > deadline:
                    raise FetchError(FetchErrorKind.TIMEOUT, f"Body of {url} not received within {self.timeout}s")
                if chunk:
                    chunks.append(chunk)
        except requests.Timeout as exc:
            raise FetchError(FetchErrorKind.TIMEOUT, f"Timed out reading {url}") from exc
        except requests.RequestException as exc:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"Connection to {url} broke: {exc}") from exc
        return b"".join(chunks)

    def _read_local(self, ref: str) -> bytes:
        if self.local_root is None:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"Local image locations are disabled: {ref}")
        try:
            root = self.local_root.resolve()
            path = (root / ref).resolve()
            path.relative_to(root)
        except (OSError, ValueError) as exc:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"{ref} is not a location under {self.local_root}") from exc
        try:
            return path.read_bytes()
        except (OSError, ValueError) as exc:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"Could not read {path}: {exc}") from exc
