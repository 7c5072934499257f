from unittest.mock import MagicMock

import pytest
import requests

from image_batch_service.errors import FetchError, FetchErrorKind
from image_batch_service.fetcher import ImageFetcher


def _session(status_code=200, content=b"img", side_effect=None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        resp = MagicMock(status_code=status_code)
        resp.iter_content.return_value = [content[:3], content[3:]]
        session.get.return_value = resp
    return session


class SteppingClock:
    """Advances by `step` seconds every time it is read."""

    def __init__(self, step: float) -> None:
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        self.now += self.step
        return self.now


@pytest.mark.asyncio
async def test_fetch_http_returns_body_and_passes_timeouts():
    session = _session(content=b"\x89PNG...")
    fetcher = ImageFetcher(timeout=7, connect_timeout=2, session=session)

    assert await fetcher.fetch("https://cdn.example.com/a.png") == b"\x89PNG..."
    session.get.assert_called_once_with("https://cdn.example.com/a.png", timeout=(2, 7), stream=True)
    session.get.return_value.close.assert_called_once()


@pytest.mark.asyncio
async def test_fetch_bad_status():
    session = _session(status_code=404)
    fetcher = ImageFetcher(session=session)
    with pytest.raises(FetchError) as info:
        await fetcher.fetch("http://example.com/missing.jpg")
    assert info.value.kind is FetchErrorKind.BAD_STATUS
    assert info.value.status_code == 404
    session.get.return_value.close.assert_called_once()


@pytest.mark.asyncio
async def test_fetch_timeout():
    fetcher = ImageFetcher(session=_session(side_effect=requests.ReadTimeout("slow")))
    with pytest.raises(FetchError) as info:
        await fetcher.fetch("http://example.com/slow.jpg")
    assert info.value.kind is FetchErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_slow_trickling_body_hits_total_deadline():
    session = _session()
    # Every chunk arrives inside the read timeout, but the body never ends
    session.get.return_value.iter_content.return_value = iter(lambda: b"x", None)
    fetcher = ImageFetcher(timeout=10, session=session, clock=SteppingClock(step=1.0))

    with pytest.raises(FetchError) as info:
        await fetcher.fetch("http://example.com/drip.jpg")
    assert info.value.kind is FetchErrorKind.TIMEOUT
    session.get.return_value.close.assert_called_once()


@pytest.mark.asyncio
async def test_connection_dropped_mid_body_is_unreachable():
    session = _session()
    session.get.return_value.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("reset")
    fetcher = ImageFetcher(session=session)

    with pytest.raises(FetchError) as info:
        await fetcher.fetch("http://example.com/a.jpg")
    assert info.value.kind is FetchErrorKind.UNREACHABLE


@pytest.mark.asyncio
async def test_fetch_connection_error_is_unreachable():
    fetcher = ImageFetcher(session=_session(side_effect=requests.ConnectionError("refused")))
    with pytest.raises(FetchError) as info:
        await fetcher.fetch("http://example.com/a.jpg")
    assert info.value.kind is FetchErrorKind.UNREACHABLE
    assert info.value.code == "fetch.unreachable"


@pytest.mark.asyncio
async def test_fetch_local_path_and_file_url(tmp_path):
    path = tmp_path / "pic.jpg"
    path.write_bytes(b"local-bytes")
    fetcher = ImageFetcher(session=_session(), local_root=tmp_path)

    assert await fetcher.fetch(str(path)) == b"local-bytes"
    assert await fetcher.fetch("pic.jpg") == b"local-bytes"
    assert await fetcher.fetch(path.as_uri()) == b"local-bytes"
    fetcher.session.get.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_missing_local_file_is_unreachable(tmp_path):
    fetcher = ImageFetcher(session=_session(), local_root=tmp_path)
    with pytest.raises(FetchError) as info:
        await fetcher.fetch(str(tmp_path / "nope.jpg"))
    assert info.value.kind is FetchErrorKind.UNREACHABLE


@pytest.mark.asyncio
async def test_local_refs_refused_without_input_root(tmp_path):
    path = tmp_path / "pic.jpg"
    path.write_bytes(b"local-bytes")
    fetcher = ImageFetcher(session=_session())

    for ref in (str(path), path.as_uri()):
        with pytest.raises(FetchError) as info:
            await fetcher.fetch(ref)
        assert info.value.kind is FetchErrorKind.UNREACHABLE


@pytest.mark.asyncio
async def test_local_refs_outside_input_root_are_unreachable(tmp_path):
    root = tmp_path / "inputs"
    root.mkdir()
    secret = tmp_path / "secret.txt"
    secret.write_bytes(b"do not read")
    fetcher = ImageFetcher(session=_session(), local_root=root)

    for ref in (str(secret), "../secret.txt", secret.as_uri(), "/etc/passwd"):
        with pytest.raises(FetchError) as info:
            await fetcher.fetch(ref)
        assert info.value.kind is FetchErrorKind.UNREACHABLE


@pytest.mark.asyncio
async def test_malformed_local_path_is_unreachable(tmp_path):
    fetcher = ImageFetcher(session=_session(), local_root=tmp_path)
    with pytest.raises(FetchError) as info:
        await fetcher.fetch("images/a\x00b.png")
    assert info.value.kind is FetchErrorKind.UNREACHABLE


@pytest.mark.asyncio
async def test_fetch_unknown_scheme_is_unreachable():
    fetcher = ImageFetcher(session=_session())
    with pytest.raises(FetchError) as info:
        await fetcher.fetch("ftp://example.com/a.jpg")
    assert info.value.kind is FetchErrorKind.UNREACHABLE
