"""Shared fixtures for safepreview tests."""

from typing import AsyncIterator, Iterable, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from safepreview.services.blob_store import BlobStore
from safepreview.services.key_store import SecretKey, SecretKeyStore


def make_aiohttp_response(
    status: int = 200,
    headers: Optional[dict] = None,
    body: bytes = b'',
    url: Optional[str] = None,
    chunk_size: Optional[int] = None
) -> MagicMock:
    """Build a mock aiohttp response usable as an async context manager."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.url = url

    async def iter_chunked(n):
        step = chunk_size or n
        for start in range(0, len(body), step):
            yield body[start:start + step]

    response.content.iter_chunked = iter_chunked
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


ResponseOrChain = Optional[Union[MagicMock, List[MagicMock]]]


def make_aiohttp_session(head: ResponseOrChain = None, get: ResponseOrChain = None) -> MagicMock:
    """Build a mock aiohttp ClientSession returning the given responses.

    A list is served one response per call, for redirect chains.
    """
    session = MagicMock()
    session.head = Mock(side_effect=head) if isinstance(head, list) else Mock(return_value=head)
    session.get = Mock(side_effect=get) if isinstance(get, list) else Mock(return_value=get)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


async def iter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    """Deliver bytes to a pipeline with explicit chunk boundaries."""
    for chunk in chunks:
        yield chunk


@pytest.fixture
def secret_key():
    """Deterministic secret key."""
    return SecretKey(bytes(range(32)))


@pytest.fixture
def blob_store():
    """Fresh blob store per test."""
    return BlobStore()


@pytest.fixture
def key_store(tmp_path):
    """Key store rooted in a temporary directory."""
    return SecretKeyStore(tmp_path / "keys" / "secret.key")


@pytest.fixture
def encrypted_dir(tmp_path):
    """Temporary artifact directory."""
    directory = tmp_path / "encrypted"
    directory.mkdir()
    return directory
