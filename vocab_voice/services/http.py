from __future__ import annotations

from typing import Callable

import httpx

from vocab_voice.config import HTTP_TIMEOUT_SECONDS, USER_AGENT
from vocab_voice.errors import EmptyAudioError

ClientFactory = Callable[[], httpx.AsyncClient]


def build_async_client(*, extra_headers: dict[str, str] | None = None) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` with the shared timeout and browser-like headers.

    Every provider adapter builds its clients through this function (or an injected
    replacement) so no outbound request runs without a timeout.
    """

    headers = {"User-Agent": USER_AGENT}
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS),
        follow_redirects=True,
        headers=headers,
    )


async def download_audio(url: str, *, client_factory: ClientFactory = build_async_client) -> bytes:
    async with client_factory() as client:
        resp = await client.get(url, headers={"Accept": "audio/mpeg,audio/*,*/*"})
        resp.raise_for_status()
        payload = resp.content
    if not payload:
        raise EmptyAudioError()
    return payload
