from __future__ import annotations

import contextlib
from typing import AsyncIterator

import httpx

from services.uploader.config import UploaderConfig
from services.uploader.domain.errors import TransportError

_BODY_SNIPPET_CHARS = 300


def create_http_client(config: UploaderConfig) -> httpx.AsyncClient:
    # Debug backends run with self-signed certificates.
    # Waiting for a pooled connection has no deadline; requests do.
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.request_timeout_seconds, pool=None),
        verify=not config.is_debug,
        headers={"accept": "*/*"},
    )


@contextlib.asynccontextmanager
async def translate_transport_errors(label: str) -> AsyncIterator[None]:
    try:
        yield
    except httpx.TransportError as exc:
        raise TransportError(f"{label}: {type(exc).__name__}: {exc}") from exc


def body_snippet(response: httpx.Response) -> str:
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""
    return text[:_BODY_SNIPPET_CHARS]
