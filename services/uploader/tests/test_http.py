from pathlib import Path

import pytest

from services.uploader.config import MIB, UploaderConfig
from services.uploader.infrastructure.http import create_http_client


def _config(**overrides) -> UploaderConfig:
    values = dict(
        is_debug=False,
        debug_url="https://localhost:7000/api",
        real_url="https://api.example.com/api",
        chunk_size=4 * MIB,
        request_timeout_ms=30000,
        max_retries=3,
        retry_backoff_ms=500,
        max_concurrent_blocks=0,
        status_wait_seconds=0.0,
        company_id="company",
        session_id="session",
        overlay_text="",
        video_file=Path("video.webm"),
        audio_file=Path("audio.webm"),
    )
    values.update(overrides)
    return UploaderConfig(**values)


@pytest.mark.asyncio
async def test_request_timeout_bounds_requests_but_not_pool_waits():
    client = create_http_client(_config(request_timeout_ms=2500))
    try:
        assert client.timeout.connect == 2.5
        assert client.timeout.read == 2.5
        assert client.timeout.write == 2.5
        assert client.timeout.pool is None
    finally:
        await client.aclose()
