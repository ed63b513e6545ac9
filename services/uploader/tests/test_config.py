import re
from pathlib import Path

import pytest

from services.uploader.config import MIB, UploaderConfig, generate_stream_id, load_config

_ENV_NAMES = (
    "IS_DEBUG",
    "DEBUG_URL",
    "REAL_URL",
    "CHUNK_SIZE",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "RETRY_BACKOFF_MS",
    "MAX_CONCURRENT_BLOCKS",
    "STATUS_WAIT_SECONDS",
    "COMPANY_ID",
    "SESSION_ID",
    "OVERLAY_TEXT",
    "VIDEO_FILE",
    "AUDIO_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def _config(**overrides) -> UploaderConfig:
    values = dict(
        is_debug=False,
        debug_url="https://localhost:7000/api/",
        real_url="https://api.example.com/api",
        chunk_size=4 * MIB,
        request_timeout_ms=30000,
        max_retries=3,
        retry_backoff_ms=500,
        max_concurrent_blocks=0,
        status_wait_seconds=0.0,
        company_id="company",
        session_id="0123456789abcdef",
        overlay_text="",
        video_file=Path("video.webm"),
        audio_file=Path("audio.webm"),
    )
    values.update(overrides)
    return UploaderConfig(**values)


def test_defaults_are_valid():
    cfg = load_config(load_env_file=False)

    assert cfg.is_debug is False
    assert cfg.chunk_size == 4 * MIB
    assert cfg.request_timeout_ms == 30000
    assert cfg.max_retries == 3
    assert cfg.api_base_url == "https://api.production.com/api"
    assert cfg.validate() == []


def test_debug_mode_selects_debug_url(monkeypatch):
    monkeypatch.setenv("IS_DEBUG", "true")
    monkeypatch.setenv("DEBUG_URL", "https://localhost:7000/api/")

    cfg = load_config(load_env_file=False)

    assert cfg.mode == "DEBUG"
    assert cfg.api_base_url == "https://localhost:7000/api"


def test_production_mode_selects_real_url():
    cfg = _config()

    assert cfg.mode == "PRODUCTION"
    assert cfg.api_base_url == "https://api.example.com/api"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"chunk_size": MIB - 1}, "CHUNK_SIZE is too small"),
        ({"chunk_size": 100 * MIB + 1}, "CHUNK_SIZE is too large"),
        ({"request_timeout_ms": 999}, "REQUEST_TIMEOUT"),
        ({"max_retries": 0}, "MAX_RETRIES"),
        ({"max_retries": 11}, "MAX_RETRIES"),
        ({"retry_backoff_ms": -1}, "RETRY_BACKOFF_MS"),
        ({"max_concurrent_blocks": -1}, "MAX_CONCURRENT_BLOCKS"),
        ({"company_id": ""}, "COMPANY_ID"),
        ({"session_id": ""}, "SESSION_ID"),
    ],
)
def test_validate_reports_out_of_range_values(overrides, message):
    errors = _config(**overrides).validate()

    assert any(message in error for error in errors)


def test_validate_accepts_boundaries():
    assert _config(chunk_size=MIB, request_timeout_ms=1000, max_retries=1).validate() == []
    assert _config(chunk_size=100 * MIB, max_retries=10).validate() == []


def test_load_config_raises_on_invalid_values(monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "1024")

    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(load_env_file=False)


def test_load_config_rejects_non_integer(monkeypatch):
    monkeypatch.setenv("MAX_RETRIES", "three")

    with pytest.raises(ValueError, match="MAX_RETRIES"):
        load_config(load_env_file=False)


def test_status_wait_accepts_fractional_seconds(monkeypatch):
    monkeypatch.setenv("STATUS_WAIT_SECONDS", "2.5")

    cfg = load_config(load_env_file=False)

    assert cfg.status_wait_seconds == 2.5


def test_status_wait_rejects_non_numeric(monkeypatch):
    monkeypatch.setenv("STATUS_WAIT_SECONDS", "soon")

    with pytest.raises(ValueError, match="STATUS_WAIT_SECONDS"):
        load_config(load_env_file=False)


def test_overlay_falls_back_to_session_prefix():
    cfg = _config(overlay_text="")

    assert cfg.effective_overlay_text == "Patient ID: 01234567"
    assert _config(overlay_text="Clinic A").effective_overlay_text == "Clinic A"


def test_stream_id_format():
    stream_id = generate_stream_id()

    assert re.fullmatch(r"stream-\d+-[0-9a-z]{9}", stream_id)
    assert generate_stream_id() != stream_id


def test_new_session_carries_transfer_settings():
    cfg = _config(request_timeout_ms=2500)

    session = cfg.new_session(stream_id="stream-1-abc")

    assert session.stream_id == "stream-1-abc"
    assert session.company_id == "company"
    assert session.chunk_size == 4 * MIB
    assert session.request_timeout == 2.5
    assert session.blob_prefix is None
