from __future__ import annotations

import os
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from services.uploader.domain.upload import UploadSession

MIB = 1024 * 1024
MIN_CHUNK_SIZE = 1 * MIB
MAX_CHUNK_SIZE = 100 * MIB
MIN_REQUEST_TIMEOUT_MS = 1000
MIN_RETRIES = 1
MAX_RETRIES = 10

_DEFAULT_ID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"
_STREAM_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def _load_repo_env() -> None:
    """Load the nearest .env starting from the working directory upward."""
    current = Path.cwd().resolve()
    for candidate in [current, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number") from exc


def generate_stream_id() -> str:
    suffix = "".join(secrets.choice(_STREAM_SUFFIX_ALPHABET) for _ in range(9))
    return f"stream-{int(time.time() * 1000)}-{suffix}"


@dataclass(frozen=True)
class UploaderConfig:
    is_debug: bool
    debug_url: str
    real_url: str
    chunk_size: int
    request_timeout_ms: int
    max_retries: int
    retry_backoff_ms: int
    max_concurrent_blocks: int
    status_wait_seconds: float
    company_id: str
    session_id: str
    overlay_text: str
    video_file: Path
    audio_file: Path

    @property
    def api_base_url(self) -> str:
        url = self.debug_url if self.is_debug else self.real_url
        return url.rstrip("/")

    @property
    def mode(self) -> str:
        return "DEBUG" if self.is_debug else "PRODUCTION"

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000

    @property
    def effective_overlay_text(self) -> str:
        if self.overlay_text:
            return self.overlay_text
        return f"Patient ID: {self.session_id[:8]}"

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.api_base_url:
            errors.append("API URL is not configured")
        if self.chunk_size < MIN_CHUNK_SIZE:
            errors.append("CHUNK_SIZE is too small (minimum 1 MiB)")
        if self.chunk_size > MAX_CHUNK_SIZE:
            errors.append("CHUNK_SIZE is too large (maximum 100 MiB)")
        if self.request_timeout_ms < MIN_REQUEST_TIMEOUT_MS:
            errors.append("REQUEST_TIMEOUT is too small (minimum 1000 ms)")
        if not MIN_RETRIES <= self.max_retries <= MAX_RETRIES:
            errors.append("MAX_RETRIES must be between 1 and 10")
        if self.retry_backoff_ms < 0:
            errors.append("RETRY_BACKOFF_MS must not be negative")
        if self.max_concurrent_blocks < 0:
            errors.append("MAX_CONCURRENT_BLOCKS must not be negative")
        if self.status_wait_seconds < 0:
            errors.append("STATUS_WAIT_SECONDS must not be negative")
        if not self.company_id:
            errors.append("COMPANY_ID is required")
        if not self.session_id:
            errors.append("SESSION_ID is required")
        return errors

    def new_session(self, stream_id: str | None = None) -> UploadSession:
        return UploadSession(
            stream_id=stream_id or generate_stream_id(),
            company_id=self.company_id,
            session_id=self.session_id,
            chunk_size=self.chunk_size,
            max_retries=self.max_retries,
            request_timeout=self.request_timeout_seconds,
        )


def load_config(*, load_env_file: bool = True) -> UploaderConfig:
    if load_env_file:
        _load_repo_env()
    config = UploaderConfig(
        is_debug=_env_bool("IS_DEBUG", False),
        debug_url=os.getenv("DEBUG_URL", "https://localhost:7000/api"),
        real_url=os.getenv("REAL_URL", "https://api.production.com/api"),
        chunk_size=_env_int("CHUNK_SIZE", 4 * MIB),
        request_timeout_ms=_env_int("REQUEST_TIMEOUT", 30000),
        max_retries=_env_int("MAX_RETRIES", 3),
        retry_backoff_ms=_env_int("RETRY_BACKOFF_MS", 500),
        max_concurrent_blocks=_env_int("MAX_CONCURRENT_BLOCKS", 0),
        status_wait_seconds=_env_float("STATUS_WAIT_SECONDS", 0.0),
        company_id=os.getenv("COMPANY_ID", _DEFAULT_ID),
        session_id=os.getenv("SESSION_ID", _DEFAULT_ID),
        overlay_text=os.getenv("OVERLAY_TEXT", "Processing Video..."),
        video_file=Path(os.getenv("VIDEO_FILE", "./sample_video.webm")),
        audio_file=Path(os.getenv("AUDIO_FILE", "./sample_audio.webm")),
    )
    errors = config.validate()
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))
    return config
