from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from services.uploader.domain.errors import UploadError
from services.uploader.domain.status import StatusEvent


def strip_sas_token(url: str) -> str:
    """Drop the query string (and with it the SAS token) from a blob URL."""
    return url.split("#", 1)[0].split("?", 1)[0]


@dataclass(frozen=True)
class UploadSession:
    stream_id: str
    company_id: str
    session_id: str
    chunk_size: int
    max_retries: int
    request_timeout: float
    blob_prefix: Optional[str] = None

    def with_blob_prefix(self, blob_prefix: str) -> "UploadSession":
        return replace(self, blob_prefix=blob_prefix)


@dataclass(frozen=True)
class CredentialSet:
    video_write_url: str
    audio_write_url: str
    blob_prefix: str
    status_channel_url: Optional[str] = None

    def __repr__(self) -> str:
        return (
            "CredentialSet("
            f"video_write_url={strip_sas_token(self.video_write_url)!r}, "
            f"audio_write_url={strip_sas_token(self.audio_write_url)!r}, "
            f"blob_prefix={self.blob_prefix!r}, "
            f"status_channel_url={self.status_channel_url!r})"
        )


@dataclass(frozen=True)
class FinalizeRequest:
    stream_id: str
    blob_prefix: str
    output_file_name: str
    overlay_text: str

    @classmethod
    def for_stream(
        cls, *, stream_id: str, blob_prefix: str, overlay_text: str
    ) -> "FinalizeRequest":
        return cls(
            stream_id=stream_id,
            blob_prefix=blob_prefix,
            output_file_name=f"final_{stream_id}.mp4",
            overlay_text=overlay_text,
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "streamId": self.stream_id,
            "blobPrefix": self.blob_prefix,
            "outputFileName": self.output_file_name,
            "overlayText": self.overlay_text,
        }


class UploadStage(str, Enum):
    PREFLIGHT = "preflight"
    CREDENTIALS = "credentials"
    PLANNING = "planning"
    BLOCK_UPLOAD = "block_upload"
    COMMIT = "commit"
    FINALIZE = "finalize"


class UploadOutcome(str, Enum):
    NOTHING_UPLOADED = "nothing_uploaded"
    UPLOADED_NOT_COMMITTED = "uploaded_not_committed"
    COMMITTED_NOT_FINALIZED = "committed_not_finalized"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class UploadFailure:
    stage: UploadStage
    error: UploadError
    file_label: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.error.kind

    def describe(self) -> str:
        where = f"{self.stage.value}[{self.file_label}]" if self.file_label else self.stage.value
        return f"{where}: {self.kind}: {self.error}"


@dataclass(frozen=True)
class CommittedFile:
    label: str
    url: str
    size: int
    block_count: int


@dataclass(frozen=True)
class UploadReport:
    stream_id: str
    outcome: UploadOutcome
    blob_prefix: Optional[str] = None
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    finalize_ack: Any = None
    failure: Optional[UploadFailure] = None
    status_events: tuple[StatusEvent, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.outcome is UploadOutcome.FINALIZED
