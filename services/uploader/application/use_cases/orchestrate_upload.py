from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from services.uploader.application.interfaces import (
    CredentialClient,
    FinalizeClient,
    StatusChannelFactory,
)
from services.uploader.application.retry import RetryPolicy
from services.uploader.application.status_monitor import StatusChannelMonitor
from services.uploader.application.use_cases.commit_blocks import CommitCoordinator
from services.uploader.application.use_cases.upload_blocks import BlockUploader
from services.uploader.domain.blocks import BlockState, FileUpload
from services.uploader.domain.errors import (
    MediaFileError,
    UnexpectedFailure,
    UploadError,
)
from services.uploader.domain.upload import (
    CommittedFile,
    CredentialSet,
    FinalizeRequest,
    UploadFailure,
    UploadOutcome,
    UploadReport,
    UploadSession,
    UploadStage,
)

logger = logging.getLogger(__name__)

VIDEO = "video"
AUDIO = "audio"


class _FilePipelineError(Exception):
    def __init__(self, failure: UploadFailure) -> None:
        super().__init__(failure.describe())
        self.failure = failure


class UploadOrchestrator:
    """Drives one session: credentials, both file pipelines, then finalize.

    ``run`` never raises for pipeline failures; it returns an UploadReport
    whose outcome tells the caller which recovery applies.
    """

    def __init__(
        self,
        *,
        session: UploadSession,
        credential_client: CredentialClient,
        block_uploader: BlockUploader,
        commit_coordinator: CommitCoordinator,
        finalize_client: FinalizeClient,
        retry_policy: RetryPolicy,
        overlay_text: str,
        status_channel_factory: StatusChannelFactory | None = None,
        status_wait_seconds: float = 0.0,
    ) -> None:
        self._session = session
        self._credentials = credential_client
        self._uploader = block_uploader
        self._committer = commit_coordinator
        self._finalizer = finalize_client
        self._retry = retry_policy
        self._overlay_text = overlay_text
        self._status_channel_factory = status_channel_factory
        self._status_wait_seconds = status_wait_seconds

    @property
    def session(self) -> UploadSession:
        return self._session

    async def run(self, video_path: Path, audio_path: Path) -> UploadReport:
        stream_id = self._session.stream_id
        try:
            _preflight({VIDEO: video_path, AUDIO: audio_path})
        except MediaFileError as exc:
            return self._failed(UploadStage.PREFLIGHT, exc)

        try:
            credentials = await self._retry.run(
                lambda: self._credentials.fetch_credentials(self._session),
                label="credential exchange",
            )
        except UploadError as exc:
            return self._failed(UploadStage.CREDENTIALS, exc)
        self._session = self._session.with_blob_prefix(credentials.blob_prefix)
        logger.info("Credentials received; blob prefix %s", credentials.blob_prefix)

        monitor = self._open_status_channel(credentials)
        try:
            return await self._upload_and_finalize(
                credentials, video_path, audio_path, monitor
            )
        finally:
            if monitor is not None:
                await monitor.stop()
                logger.debug(
                    "Status channel for %s delivered %d events",
                    stream_id,
                    len(monitor.received),
                )

    async def finalize_only(self, blob_prefix: str) -> UploadReport:
        """Re-issue finalize for media that is already committed."""
        self._session = self._session.with_blob_prefix(blob_prefix)
        try:
            ack = await self._finalize()
        except UploadError as exc:
            return self._failed(
                UploadStage.FINALIZE,
                exc,
                outcome=UploadOutcome.COMMITTED_NOT_FINALIZED,
            )
        return UploadReport(
            stream_id=self._session.stream_id,
            outcome=UploadOutcome.FINALIZED,
            blob_prefix=blob_prefix,
            finalize_ack=ack,
        )

    async def _upload_and_finalize(
        self,
        credentials: CredentialSet,
        video_path: Path,
        audio_path: Path,
        monitor: StatusChannelMonitor | None,
    ) -> UploadReport:
        plans: dict[str, FileUpload] = {}
        failures: list[UploadFailure] = []
        committed: dict[str, CommittedFile] = {}

        async def pipeline(label: str, path: Path, destination_url: str) -> None:
            try:
                committed[label] = await self._run_file(
                    plans, label, path, destination_url
                )
            except _FilePipelineError as exc:
                failures.append(exc.failure)

        await asyncio.gather(
            pipeline(VIDEO, video_path, credentials.video_write_url),
            pipeline(AUDIO, audio_path, credentials.audio_write_url),
        )

        if failures:
            uploaded_any = any(
                plan.count(BlockState.COMMITTED) for plan in plans.values()
            )
            outcome = (
                UploadOutcome.UPLOADED_NOT_COMMITTED
                if uploaded_any
                else UploadOutcome.NOTHING_UPLOADED
            )
            logger.error("Upload aborted before finalize: %s", failures[0].describe())
            return self._report(
                outcome, committed, failure=failures[0], monitor=monitor
            )

        logger.info(
            "Both files committed: video=%s audio=%s",
            committed[VIDEO].url,
            committed[AUDIO].url,
        )
        try:
            ack = await self._finalize()
        except UploadError as exc:
            logger.error("Finalize failed; media remains committed: %s", exc)
            return self._report(
                UploadOutcome.COMMITTED_NOT_FINALIZED,
                committed,
                failure=UploadFailure(stage=UploadStage.FINALIZE, error=exc),
                monitor=monitor,
            )

        if monitor is not None and self._status_wait_seconds > 0:
            if not await monitor.wait_for_terminal(self._status_wait_seconds):
                logger.info(
                    "No end-of-job event within %.0fs", self._status_wait_seconds
                )
        return self._report(
            UploadOutcome.FINALIZED, committed, finalize_ack=ack, monitor=monitor
        )

    async def _run_file(
        self,
        plans: dict[str, FileUpload],
        label: str,
        path: Path,
        destination_url: str,
    ) -> CommittedFile:
        try:
            upload = FileUpload.plan(
                label=label,
                file_path=path,
                destination_url=destination_url,
                chunk_size=self._session.chunk_size,
            )
        except (OSError, ValueError) as exc:
            raise _FilePipelineError(
                UploadFailure(
                    stage=UploadStage.PLANNING,
                    error=MediaFileError(str(exc)),
                    file_label=label,
                )
            ) from exc
        plans[label] = upload

        try:
            await self._uploader.upload_all(upload)
        except Exception as exc:
            raise _FilePipelineError(
                UploadFailure(
                    stage=UploadStage.BLOCK_UPLOAD,
                    error=_as_upload_error(exc),
                    file_label=label,
                )
            ) from exc

        try:
            return await self._committer.commit(upload)
        except Exception as exc:
            raise _FilePipelineError(
                UploadFailure(
                    stage=UploadStage.COMMIT,
                    error=_as_upload_error(exc),
                    file_label=label,
                )
            ) from exc

    async def _finalize(self) -> Any:
        request = FinalizeRequest.for_stream(
            stream_id=self._session.stream_id,
            blob_prefix=self._session.blob_prefix or "",
            overlay_text=self._overlay_text,
        )
        ack = await self._finalizer.finalize(request)
        logger.info(
            "Processing job accepted; output file %s", request.output_file_name
        )
        return ack

    def _open_status_channel(
        self, credentials: CredentialSet
    ) -> StatusChannelMonitor | None:
        url = credentials.status_channel_url
        if not url or self._status_channel_factory is None:
            return None
        try:
            channel = self._status_channel_factory(url, self._session.stream_id)
        except Exception as exc:
            logger.warning("Status channel unavailable: %s", exc)
            return None
        monitor = StatusChannelMonitor(channel, self._session.stream_id)
        monitor.start()
        return monitor

    def _failed(
        self,
        stage: UploadStage,
        error: UploadError,
        *,
        outcome: UploadOutcome = UploadOutcome.NOTHING_UPLOADED,
    ) -> UploadReport:
        failure = UploadFailure(stage=stage, error=error)
        logger.error("Upload failed: %s", failure.describe())
        return UploadReport(
            stream_id=self._session.stream_id,
            outcome=outcome,
            blob_prefix=self._session.blob_prefix,
            failure=failure,
        )

    def _report(
        self,
        outcome: UploadOutcome,
        committed: dict[str, CommittedFile],
        *,
        failure: UploadFailure | None = None,
        finalize_ack: Any = None,
        monitor: StatusChannelMonitor | None = None,
    ) -> UploadReport:
        video = committed.get(VIDEO)
        audio = committed.get(AUDIO)
        return UploadReport(
            stream_id=self._session.stream_id,
            outcome=outcome,
            blob_prefix=self._session.blob_prefix,
            video_url=video.url if video else None,
            audio_url=audio.url if audio else None,
            finalize_ack=finalize_ack,
            failure=failure,
            status_events=tuple(monitor.received) if monitor else (),
        )


def _preflight(files: dict[str, Path]) -> None:
    missing = [f"{label}: {path}" for label, path in files.items() if not path.is_file()]
    if missing:
        raise MediaFileError("Media files not found: " + ", ".join(missing))
    empty = [f"{label}: {path}" for label, path in files.items() if path.stat().st_size == 0]
    if empty:
        raise MediaFileError("Media files are empty: " + ", ".join(empty))


def _as_upload_error(exc: Exception) -> UploadError:
    if isinstance(exc, UploadError):
        return exc
    return UnexpectedFailure(f"{type(exc).__name__}: {exc}")
