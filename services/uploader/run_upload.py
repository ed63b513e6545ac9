from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

import httpx

from services.uploader.application.retry import RetryPolicy
from services.uploader.application.use_cases import (
    BlockUploader,
    CommitCoordinator,
    UploadOrchestrator,
)
from services.uploader.config import UploaderConfig, load_config
from services.uploader.domain.upload import UploadOutcome, UploadReport, UploadSession
from services.uploader.infrastructure.block_blob import AzureBlockBlobStore
from services.uploader.infrastructure.credentials import HttpCredentialClient
from services.uploader.infrastructure.finalize import HttpFinalizeClient
from services.uploader.infrastructure.http import create_http_client
from services.uploader.infrastructure.status_channel import (
    create_status_channel_factory,
)

logger = logging.getLogger("services.uploader")

EXIT_CODES = {
    UploadOutcome.FINALIZED: 0,
    UploadOutcome.NOTHING_UPLOADED: 1,
    UploadOutcome.UPLOADED_NOT_COMMITTED: 2,
    UploadOutcome.COMMITTED_NOT_FINALIZED: 3,
}

_RECOVERY_HINTS = {
    UploadOutcome.NOTHING_UPLOADED: "nothing was uploaded; rerun the upload",
    UploadOutcome.UPLOADED_NOT_COMMITTED: (
        "blocks were staged but not committed; rerun the upload from scratch"
    ),
    UploadOutcome.COMMITTED_NOT_FINALIZED: (
        "media is committed; rerun with --finalize-only --stream-id "
        "{stream_id} --blob-prefix {blob_prefix}"
    ),
}


def build_orchestrator(
    cfg: UploaderConfig,
    client: httpx.AsyncClient,
    session: UploadSession,
    *,
    status_wait_seconds: float | None = None,
) -> UploadOrchestrator:
    retry_policy = RetryPolicy(
        max_retries=cfg.max_retries, backoff_seconds=cfg.retry_backoff_seconds
    )
    store = AzureBlockBlobStore(client)
    return UploadOrchestrator(
        session=session,
        credential_client=HttpCredentialClient(
            client, api_base_url=cfg.api_base_url, debug=cfg.is_debug
        ),
        block_uploader=BlockUploader(
            store=store,
            retry_policy=retry_policy,
            max_concurrency=cfg.max_concurrent_blocks,
        ),
        commit_coordinator=CommitCoordinator(store=store, retry_policy=retry_policy),
        finalize_client=HttpFinalizeClient(
            client, api_base_url=cfg.api_base_url, debug=cfg.is_debug
        ),
        retry_policy=retry_policy,
        overlay_text=cfg.effective_overlay_text,
        status_channel_factory=create_status_channel_factory(
            open_timeout=cfg.request_timeout_seconds
        ),
        status_wait_seconds=(
            cfg.status_wait_seconds
            if status_wait_seconds is None
            else status_wait_seconds
        ),
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Upload a video/audio pair in blocks and start processing."
    )
    parser.add_argument("--video", type=Path, help="video file (default: VIDEO_FILE)")
    parser.add_argument("--audio", type=Path, help="audio file (default: AUDIO_FILE)")
    parser.add_argument(
        "--follow",
        type=float,
        metavar="SECONDS",
        help="wait up to SECONDS for an end-of-job status event after finalize",
    )
    parser.add_argument(
        "--show-config", action="store_true", help="print configuration and exit"
    )
    parser.add_argument(
        "--finalize-only",
        action="store_true",
        help="only request processing for an already committed stream",
    )
    parser.add_argument("--stream-id", help="stream id to reuse")
    parser.add_argument("--blob-prefix", help="blob prefix for --finalize-only")
    args = parser.parse_args(argv)
    if args.finalize_only and not (args.stream_id and args.blob_prefix):
        parser.error("--finalize-only requires --stream-id and --blob-prefix")
    return args


def describe_config(cfg: UploaderConfig, session: UploadSession) -> list[str]:
    return [
        f"Mode: {cfg.mode}",
        f"API URL: {cfg.api_base_url}",
        f"Chunk size: {cfg.chunk_size} bytes",
        f"Timeout: {cfg.request_timeout_ms} ms",
        f"Retries: {cfg.max_retries}",
        f"Max concurrent blocks: {cfg.max_concurrent_blocks or 'unbounded'}",
        f"Video file: {cfg.video_file}",
        f"Audio file: {cfg.audio_file}",
        f"Stream ID: {session.stream_id}",
    ]


def log_report(report: UploadReport, elapsed: float) -> None:
    if report.succeeded:
        logger.info("Upload finished in %.2fs", elapsed)
        if report.video_url:
            logger.info("Video URL: %s", report.video_url)
        if report.audio_url:
            logger.info("Audio URL: %s", report.audio_url)
        logger.info("Blob prefix: %s", report.blob_prefix)
        logger.info("Files handed over for processing; stream %s", report.stream_id)
        return
    failure = report.failure.describe() if report.failure else "unknown failure"
    logger.error("Upload %s after %.2fs: %s", report.outcome.value, elapsed, failure)
    hint = _RECOVERY_HINTS.get(report.outcome)
    if hint:
        logger.error(
            hint.format(stream_id=report.stream_id, blob_prefix=report.blob_prefix)
        )


async def run(args: argparse.Namespace, cfg: UploaderConfig) -> UploadReport:
    session = cfg.new_session(stream_id=args.stream_id)
    async with create_http_client(cfg) as client:
        orchestrator = build_orchestrator(
            cfg, client, session, status_wait_seconds=args.follow
        )
        if args.finalize_only:
            return await orchestrator.finalize_only(args.blob_prefix)
        return await orchestrator.run(
            args.video or cfg.video_file, args.audio or cfg.audio_file
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config()
    except ValueError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", exc)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if cfg.is_debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not cfg.is_debug:
        # httpx logs full request URLs, SAS query included.
        logging.getLogger("httpx").setLevel(logging.WARNING)

    if args.show_config:
        for line in describe_config(cfg, cfg.new_session(stream_id=args.stream_id)):
            print(line)
        return 0

    started = time.monotonic()
    report = asyncio.run(run(args, cfg))
    log_report(report, time.monotonic() - started)
    return EXIT_CODES[report.outcome]


if __name__ == "__main__":
    sys.exit(main())
