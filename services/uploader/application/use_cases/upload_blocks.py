from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

from services.uploader.application.interfaces import BlockStore
from services.uploader.application.retry import RetryPolicy
from services.uploader.domain.blocks import (
    BlockDescriptor,
    BlockState,
    FileUpload,
    block_id_for,
)
from services.uploader.domain.errors import MediaFileError, UploadError

logger = logging.getLogger(__name__)


class BlockUploader:
    """Transfers every block of a FileUpload, failing fast on the first error.

    ``max_concurrency`` caps the number of blocks read and sent at once;
    ``None`` or ``0`` starts one task per block.
    """

    def __init__(
        self,
        *,
        store: BlockStore,
        retry_policy: RetryPolicy,
        max_concurrency: int | None = None,
    ) -> None:
        self._store = store
        self._retry = retry_policy
        self._max_concurrency = max_concurrency or None

    async def upload_all(self, upload: FileUpload) -> None:
        limiter = (
            asyncio.Semaphore(self._max_concurrency)
            if self._max_concurrency
            else None
        )
        logger.info(
            "Uploading %s: %d bytes in %d blocks",
            upload.label,
            upload.size,
            len(upload.blocks),
        )
        try:
            async with asyncio.TaskGroup() as group:
                for block in upload.blocks:
                    group.create_task(self._upload_block(upload, block, limiter))
        except ExceptionGroup as failures:
            raise _first_failure(failures) from None

    async def _upload_block(
        self,
        upload: FileUpload,
        block: BlockDescriptor,
        limiter: asyncio.Semaphore | None,
    ) -> None:
        async with limiter if limiter is not None else contextlib.nullcontext():
            block.mark_in_flight()
            try:
                data = await asyncio.to_thread(
                    read_block, upload.file_path, block.start, block.length
                )
                await self._retry.run(
                    lambda: self._store.put_block(
                        destination_url=upload.destination_url,
                        block_id=block_id_for(block.index),
                        data=data,
                    ),
                    label=f"{upload.label} block {block.index}",
                )
            except BaseException:
                block.mark_failed()
                raise
            block.mark_committed()
        logger.debug(
            "%s: %d/%d blocks uploaded",
            upload.label,
            upload.count(BlockState.COMMITTED),
            len(upload.blocks),
        )


def read_block(path: Path, offset: int, length: int) -> bytes:
    try:
        with path.open("rb") as file_obj:
            file_obj.seek(offset)
            data = file_obj.read(length)
    except OSError as exc:
        raise MediaFileError(f"Cannot read {path}: {exc}") from exc
    if len(data) != length:
        raise MediaFileError(
            f"Short read from {path}: expected {length} bytes at {offset}, "
            f"got {len(data)}"
        )
    return data


def _first_failure(failures: ExceptionGroup) -> Exception:
    for exc in failures.exceptions:
        if isinstance(exc, UploadError):
            return exc
    return failures.exceptions[0]
