from __future__ import annotations

import logging

from services.uploader.application.interfaces import BlockStore
from services.uploader.application.retry import RetryPolicy
from services.uploader.domain.blocks import BlockListManifest, FileUpload
from services.uploader.domain.upload import CommittedFile, strip_sas_token

logger = logging.getLogger(__name__)


class CommitCoordinator:
    def __init__(self, *, store: BlockStore, retry_policy: RetryPolicy) -> None:
        self._store = store
        self._retry = retry_policy

    async def commit(self, upload: FileUpload) -> CommittedFile:
        if not upload.all_committed:
            raise ValueError(
                f"{upload.label}: every block must be committed before the block list"
            )
        manifest = BlockListManifest.from_blocks(upload.blocks)
        logger.info("Committing %d blocks for %s", len(manifest), upload.label)
        await self._retry.run(
            lambda: self._store.commit_block_list(
                destination_url=upload.destination_url, manifest=manifest
            ),
            label=f"{upload.label} commit",
        )
        url = strip_sas_token(upload.destination_url)
        logger.info("%s committed to %s", upload.label, url)
        return CommittedFile(
            label=upload.label,
            url=url,
            size=upload.size,
            block_count=len(manifest),
        )
